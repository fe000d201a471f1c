import enum

class MovementType(str, enum.Enum):
    receipt = "RECEIPT"
    issue = "ISSUE"
    adjustment = "ADJUSTMENT"

class StockCountStatus(str, enum.Enum):
    draft = "draft"
    planned = "planned"
    in_progress = "in_progress"
    completed = "completed"
    validated = "validated"
    cancelled = "cancelled"


# draft et planned sont synonymes
EDITABLE_STATUSES = frozenset(
    {StockCountStatus.planned, StockCountStatus.draft, StockCountStatus.in_progress}
)
TERMINAL_STATUSES = frozenset({StockCountStatus.validated, StockCountStatus.cancelled})

STATUS_DISPLAY = {
    StockCountStatus.draft: "Draft",
    StockCountStatus.planned: "Planned",
    StockCountStatus.in_progress: "In progress",
    StockCountStatus.completed: "Completed",
    StockCountStatus.validated: "Validated",
    StockCountStatus.cancelled: "Cancelled",
}

"""
Rapprochement compté / attendu.

Lecture seule, recalculé à chaque appel à partir des lignes courantes :
rien n'est mis en cache, rien n'est stocké. Convention de signe :
difference = counted - expected (positif = surplus, négatif = manquant).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Protocol

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from backend.app.db.models.core_types import StockCountStatus
from backend.app.db.models.models_v1 import StockCount, StockCountItem, Warehouse
from backend.services.ledger import SqlStockLedger, StockLedger
from backend.services.stock_count_store import get_session

PENDING_STATUSES = (
    StockCountStatus.planned,
    StockCountStatus.draft,
    StockCountStatus.in_progress,
    StockCountStatus.completed,
)


def _rate(part: int, total: int) -> float:
    # 0 et pas NaN quand il n'y a aucune ligne
    return round(part / total * 100, 2) if total else 0.0


def _load_items(db: Session, count_id: int, *, only_discrepant: bool = False) -> list[StockCountItem]:
    stmt = select(StockCountItem).where(StockCountItem.stock_count_id == count_id)
    if only_discrepant:
        stmt = stmt.where(StockCountItem.difference != 0)
    return list(db.execute(stmt.order_by(StockCountItem.id)).scalars().all())


# ---------- Discrepancies ----------
@dataclass
class DiscrepancyLine:
    item: StockCountItem
    unit_value: Decimal

    @property
    def difference(self) -> int:
        return self.item.difference

    @property
    def difference_value(self) -> Decimal:
        return self.item.difference * self.unit_value


@dataclass
class DiscrepancyReport:
    stock_count: StockCount
    lines: list[DiscrepancyLine] = field(default_factory=list)

    @property
    def discrepancy_count(self) -> int:
        return len(self.lines)

    @property
    def total_surplus(self) -> int:
        return sum(line.difference for line in self.lines if line.difference > 0)

    @property
    def total_deficit(self) -> int:
        # magnitude (toujours >= 0)
        return -sum(line.difference for line in self.lines if line.difference < 0)

    @property
    def total_value_impact(self) -> Decimal:
        return sum((line.difference_value for line in self.lines), Decimal("0"))


def discrepancies(db: Session, count_id: int, *, ledger: StockLedger | None = None) -> DiscrepancyReport:
    count = get_session(db, count_id)
    items = _load_items(db, count.id, only_discrepant=True)

    ledger = ledger or SqlStockLedger(db)
    values = ledger.get_product_unit_values(i.product_id for i in items)

    return DiscrepancyReport(
        stock_count=count,
        lines=[DiscrepancyLine(item=i, unit_value=values.get(i.product_id, Decimal("0"))) for i in items],
    )


# ---------- Summary ----------
@dataclass
class CountStatistics:
    total_items: int
    items_matched: int
    items_with_discrepancy: int
    items_surplus: int
    items_deficit: int
    match_rate: float


@dataclass
class CountQuantities:
    total_expected: int
    total_counted: int
    net_difference: int


@dataclass
class CountValues:
    total_expected_value: Decimal
    total_counted_value: Decimal
    value_difference: Decimal


@dataclass
class CountSummary:
    stock_count: StockCount
    statistics: CountStatistics
    quantities: CountQuantities
    values: CountValues


def summary(db: Session, count_id: int, *, ledger: StockLedger | None = None) -> CountSummary:
    count = get_session(db, count_id)
    items = _load_items(db, count.id)

    ledger = ledger or SqlStockLedger(db)
    unit_values = ledger.get_product_unit_values(i.product_id for i in items)

    total = len(items)
    matched = sum(1 for i in items if i.difference == 0)
    surplus = sum(1 for i in items if i.difference > 0)
    deficit = sum(1 for i in items if i.difference < 0)

    total_expected = sum(i.expected_quantity for i in items)
    total_counted = sum(i.counted_quantity for i in items)

    expected_value = Decimal("0")
    counted_value = Decimal("0")
    for i in items:
        unit = unit_values.get(i.product_id, Decimal("0"))
        expected_value += i.expected_quantity * unit
        counted_value += i.counted_quantity * unit

    return CountSummary(
        stock_count=count,
        statistics=CountStatistics(
            total_items=total,
            items_matched=matched,
            items_with_discrepancy=total - matched,
            items_surplus=surplus,
            items_deficit=deficit,
            match_rate=_rate(matched, total),
        ),
        quantities=CountQuantities(
            total_expected=total_expected,
            total_counted=total_counted,
            net_difference=total_counted - total_expected,
        ),
        values=CountValues(
            total_expected_value=expected_value,
            total_counted_value=counted_value,
            value_difference=counted_value - expected_value,
        ),
    )


# ---------- Rapport multi-inventaires ----------
@dataclass
class StockCountReportRow:
    id: int
    count_number: str
    count_date: date | None
    warehouse_name: str | None
    status: StockCountStatus
    item_count: int
    items_with_discrepancy: int
    total_expected: int
    total_counted: int
    absolute_difference: int

    @property
    def total_difference(self) -> int:
        return self.total_counted - self.total_expected

    @property
    def accuracy_rate(self) -> float:
        return _rate(self.item_count - self.items_with_discrepancy, self.item_count)


@dataclass
class StockCountsReport:
    rows: list[StockCountReportRow]
    total_counts: int
    validated_counts: int
    pending_counts: int


def stock_counts_report(
    db: Session,
    *,
    limit: int = 10,
    warehouse_id: int | None = None,
) -> StockCountsReport:
    stmt = (
        select(
            StockCount.id,
            StockCount.count_number,
            StockCount.count_date,
            Warehouse.name,
            StockCount.status,
            func.count(StockCountItem.id),
            func.coalesce(func.sum(case((StockCountItem.difference != 0, 1), else_=0)), 0),
            func.coalesce(func.sum(StockCountItem.expected_quantity), 0),
            func.coalesce(func.sum(StockCountItem.counted_quantity), 0),
            func.coalesce(func.sum(func.abs(StockCountItem.difference)), 0),
        )
        .join(Warehouse, Warehouse.id == StockCount.warehouse_id)
        .outerjoin(StockCountItem, StockCountItem.stock_count_id == StockCount.id)
        .group_by(
            StockCount.id,
            StockCount.count_number,
            StockCount.count_date,
            Warehouse.name,
            StockCount.status,
        )
        .order_by(StockCount.count_date.desc(), StockCount.id.desc())
        .limit(limit)
    )
    totals_stmt = select(
        func.count(StockCount.id),
        func.coalesce(func.sum(case((StockCount.status == StockCountStatus.validated, 1), else_=0)), 0),
        func.coalesce(func.sum(case((StockCount.status.in_(PENDING_STATUSES), 1), else_=0)), 0),
    )
    if warehouse_id is not None:
        stmt = stmt.where(StockCount.warehouse_id == warehouse_id)
        totals_stmt = totals_stmt.where(StockCount.warehouse_id == warehouse_id)

    rows = [
        StockCountReportRow(
            id=int(cid),
            count_number=number,
            count_date=cdate,
            warehouse_name=wname,
            status=status,
            item_count=int(n_items),
            items_with_discrepancy=int(n_disc),
            total_expected=int(expected),
            total_counted=int(counted),
            absolute_difference=int(absdiff),
        )
        for cid, number, cdate, wname, status, n_items, n_disc, expected, counted, absdiff in db.execute(stmt).all()
    ]
    total, validated, pending = db.execute(totals_stmt).one()

    return StockCountsReport(
        rows=rows,
        total_counts=int(total),
        validated_counts=int(validated),
        pending_counts=int(pending),
    )


# ---------- Export ----------
class StockCountRenderer(Protocol):
    """Rendu document (PDF, etc.) fourni par l'appelant ; hors moteur."""

    def render(self, count: StockCount, summary: CountSummary) -> bytes: ...


def export_stock_count(
    db: Session,
    count_id: int,
    renderer: StockCountRenderer,
    *,
    ledger: StockLedger | None = None,
) -> bytes:
    count_summary = summary(db, count_id, ledger=ledger)
    return renderer.render(count_summary.stock_count, count_summary)

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel

from backend.app.db.models.core_types import StockCountStatus


class StockCountItemRead(BaseModel):
    id: int
    stock_count_id: int
    product_id: int

    expected_quantity: int
    counted_quantity: int
    difference: int  # READ ONLY : counted - expected, recalculé à chaque lecture
    notes: str | None = None

    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StockCountRead(BaseModel):
    id: int
    count_number: str
    warehouse_id: int
    count_date: date
    notes: str | None = None
    status: StockCountStatus
    status_display: str
    item_count: int

    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    validated_at: datetime | None = None
    cancelled_at: datetime | None = None

    class Config:
        from_attributes = True


class StockCountDetail(StockCountRead):
    items: list[StockCountItemRead] = []


class StockCountStatistics(BaseModel):
    total_items: int
    items_matched: int
    items_with_discrepancy: int
    items_surplus: int
    items_deficit: int
    match_rate: float

    class Config:
        from_attributes = True


class StockCountQuantities(BaseModel):
    total_expected: int
    total_counted: int
    net_difference: int

    class Config:
        from_attributes = True


class StockCountValues(BaseModel):
    total_expected_value: Decimal
    total_counted_value: Decimal
    value_difference: Decimal

    class Config:
        from_attributes = True


class StockCountSummaryRead(BaseModel):
    count_number: str
    warehouse_name: str
    count_date: date
    status: StockCountStatus
    status_display: str
    notes: str | None = None
    statistics: StockCountStatistics
    quantities: StockCountQuantities
    values: StockCountValues
    created_at: datetime
    updated_at: datetime


class DiscrepancyItemRead(BaseModel):
    id: int
    product_id: int
    product_sku: str
    product_name: str
    expected_quantity: int
    counted_quantity: int
    difference: int
    difference_value: Decimal
    notes: str | None = None


class DiscrepanciesRead(BaseModel):
    count_number: str
    warehouse_name: str
    status: StockCountStatus
    discrepancy_count: int
    total_surplus: int
    total_deficit: int
    total_value_impact: Decimal
    items: list[DiscrepancyItemRead]


class StockCountReportRowRead(BaseModel):
    id: int
    count_number: str
    count_date: date | None = None
    warehouse_name: str | None = None
    status: StockCountStatus
    item_count: int
    items_with_discrepancy: int
    total_expected: int
    total_counted: int
    total_difference: int
    absolute_difference: int
    accuracy_rate: float

    class Config:
        from_attributes = True

from __future__ import annotations

from datetime import date
from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.db.models.core_types import StockCountStatus
from backend.app.schemas.stock_count import (
    DiscrepanciesRead,
    StockCountDetail,
    StockCountItemRead,
    StockCountRead,
    StockCountReportRowRead,
    StockCountSummaryRead,
)
from backend.services import reconciliation
from backend.services import stock_count_generator as generator
from backend.services import stock_count_lifecycle as lifecycle
from backend.services import stock_count_store as store

router = APIRouter(prefix="/stock-counts")


# ---------- Schemas ----------
class StockCountCreate(BaseModel):
    warehouse_id: int
    count_number: str | None = Field(default=None, min_length=1, max_length=64)
    count_date: date | None = None
    status: StockCountStatus = StockCountStatus.planned
    notes: str | None = None


class StockCountUpdate(BaseModel):
    warehouse_id: int | None = None
    count_number: str | None = Field(default=None, min_length=1, max_length=64)
    count_date: date | None = None
    notes: str | None = None


class StockCountItemCreate(BaseModel):
    product_id: int
    expected_quantity: int | None = Field(default=None, ge=0)
    counted_quantity: int = Field(default=0, ge=0)
    notes: str | None = None


class StockCountItemUpdate(BaseModel):
    counted_quantity: int = Field(ge=0)
    notes: str | None = None


class StockCountItemBatchLine(StockCountItemUpdate):
    item_id: int


class GenerateItemsOptions(BaseModel):
    include_zero_stock: bool = False
    overwrite: bool = False
    category_id: int | None = None


# ---------- Helpers ----------
def _detail(count) -> StockCountDetail:
    return StockCountDetail.model_validate(count)


# ---------- Sessions ----------
@router.get("")
def list_stock_counts(
    warehouse_id: int | None = None,
    status: StockCountStatus | None = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    rows, total = store.list_sessions(db, warehouse_id=warehouse_id, status=status, skip=skip, limit=limit)
    return {"count": total, "results": [StockCountRead.model_validate(c) for c in rows]}


@router.post("", status_code=201, response_model=StockCountDetail)
def create_stock_count(payload: StockCountCreate, db: Session = Depends(get_db)):
    count = store.create_session(
        db,
        warehouse_id=payload.warehouse_id,
        count_date=payload.count_date,
        notes=payload.notes,
        count_number=payload.count_number,
        status=payload.status,
    )
    return _detail(count)


@router.get("/report")
def stock_counts_report(
    limit: int = 10,
    warehouse_id: int | None = None,
    db: Session = Depends(get_db),
):
    report = reconciliation.stock_counts_report(db, limit=limit, warehouse_id=warehouse_id)
    return {
        "stock_counts": [StockCountReportRowRead.model_validate(r) for r in report.rows],
        "summary": {
            "total_counts": report.total_counts,
            "validated_counts": report.validated_counts,
            "pending_counts": report.pending_counts,
        },
    }


@router.get("/{count_id}", response_model=StockCountDetail)
def get_stock_count(count_id: int, db: Session = Depends(get_db)):
    return _detail(store.get_session(db, count_id))


@router.patch("/{count_id}", response_model=StockCountDetail)
def update_stock_count(count_id: int, payload: StockCountUpdate, db: Session = Depends(get_db)):
    count = store.update_session(db, count_id, **payload.model_dump(exclude_unset=True))
    return _detail(count)


@router.delete("/{count_id}", status_code=204)
def delete_stock_count(count_id: int, db: Session = Depends(get_db)):
    store.delete_session(db, count_id)
    return Response(status_code=204)


# ---------- Workflow ----------
@router.post("/{count_id}/start", response_model=StockCountDetail)
def start_stock_count(count_id: int, db: Session = Depends(get_db)):
    return _detail(lifecycle.start(db, count_id))


@router.post("/{count_id}/complete", response_model=StockCountDetail)
def complete_stock_count(count_id: int, db: Session = Depends(get_db)):
    return _detail(lifecycle.complete(db, count_id))


@router.post("/{count_id}/validate")
def validate_stock_count(count_id: int, db: Session = Depends(get_db)):
    result = lifecycle.validate(db, count_id)
    return {
        "stock_count": _detail(result.stock_count),
        "adjustments_applied": len(result.adjustments),
    }


@router.post("/{count_id}/cancel", response_model=StockCountDetail)
def cancel_stock_count(count_id: int, db: Session = Depends(get_db)):
    return _detail(lifecycle.cancel(db, count_id))


# ---------- Actions automatisées ----------
@router.post("/{count_id}/generate-items")
def generate_stock_count_items(
    count_id: int,
    options: GenerateItemsOptions | None = None,
    db: Session = Depends(get_db),
):
    options = options or GenerateItemsOptions()
    report = generator.generate_items(
        db,
        count_id,
        include_zero_stock=options.include_zero_stock,
        overwrite=options.overwrite,
        category_id=options.category_id,
    )
    return {
        "stock_count": _detail(report.stock_count),
        "items_created": report.created,
        "items_skipped": report.skipped,
        "total_items": report.total_items,
        "message": report.message,
    }


@router.post("/{count_id}/auto-fill-counts")
def auto_fill_stock_counts(count_id: int, db: Session = Depends(get_db)):
    report = generator.auto_fill_counts(db, count_id)
    return {
        "stock_count": _detail(report.stock_count),
        "items_updated": report.updated,
        "message": f"{report.updated} item(s) updated",
    }


@router.get("/{count_id}/discrepancies", response_model=DiscrepanciesRead)
def get_discrepancies(count_id: int, db: Session = Depends(get_db)):
    report = reconciliation.discrepancies(db, count_id)
    count = report.stock_count
    return {
        "count_number": count.count_number,
        "warehouse_name": count.warehouse.name,
        "status": count.status,
        "discrepancy_count": report.discrepancy_count,
        "total_surplus": report.total_surplus,
        "total_deficit": report.total_deficit,
        "total_value_impact": report.total_value_impact,
        "items": [
            {
                "id": line.item.id,
                "product_id": line.item.product_id,
                "product_sku": line.item.product.sku,
                "product_name": line.item.product.name,
                "expected_quantity": line.item.expected_quantity,
                "counted_quantity": line.item.counted_quantity,
                "difference": line.difference,
                "difference_value": line.difference_value,
                "notes": line.item.notes,
            }
            for line in report.lines
        ],
    }


@router.get("/{count_id}/summary", response_model=StockCountSummaryRead)
def get_summary(count_id: int, db: Session = Depends(get_db)):
    s = reconciliation.summary(db, count_id)
    count = s.stock_count
    return {
        "count_number": count.count_number,
        "warehouse_name": count.warehouse.name,
        "count_date": count.count_date,
        "status": count.status,
        "status_display": count.status_display,
        "notes": count.notes,
        "statistics": s.statistics,
        "quantities": s.quantities,
        "values": s.values,
        "created_at": count.created_at,
        "updated_at": count.updated_at,
    }


# ---------- Items ----------
@router.get("/{count_id}/items")
def list_stock_count_items(count_id: int, db: Session = Depends(get_db)):
    count = store.get_session(db, count_id)
    return {"count": len(count.items), "results": [StockCountItemRead.model_validate(i) for i in count.items]}


@router.post("/{count_id}/items", status_code=201, response_model=StockCountItemRead)
def add_stock_count_item(count_id: int, payload: StockCountItemCreate, db: Session = Depends(get_db)):
    return store.add_item(
        db,
        count_id,
        product_id=payload.product_id,
        expected_quantity=payload.expected_quantity,
        counted_quantity=payload.counted_quantity,
        notes=payload.notes,
    )


@router.post("/{count_id}/items/batch", response_model=list[StockCountItemRead])
def batch_update_stock_count_items(
    count_id: int,
    payload: list[StockCountItemBatchLine],
    db: Session = Depends(get_db),
):
    return store.batch_update_counts(db, count_id, [line.model_dump() for line in payload])


@router.patch("/{count_id}/items/{item_id}", response_model=StockCountItemRead)
def update_stock_count_item(
    count_id: int,
    item_id: int,
    payload: StockCountItemUpdate,
    db: Session = Depends(get_db),
):
    return store.update_item_count(
        db,
        count_id,
        item_id,
        counted_quantity=payload.counted_quantity,
        notes=payload.notes,
    )


@router.delete("/{count_id}/items/{item_id}", response_model=StockCountDetail)
def delete_stock_count_item(count_id: int, item_id: int, db: Session = Depends(get_db)):
    return _detail(store.delete_item(db, count_id, item_id))

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.db.models.models_v1 import StockMovement
from backend.app.db.session import transaction
from backend.services.errors import LedgerError
from backend.services.ledger import SqlStockLedger

router = APIRouter(prefix="/stock-movements")


# ---------- Schemas ----------
class MovementCreate(BaseModel):
    product_id: int
    warehouse_id: int
    quantity: int = Field(gt=0)
    reason: str | None = None


# ---------- Helpers ----------
def _require_idempotency_key(idempotency_key: str | None) -> str:
    if not idempotency_key or not idempotency_key.strip():
        raise HTTPException(status_code=400, detail="Missing Idempotency-Key header")
    return idempotency_key.strip()


def _movement_out(mv: StockMovement) -> dict:
    return {
        "id": int(mv.id),
        "product_id": mv.product_id,
        "movement_type": mv.movement_type,
        "quantity": mv.quantity,
        "signed_quantity": mv.signed_quantity,
        "reference": mv.reference,
        "idempotency_key": mv.idempotency_key,
        "happened_at": mv.happened_at,
    }


# ---------- Endpoints ----------
@router.get("")
def list_movements(
    reference: str | None = None,
    product_id: int | None = None,
    db: Session = Depends(get_db),
):
    stmt = select(StockMovement).order_by(StockMovement.id)
    if reference is not None:
        stmt = stmt.where(StockMovement.reference == reference)
    if product_id is not None:
        stmt = stmt.where(StockMovement.product_id == product_id)

    return [_movement_out(mv) for mv in db.execute(stmt).scalars().all()]


@router.post("/receipt")
def receive_stock(
    payload: MovementCreate,
    db: Session = Depends(get_db),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    idem = _require_idempotency_key(idempotency_key)
    try:
        with transaction(db):
            mv = SqlStockLedger(db).receive(
                payload.warehouse_id,
                payload.product_id,
                payload.quantity,
                idempotency_key=idem,
                reason=payload.reason,
            )
    except LedgerError as exc:
        raise HTTPException(status_code=400, detail=exc.detail) from exc
    return _movement_out(mv)


@router.post("/issue")
def issue_stock(
    payload: MovementCreate,
    db: Session = Depends(get_db),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    idem = _require_idempotency_key(idempotency_key)
    try:
        with transaction(db):
            mv = SqlStockLedger(db).issue(
                payload.warehouse_id,
                payload.product_id,
                payload.quantity,
                idempotency_key=idem,
                reason=payload.reason,
            )
    except LedgerError as exc:
        raise HTTPException(status_code=400, detail=exc.detail) from exc
    return _movement_out(mv)

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.db.models.models_v1 import StockLevel, Product
from backend.app.schemas.stock_level import StockLevelRead

router = APIRouter(prefix="/stock")


@router.get(
    "",
    response_model=list[StockLevelRead],
)
def get_stock(
    warehouse_id: int | None = None,
    product_id: int | None = None,
    db: Session = Depends(get_db),
):
    """
    Stock (READ ONLY)
    - qty_on_hand ne bouge que via des mouvements (réception, sortie,
      ajustement d'inventaire validé)
    """

    stmt = (
        select(StockLevel)
        .join(Product, Product.id == StockLevel.product_id)
        .order_by(StockLevel.warehouse_id, Product.sku)
    )

    if warehouse_id is not None:
        stmt = stmt.where(StockLevel.warehouse_id == warehouse_id)

    if product_id is not None:
        stmt = stmt.where(StockLevel.product_id == product_id)

    stock_levels = db.execute(stmt).scalars().all()
    return stock_levels

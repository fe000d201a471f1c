from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.db.models.models_v1 import Category, Product

router = APIRouter(prefix="/products")


class ProductCreate(BaseModel):
    sku: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    uom: str = Field(default="unit", min_length=1, max_length=32)
    category_id: int | None = None
    unit_cost: Decimal = Field(default=Decimal("0"), ge=0)
    active: bool = True


@router.get("")
def list_products(category_id: int | None = None, db: Session = Depends(get_db)):
    stmt = select(Product).order_by(Product.sku)
    if category_id is not None:
        stmt = stmt.where(Product.category_id == category_id)

    rows = db.execute(stmt).scalars().all()
    return [
        {
            "id": p.id,
            "sku": p.sku,
            "name": p.name,
            "uom": p.uom,
            "category_id": p.category_id,
            "unit_cost": p.unit_cost,
            "active": p.active,
        }
        for p in rows
    ]


@router.post("", status_code=201)
def create_product(payload: ProductCreate, db: Session = Depends(get_db)):
    exists = db.execute(select(Product).where(Product.sku == payload.sku)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="SKU already exists")
    if payload.category_id is not None and db.get(Category, payload.category_id) is None:
        raise HTTPException(status_code=404, detail="Category not found")

    p = Product(
        sku=payload.sku,
        name=payload.name,
        uom=payload.uom,
        category_id=payload.category_id,
        unit_cost=payload.unit_cost,
        active=payload.active,
    )
    db.add(p)
    db.commit()
    db.refresh(p)

    return {"id": p.id, "sku": p.sku, "name": p.name}

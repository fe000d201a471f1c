from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.db.models.models_v1 import Category, Warehouse

router = APIRouter()


class WarehouseCreate(BaseModel):
    code: str = Field(min_length=1, max_length=32)
    name: str = Field(min_length=1, max_length=200)
    active: bool = True


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)


@router.get("/warehouses")
def list_warehouses(active: bool | None = None, db: Session = Depends(get_db)):
    stmt = select(Warehouse).order_by(Warehouse.code)
    if active is not None:
        stmt = stmt.where(Warehouse.active.is_(active))

    rows = db.execute(stmt).scalars().all()
    return [{"id": w.id, "code": w.code, "name": w.name, "active": w.active} for w in rows]


@router.post("/warehouses", status_code=201)
def create_warehouse(payload: WarehouseCreate, db: Session = Depends(get_db)):
    exists = db.execute(select(Warehouse).where(Warehouse.code == payload.code)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Warehouse code already exists")

    w = Warehouse(code=payload.code, name=payload.name, active=payload.active)
    db.add(w)
    db.commit()
    db.refresh(w)
    return {"id": w.id, "code": w.code, "name": w.name}


@router.get("/categories")
def list_categories(db: Session = Depends(get_db)):
    rows = db.execute(select(Category).order_by(Category.name)).scalars().all()
    return [{"id": c.id, "name": c.name} for c in rows]


@router.post("/categories", status_code=201)
def create_category(payload: CategoryCreate, db: Session = Depends(get_db)):
    exists = db.execute(select(Category).where(Category.name == payload.name)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Category already exists")

    c = Category(name=payload.name)
    db.add(c)
    db.commit()
    db.refresh(c)
    return {"id": c.id, "name": c.name}

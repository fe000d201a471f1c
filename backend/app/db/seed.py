from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select

from backend.app.db.models.models_v1 import Category, Product, Warehouse
from backend.app.db.session import SessionLocal, transaction
from backend.services.ledger import SqlStockLedger

DEMO_PRODUCTS = [
    # sku, name, unit_cost, qty
    ("RIZ-5KG", "Riz parfumé 5kg", Decimal("12.50"), 40),
    ("HUILE-1L", "Huile 1L", Decimal("4.20"), 25),
    ("SUCRE-1KG", "Sucre 1kg", Decimal("2.10"), 0),
]


def run_seed():
    db = SessionLocal()
    try:
        with transaction(db):
            wh = db.scalar(select(Warehouse).where(Warehouse.code == "MAIN"))
            if not wh:
                wh = Warehouse(code="MAIN", name="Entrepôt principal", active=True)
                db.add(wh)

            cat = db.scalar(select(Category).where(Category.name == "Épicerie"))
            if not cat:
                cat = Category(name="Épicerie")
                db.add(cat)
            db.flush()

            ledger = SqlStockLedger(db)
            for sku, name, cost, qty in DEMO_PRODUCTS:
                p = db.scalar(select(Product).where(Product.sku == sku))
                if not p:
                    p = Product(sku=sku, name=name, category_id=cat.id, unit_cost=cost)
                    db.add(p)
                    db.flush()
                if qty:
                    ledger.receive(wh.id, p.id, qty, idempotency_key=f"seed-{sku}", reason="seed")

        print(f"SEED OK: warehouse=MAIN, products={len(DEMO_PRODUCTS)}")
    finally:
        db.close()


if __name__ == "__main__":
    run_seed()

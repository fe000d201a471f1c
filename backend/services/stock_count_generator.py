"""
Génération des lignes d'inventaire à partir du stock de l'entrepôt.

Règle métier :
    - une ligne par produit présent au ledger pour l'entrepôt
      (optionnellement une seule catégorie)
    - expected_quantity = quantité en main au moment de la génération
    - counted_quantity = 0

Propriétés :
    - overwrite=True : idempotent (on remplace tout, même résultat)
    - overwrite=False : additif, un produit déjà présent est ignoré
      silencieusement (jamais de doublon, jamais d'erreur)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import Category, StockCount, StockCountItem
from backend.app.db.session import transaction
from backend.services.errors import NotFound
from backend.services.ledger import SqlStockLedger, StockLedger
from backend.services.stock_count_store import ensure_editable, get_count_for_update

logger = logging.getLogger(__name__)


@dataclass
class GenerateReport:
    stock_count: StockCount
    created: int
    skipped: int

    @property
    def total_items(self) -> int:
        return len(self.stock_count.items)

    @property
    def message(self) -> str:
        return f"{self.created} item(s) created, {self.skipped} skipped"


@dataclass
class AutoFillReport:
    stock_count: StockCount
    updated: int


def generate_items(
    db: Session,
    count_id: int,
    *,
    include_zero_stock: bool = False,
    overwrite: bool = False,
    category_id: int | None = None,
    ledger: StockLedger | None = None,
) -> GenerateReport:
    with transaction(db):
        count = get_count_for_update(db, count_id)
        ensure_editable(count, "generate items")

        if category_id is not None and db.get(Category, category_id) is None:
            raise NotFound(f"Category {category_id} not found")

        ledger = ledger or SqlStockLedger(db)
        snapshot = ledger.get_on_hand_quantities(count.warehouse_id, category_id=category_id)
        if not include_zero_stock:
            snapshot = {pid: qty for pid, qty in snapshot.items() if qty > 0}

        if overwrite and count.items:
            count.items.clear()
            # les DELETE doivent partir avant les INSERT (unicité count/produit)
            db.flush()

        present = {item.product_id for item in count.items}
        created = skipped = 0
        for pid in sorted(snapshot):
            if pid in present:
                skipped += 1
                continue
            count.items.append(
                StockCountItem(product_id=pid, expected_quantity=snapshot[pid], counted_quantity=0)
            )
            created += 1
        db.flush()

    logger.info(
        "stock count %s: generated items created=%d skipped=%d overwrite=%s",
        count.count_number, created, skipped, overwrite,
    )
    return GenerateReport(stock_count=count, created=created, skipped=skipped)


def auto_fill_counts(db: Session, count_id: int) -> AutoFillReport:
    """Pré-remplit counted = expected sur toutes les lignes (contrôle rapide)."""
    with transaction(db):
        count = get_count_for_update(db, count_id)
        ensure_editable(count, "auto-fill counts")

        for item in count.items:
            item.counted_quantity = item.expected_quantity
        updated = len(count.items)
        db.flush()

    logger.info("stock count %s: auto-filled %d item(s)", count.count_number, updated)
    return AutoFillReport(stock_count=count, updated=updated)

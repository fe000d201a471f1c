"""
Stock ledger.

Le moteur d'inventaire ne possède PAS le stock : il le lit (quantités en
main, valeurs unitaires) et y écrit des mouvements d'ajustement au moment
de la validation. Tout passe par le protocole `StockLedger` ;
`SqlStockLedger` est l'implémentation sur nos tables stock_levels /
stock_movements.

Règles :
    - les écritures ne commit jamais : elles s'exécutent dans la
      transaction de l'appelant (validation = une seule unité)
    - verrouillage SQL (FOR UPDATE) par couple (produit, entrepôt)
    - idempotence par idempotency_key (rejeu = pas de double écriture) ;
      une clé déjà prise par un AUTRE mouvement est une erreur
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.db.models.core_types import MovementType
from backend.app.db.models.models_v1 import Product, StockLevel, StockMovement, Warehouse
from backend.services.errors import InvalidInput, LedgerError, NotFound

logger = logging.getLogger(__name__)


class StockLedger(Protocol):
    def get_on_hand_quantity(self, warehouse_id: int, product_id: int) -> int: ...

    def get_on_hand_quantities(
        self, warehouse_id: int, *, category_id: int | None = None
    ) -> dict[int, int]: ...

    def get_product_unit_value(self, product_id: int) -> Decimal: ...

    def get_product_unit_values(self, product_ids: Iterable[int]) -> dict[int, Decimal]: ...

    def record_adjustment(
        self,
        warehouse_id: int,
        product_id: int,
        signed_quantity: int,
        *,
        reference: str,
    ) -> StockMovement | None: ...


# préfixe réservé aux ajustements d'inventaire : interdit aux clés fournies par les clients
ADJUSTMENT_KEY_PREFIX = "stock-count:"


def adjustment_key(reference: str, product_id: int) -> str:
    return f"{reference}:p{product_id}"


def check_client_key(idempotency_key: str) -> str:
    if idempotency_key.startswith(ADJUSTMENT_KEY_PREFIX):
        raise InvalidInput(
            f"Idempotency key prefix {ADJUSTMENT_KEY_PREFIX!r} is reserved for stock count adjustments"
        )
    return idempotency_key


class SqlStockLedger:
    def __init__(self, db: Session):
        self.db = db

    # ---------- LECTURE ----------
    def get_on_hand_quantity(self, warehouse_id: int, product_id: int) -> int:
        if self.db.get(Product, product_id) is None:
            raise NotFound(f"Product {product_id} not found")

        qty = self.db.execute(
            select(StockLevel.qty_on_hand)
            .where(StockLevel.product_id == product_id)
            .where(StockLevel.warehouse_id == warehouse_id)
        ).scalar_one_or_none()
        return int(qty or 0)

    def get_on_hand_quantities(
        self, warehouse_id: int, *, category_id: int | None = None
    ) -> dict[int, int]:
        """
        Snapshot {product_id: qty_on_hand} des produits actifs ayant une
        ligne de stock dans l'entrepôt, trié par product_id.
        """
        stmt = (
            select(StockLevel.product_id, StockLevel.qty_on_hand)
            .join(Product, Product.id == StockLevel.product_id)
            .where(StockLevel.warehouse_id == warehouse_id)
            .where(Product.active.is_(True))
            .order_by(StockLevel.product_id.asc())
        )
        if category_id is not None:
            stmt = stmt.where(Product.category_id == category_id)

        return {int(pid): int(qty) for pid, qty in self.db.execute(stmt).all()}

    def get_product_unit_value(self, product_id: int) -> Decimal:
        product = self.db.get(Product, product_id)
        if product is None:
            raise NotFound(f"Product {product_id} not found")
        return Decimal(product.unit_cost)

    def get_product_unit_values(self, product_ids: Iterable[int]) -> dict[int, Decimal]:
        ids = sorted({int(pid) for pid in product_ids})
        if not ids:
            return {}
        rows = self.db.execute(select(Product.id, Product.unit_cost).where(Product.id.in_(ids))).all()
        return {int(pid): Decimal(cost) for pid, cost in rows}

    # ---------- ÉCRITURE ----------
    def _get_or_create_stock_level(self, product_id: int, warehouse_id: int) -> StockLevel:
        sl = (
            self.db.execute(
                select(StockLevel)
                .where(StockLevel.product_id == product_id)
                .where(StockLevel.warehouse_id == warehouse_id)
                .with_for_update()
            )
            .scalar_one_or_none()
        )
        if sl:
            return sl

        sl = StockLevel(product_id=product_id, warehouse_id=warehouse_id, qty_on_hand=0, qty_reserved=0)
        self.db.add(sl)
        self.db.flush()
        return sl

    def _find_existing_movement(self, idem: str) -> StockMovement | None:
        return self.db.execute(
            select(StockMovement).where(StockMovement.idempotency_key == idem)
        ).scalar_one_or_none()

    @staticmethod
    def _check_replay(
        existing: StockMovement,
        *,
        warehouse_id: int,
        product_id: int,
        signed_quantity: int,
        movement_type: MovementType,
    ) -> StockMovement:
        """Même clé = même mouvement, sinon la clé a été réutilisée pour autre chose."""
        warehouse = existing.to_warehouse_id if signed_quantity > 0 else existing.from_warehouse_id
        if (
            existing.movement_type != movement_type
            or existing.product_id != product_id
            or warehouse != warehouse_id
            or existing.signed_quantity != signed_quantity
        ):
            raise LedgerError(
                f"Idempotency key {existing.idempotency_key} already used by another movement "
                f"({existing.movement_type.value} product={existing.product_id} qty={existing.signed_quantity:+d})"
            )
        return existing

    def _apply(
        self,
        *,
        warehouse_id: int,
        product_id: int,
        signed_quantity: int,
        movement_type: MovementType,
        idempotency_key: str,
        reference: str | None = None,
        reason: str | None = None,
    ) -> StockMovement:
        existing = self._find_existing_movement(idempotency_key)
        if existing:
            return self._check_replay(
                existing,
                warehouse_id=warehouse_id,
                product_id=product_id,
                signed_quantity=signed_quantity,
                movement_type=movement_type,
            )

        if self.db.get(Warehouse, warehouse_id) is None:
            raise LedgerError(f"Warehouse {warehouse_id} not found in ledger")
        if self.db.get(Product, product_id) is None:
            raise LedgerError(f"Product {product_id} not found in ledger")

        sl = self._get_or_create_stock_level(product_id, warehouse_id)

        new_on_hand = sl.qty_on_hand + signed_quantity
        if new_on_hand < 0:
            raise LedgerError(
                f"Insufficient on hand for product {product_id} "
                f"(on_hand={sl.qty_on_hand}, delta={signed_quantity})"
            )
        if new_on_hand < sl.qty_reserved:
            raise LedgerError(
                f"Adjustment would drop product {product_id} below reserved "
                f"(reserved={sl.qty_reserved}, on_hand_after={new_on_hand})"
            )

        sl.qty_on_hand = new_on_hand

        mv = StockMovement(
            product_id=product_id,
            from_warehouse_id=warehouse_id if signed_quantity < 0 else None,
            to_warehouse_id=warehouse_id if signed_quantity > 0 else None,
            movement_type=movement_type,
            quantity=abs(signed_quantity),
            reason=reason,
            reference=reference,
            idempotency_key=idempotency_key,
        )
        self.db.add(mv)
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise LedgerError(f"Ledger rejected movement {idempotency_key}: {exc.orig}") from exc
        return mv

    def record_adjustment(
        self,
        warehouse_id: int,
        product_id: int,
        signed_quantity: int,
        *,
        reference: str,
    ) -> StockMovement | None:
        if signed_quantity == 0:
            return None

        mv = self._apply(
            warehouse_id=warehouse_id,
            product_id=product_id,
            signed_quantity=signed_quantity,
            movement_type=MovementType.adjustment,
            idempotency_key=adjustment_key(reference, product_id),
            reference=reference,
            reason="Physical inventory adjustment",
        )
        logger.debug(
            "adjustment product=%s warehouse=%s delta=%+d ref=%s",
            product_id, warehouse_id, signed_quantity, reference,
        )
        return mv

    def receive(
        self,
        warehouse_id: int,
        product_id: int,
        quantity: int,
        *,
        idempotency_key: str,
        reason: str | None = None,
    ) -> StockMovement:
        if quantity <= 0:
            raise InvalidInput("quantity must be > 0")
        check_client_key(idempotency_key)
        return self._apply(
            warehouse_id=warehouse_id,
            product_id=product_id,
            signed_quantity=quantity,
            movement_type=MovementType.receipt,
            idempotency_key=idempotency_key,
            reason=reason,
        )

    def issue(
        self,
        warehouse_id: int,
        product_id: int,
        quantity: int,
        *,
        idempotency_key: str,
        reason: str | None = None,
    ) -> StockMovement:
        if quantity <= 0:
            raise InvalidInput("quantity must be > 0")
        check_client_key(idempotency_key)
        return self._apply(
            warehouse_id=warehouse_id,
            product_id=product_id,
            signed_quantity=-quantity,
            movement_type=MovementType.issue,
            idempotency_key=idempotency_key,
            reason=reason,
        )

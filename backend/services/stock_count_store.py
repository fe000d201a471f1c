"""
Stock counts : stockage des sessions d'inventaire et de leurs lignes.

Chaque opération qui écrit :
    - s'exécute dans UNE transaction (backend.app.db.session.transaction)
    - verrouille la ligne stock_counts (FOR UPDATE) avant de toucher aux items
    - vérifie entrée / existence / statut AVANT toute mutation
    - retourne directement l'entité à jour (pas de re-fetch côté client)
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from backend.app.db.models.core_types import EDITABLE_STATUSES, StockCountStatus
from backend.app.db.models.models_v1 import Product, StockCount, StockCountItem, Warehouse
from backend.app.db.session import transaction
from backend.services.errors import Conflict, InvalidInput, InvalidState, NotFound
from backend.services.ledger import SqlStockLedger, StockLedger

logger = logging.getLogger(__name__)

INITIAL_STATUSES = frozenset({StockCountStatus.planned, StockCountStatus.draft})
DELETABLE_STATUSES = frozenset(
    {StockCountStatus.planned, StockCountStatus.draft, StockCountStatus.cancelled}
)
COUNT_NUMBER_ATTEMPTS = 2
UPDATABLE_FIELDS = frozenset({"count_number", "count_date", "notes", "warehouse_id"})


# ---------- Helpers ----------
def coerce_status(value: StockCountStatus | str) -> StockCountStatus:
    try:
        return StockCountStatus(value)
    except ValueError:
        raise InvalidInput(f"Unknown stock count status: {value!r}") from None


def check_quantity(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(f"{name} must be an integer")
    if value < 0:
        raise InvalidInput(f"{name} must be >= 0 (got {value})")
    return value


def get_count_for_update(db: Session, count_id: int) -> StockCount:
    count = db.execute(
        select(StockCount)
        .where(StockCount.id == count_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if count is None:
        raise NotFound(f"Stock count {count_id} not found")
    return count


def ensure_editable(count: StockCount, action: str) -> None:
    if count.status not in EDITABLE_STATUSES:
        raise InvalidState(
            f"Stock count {count.count_number} is {count.status.value}; cannot {action}"
        )


def _get_item(db: Session, count_id: int, item_id: int) -> StockCountItem:
    item = db.execute(
        select(StockCountItem)
        .where(StockCountItem.id == item_id)
        .where(StockCountItem.stock_count_id == count_id)
    ).scalar_one_or_none()
    if item is None:
        raise NotFound(f"Item {item_id} not found in stock count {count_id}")
    return item


def _next_count_number(db: Session, count_date: date) -> str:
    """INV-YYYYMMDD-NNN, séquence par jour."""
    prefix = f"INV-{count_date.strftime('%Y%m%d')}-"
    taken = db.scalar(
        select(func.count()).select_from(StockCount).where(StockCount.count_number.like(f"{prefix}%"))
    ) or 0
    seq = taken + 1
    while db.scalar(select(StockCount.id).where(StockCount.count_number == f"{prefix}{seq:03d}")):
        seq += 1
    return f"{prefix}{seq:03d}"


def _ensure_count_number_free(db: Session, count_number: str, *, exclude_id: int | None = None) -> None:
    stmt = select(StockCount.id).where(StockCount.count_number == count_number)
    if exclude_id is not None:
        stmt = stmt.where(StockCount.id != exclude_id)
    if db.scalar(stmt) is not None:
        raise Conflict(f"Count number {count_number} already exists")


def _normalize_count_number(count_number: str | None) -> str | None:
    if count_number is None:
        return None
    count_number = count_number.strip()
    if not count_number:
        raise InvalidInput("count_number cannot be blank")
    return count_number


# ---------- Sessions ----------
def create_session(
    db: Session,
    *,
    warehouse_id: int | None,
    count_date: date | None = None,
    notes: str | None = None,
    count_number: str | None = None,
    status: StockCountStatus | str = StockCountStatus.planned,
) -> StockCount:
    if warehouse_id is None:
        raise InvalidInput("warehouse_id is required")
    status = coerce_status(status)
    if status not in INITIAL_STATUSES:
        raise InvalidInput(f"A stock count cannot be created in status {status.value}")
    count_number = _normalize_count_number(count_number)
    count_date = count_date or date.today()

    # numéro généré : un create concurrent peut prendre le même -> on retente
    attempts = 1 if count_number is not None else COUNT_NUMBER_ATTEMPTS
    for attempt in range(1, attempts + 1):
        try:
            count = _insert_session(
                db,
                warehouse_id=warehouse_id,
                count_date=count_date,
                notes=notes,
                count_number=count_number,
                status=status,
            )
            break
        except IntegrityError as exc:
            if count_number is not None:
                raise Conflict(f"Count number {count_number} already exists") from exc
            if attempt == attempts:
                raise Conflict(
                    f"Could not allocate a count number for {count_date.isoformat()}"
                ) from exc
            logger.info("generated count number taken concurrently, retrying (%d/%d)", attempt, attempts)

    logger.info("stock count %s created (warehouse=%s)", count.count_number, warehouse_id)
    return count


def _insert_session(
    db: Session,
    *,
    warehouse_id: int,
    count_date: date,
    notes: str | None,
    count_number: str | None,
    status: StockCountStatus,
) -> StockCount:
    """Une tentative d'INSERT ; IntegrityError remonte après rollback."""
    with transaction(db):
        if db.get(Warehouse, warehouse_id) is None:
            raise NotFound(f"Warehouse {warehouse_id} not found")

        if count_number is None:
            count_number = _next_count_number(db, count_date)
        else:
            _ensure_count_number_free(db, count_number)

        count = StockCount(
            count_number=count_number,
            warehouse_id=warehouse_id,
            count_date=count_date,
            notes=notes,
            status=status,
        )
        db.add(count)
        db.flush()
    return count


def get_session(db: Session, count_id: int) -> StockCount:
    count = db.execute(
        select(StockCount)
        .where(StockCount.id == count_id)
        .options(selectinload(StockCount.items))
    ).scalar_one_or_none()
    if count is None:
        raise NotFound(f"Stock count {count_id} not found")
    return count


def list_sessions(
    db: Session,
    *,
    warehouse_id: int | None = None,
    status: StockCountStatus | str | None = None,
    skip: int = 0,
    limit: int = 100,
) -> tuple[list[StockCount], int]:
    query = select(StockCount)
    if warehouse_id is not None:
        query = query.where(StockCount.warehouse_id == warehouse_id)
    if status is not None:
        query = query.where(StockCount.status == coerce_status(status))

    total = db.scalar(select(func.count()).select_from(query.subquery()))

    query = (
        query.options(selectinload(StockCount.items))
        .order_by(StockCount.count_date.desc(), StockCount.id.desc())
        .offset(skip)
        .limit(limit)
    )
    rows = db.execute(query).scalars().all()
    return list(rows), total or 0


def update_session(db: Session, count_id: int, **changes: Any) -> StockCount:
    """
    Met à jour l'en-tête (numéro, date, notes, entrepôt) tant que la
    session est modifiable. Changer d'entrepôt n'est permis que sur une
    session vide : les quantités attendues sont propres à un entrepôt.
    """
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise InvalidInput(f"Fields not updatable: {', '.join(sorted(unknown))}")
    if "count_number" in changes:
        changes["count_number"] = _normalize_count_number(changes["count_number"])
        if changes["count_number"] is None:
            raise InvalidInput("count_number cannot be null")
    if "warehouse_id" in changes and changes["warehouse_id"] is None:
        raise InvalidInput("warehouse_id is required")
    if "count_date" in changes and changes["count_date"] is None:
        raise InvalidInput("count_date cannot be null")

    with transaction(db):
        count = get_count_for_update(db, count_id)
        ensure_editable(count, "update")

        new_wh = changes.get("warehouse_id")
        if new_wh is not None and new_wh != count.warehouse_id:
            if db.get(Warehouse, new_wh) is None:
                raise NotFound(f"Warehouse {new_wh} not found")
            if count.items:
                raise InvalidState(
                    f"Stock count {count.count_number} already has items; cannot change warehouse"
                )
        if "count_number" in changes:
            _ensure_count_number_free(db, changes["count_number"], exclude_id=count.id)

        for field, value in changes.items():
            setattr(count, field, value)
        db.flush()

    return count


def delete_session(db: Session, count_id: int) -> None:
    with transaction(db):
        count = get_count_for_update(db, count_id)
        if count.status not in DELETABLE_STATUSES:
            raise InvalidState(
                f"Stock count {count.count_number} is {count.status.value}; cannot delete"
            )
        number = count.count_number
        db.delete(count)

    logger.info("stock count %s deleted", number)


# ---------- Items ----------
def add_item(
    db: Session,
    count_id: int,
    *,
    product_id: int,
    expected_quantity: int | None = None,
    counted_quantity: int = 0,
    notes: str | None = None,
    ledger: StockLedger | None = None,
) -> StockCountItem:
    """
    Ajout manuel d'une ligne.

    Contrairement à la génération en masse, un produit déjà présent est
    une erreur (Conflict) : l'opérateur a explicitement demandé ce produit.
    Sans expected_quantity, on prend la quantité en main du ledger.
    """
    check_quantity("counted_quantity", counted_quantity)
    if expected_quantity is not None:
        check_quantity("expected_quantity", expected_quantity)

    with transaction(db):
        count = get_count_for_update(db, count_id)
        ensure_editable(count, "add items")

        if db.get(Product, product_id) is None:
            raise NotFound(f"Product {product_id} not found")

        exists = db.scalar(
            select(StockCountItem.id)
            .where(StockCountItem.stock_count_id == count.id)
            .where(StockCountItem.product_id == product_id)
        )
        if exists is not None:
            raise Conflict(f"Product {product_id} already in stock count {count.count_number}")

        if expected_quantity is None:
            ledger = ledger or SqlStockLedger(db)
            expected_quantity = ledger.get_on_hand_quantity(count.warehouse_id, product_id)

        item = StockCountItem(
            stock_count_id=count.id,
            product_id=product_id,
            expected_quantity=expected_quantity,
            counted_quantity=counted_quantity,
            notes=notes,
        )
        db.add(item)
        try:
            db.flush()
        except IntegrityError as exc:
            raise Conflict(f"Product {product_id} already in stock count {count.count_number}") from exc

    return item


def update_item_count(
    db: Session,
    count_id: int,
    item_id: int,
    *,
    counted_quantity: int,
    notes: str | None = None,
) -> StockCountItem:
    check_quantity("counted_quantity", counted_quantity)

    with transaction(db):
        count = get_count_for_update(db, count_id)
        ensure_editable(count, "edit counts")
        item = _get_item(db, count.id, item_id)

        item.counted_quantity = counted_quantity
        if notes is not None:
            item.notes = notes
        db.flush()

    return item


def batch_update_counts(
    db: Session,
    count_id: int,
    updates: Iterable[dict[str, Any]],
) -> list[StockCountItem]:
    """Saisie de plusieurs comptages en une transaction (tout ou rien)."""
    updates = list(updates)
    for u in updates:
        if "item_id" not in u or "counted_quantity" not in u:
            raise InvalidInput("each update needs item_id and counted_quantity")
        check_quantity("counted_quantity", u["counted_quantity"])

    with transaction(db):
        count = get_count_for_update(db, count_id)
        ensure_editable(count, "edit counts")

        items = []
        for u in updates:
            item = _get_item(db, count.id, u["item_id"])
            item.counted_quantity = u["counted_quantity"]
            if u.get("notes") is not None:
                item.notes = u["notes"]
            items.append(item)
        db.flush()

    return items


def delete_item(db: Session, count_id: int, item_id: int) -> StockCount:
    with transaction(db):
        count = get_count_for_update(db, count_id)
        ensure_editable(count, "delete items")
        item = _get_item(db, count.id, item_id)
        db.delete(item)
        db.flush()

    return count

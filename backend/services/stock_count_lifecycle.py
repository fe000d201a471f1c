"""
Cycle de vie d'un inventaire.

    planned|draft --start--> in_progress --complete--> completed --validate--> validated
    planned|draft|in_progress --cancel--> cancelled

Chaque transition est un UPDATE conditionnel sur le statut
(... WHERE id = :id AND status IN (:autorisés)) : si deux appels arrivent
en même temps, un seul voit sa ligne modifiée, l'autre reçoit InvalidState.

Validation :
    - verrou + passage completed -> validated
    - un ajustement ledger (counted - expected) par ligne en écart,
      produits triés (ordre de verrouillage stable)
    - tout ou rien : la moindre erreur ledger annule les ajustements
      ET le changement de statut (l'inventaire reste "completed")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.db.models.core_types import StockCountStatus
from backend.app.db.models.models_v1 import StockCount, StockCountItem, StockMovement, utcnow
from backend.app.db.session import transaction
from backend.services.errors import InvalidState, LedgerError
from backend.services.ledger import ADJUSTMENT_KEY_PREFIX, SqlStockLedger, StockLedger
from backend.services.stock_count_store import get_count_for_update

logger = logging.getLogger(__name__)

S = StockCountStatus

# action -> (statuts de départ, statut d'arrivée, horodatage)
TRANSITIONS: dict[str, tuple[frozenset[StockCountStatus], StockCountStatus, str]] = {
    "start": (frozenset({S.planned, S.draft}), S.in_progress, "started_at"),
    "complete": (frozenset({S.in_progress}), S.completed, "completed_at"),
    "validate": (frozenset({S.completed}), S.validated, "validated_at"),
    "cancel": (frozenset({S.planned, S.draft, S.in_progress}), S.cancelled, "cancelled_at"),
}


@dataclass
class ValidationResult:
    stock_count: StockCount
    adjustments: list[StockMovement] = field(default_factory=list)


def _check(count: StockCount, action: str) -> None:
    allowed, _, _ = TRANSITIONS[action]
    if count.status not in allowed:
        raise InvalidState(
            f"Cannot {action} stock count {count.count_number} in status {count.status.value}"
        )


def claim_transition(db: Session, count_id: int, action: str) -> bool:
    """
    UPDATE gardé par le statut. Retourne False si la ligne n'était plus
    dans un statut de départ (quelqu'un est passé avant).
    """
    allowed, target, stamp = TRANSITIONS[action]
    now = utcnow()
    result = db.execute(
        update(StockCount)
        .where(StockCount.id == count_id)
        .where(StockCount.status.in_(allowed))
        .values({"status": target, "updated_at": now, stamp: now})
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _transition(db: Session, count_id: int, action: str) -> StockCount:
    with transaction(db):
        count = get_count_for_update(db, count_id)
        _check(count, action)
        if not claim_transition(db, count.id, action):
            raise InvalidState(f"Stock count {count.count_number} changed concurrently; cannot {action}")
        db.refresh(count)

    logger.info("stock count %s: %s -> %s", count.count_number, action, count.status.value)
    return count


def start(db: Session, count_id: int) -> StockCount:
    return _transition(db, count_id, "start")


def complete(db: Session, count_id: int) -> StockCount:
    return _transition(db, count_id, "complete")


def cancel(db: Session, count_id: int) -> StockCount:
    return _transition(db, count_id, "cancel")


def validate(db: Session, count_id: int, *, ledger: StockLedger | None = None) -> ValidationResult:
    ledger = ledger or SqlStockLedger(db)
    number = None
    try:
        with transaction(db):
            count = get_count_for_update(db, count_id)
            number = count.count_number
            _check(count, "validate")
            if not claim_transition(db, count.id, "validate"):
                raise InvalidState(f"Stock count {number} is already being validated")
            db.refresh(count)

            items = db.execute(
                select(StockCountItem)
                .where(StockCountItem.stock_count_id == count.id)
                .where(StockCountItem.difference != 0)
                .order_by(StockCountItem.product_id)
            ).scalars().all()

            reference = f"{ADJUSTMENT_KEY_PREFIX}{count.id}"
            adjustments = []
            for item in items:
                try:
                    mv = ledger.record_adjustment(
                        count.warehouse_id,
                        item.product_id,
                        item.difference,
                        reference=reference,
                    )
                except IntegrityError as exc:
                    raise LedgerError(f"Ledger rejected adjustment for product {item.product_id}") from exc
                if mv is not None:
                    adjustments.append(mv)
    except LedgerError as exc:
        logger.warning("stock count %s: validation rolled back: %s", number or count_id, exc.detail)
        raise

    logger.info("stock count %s validated (%d adjustment(s))", number, len(adjustments))
    return ValidationResult(stock_count=count, adjustments=adjustments)

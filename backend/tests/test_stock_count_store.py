from datetime import date

import pytest
from sqlalchemy import func, select

from backend.app.db.models.core_types import StockCountStatus
from backend.app.db.models.models_v1 import StockCount, StockCountItem
from backend.services import stock_count_lifecycle as lifecycle
from backend.services import stock_count_store as store
from backend.services.errors import Conflict, InvalidInput, InvalidState, NotFound
from backend.tests.factories import make_product, make_warehouse, set_stock


@pytest.fixture
def wh(db_session):
    return make_warehouse(db_session, "MAIN")


def test_create_session_defaults(db_session, wh):
    count = store.create_session(db_session, warehouse_id=wh.id, count_date=date(2024, 3, 1))

    assert count.id is not None
    assert count.status == StockCountStatus.planned
    assert count.count_number == "INV-20240301-001"
    assert count.items == []
    assert count.status_display == "Planned"


def test_count_numbers_follow_daily_sequence(db_session, wh):
    first = store.create_session(db_session, warehouse_id=wh.id, count_date=date(2024, 3, 1))
    second = store.create_session(db_session, warehouse_id=wh.id, count_date=date(2024, 3, 1))
    other_day = store.create_session(db_session, warehouse_id=wh.id, count_date=date(2024, 3, 2))

    assert first.count_number == "INV-20240301-001"
    assert second.count_number == "INV-20240301-002"
    assert other_day.count_number == "INV-20240302-001"


def test_create_session_can_start_as_draft(db_session, wh):
    count = store.create_session(db_session, warehouse_id=wh.id, status="draft")
    assert count.status == StockCountStatus.draft


def test_create_session_requires_warehouse(db_session):
    with pytest.raises(InvalidInput):
        store.create_session(db_session, warehouse_id=None)


def test_create_session_unknown_warehouse(db_session):
    with pytest.raises(NotFound):
        store.create_session(db_session, warehouse_id=999)
    assert db_session.scalar(select(func.count()).select_from(StockCount)) == 0


@pytest.mark.parametrize("status", ["in_progress", "completed", "validated", "cancelled", "bogus"])
def test_create_session_rejects_non_initial_status(db_session, wh, status):
    with pytest.raises(InvalidInput):
        store.create_session(db_session, warehouse_id=wh.id, status=status)


def test_create_session_duplicate_number(db_session, wh):
    store.create_session(db_session, warehouse_id=wh.id, count_number="INV-A")
    with pytest.raises(Conflict):
        store.create_session(db_session, warehouse_id=wh.id, count_number="INV-A")


def test_get_session_not_found(db_session):
    with pytest.raises(NotFound):
        store.get_session(db_session, 42)


def test_add_item_duplicate_product_is_conflict(db_session, wh):
    """
    GIVEN
    - une session avec le produit P déjà présent

    THEN
    - un second ajout manuel de P -> Conflict
    - la session garde une seule ligne pour P
    """
    p = make_product(db_session, "SKU-P")
    count = store.create_session(db_session, warehouse_id=wh.id, count_number="INV-C")
    store.add_item(db_session, count.id, product_id=p.id, expected_quantity=5)

    with pytest.raises(Conflict):
        store.add_item(db_session, count.id, product_id=p.id, expected_quantity=7)

    n = db_session.scalar(
        select(func.count()).select_from(StockCountItem).where(StockCountItem.stock_count_id == count.id)
    )
    assert n == 1


def test_add_item_snapshots_expected_from_ledger(db_session, wh):
    p = make_product(db_session, "SKU-SNAP")
    set_stock(db_session, wh, p, 12)
    count = store.create_session(db_session, warehouse_id=wh.id)

    item = store.add_item(db_session, count.id, product_id=p.id)

    assert item.expected_quantity == 12
    assert item.counted_quantity == 0
    assert item.difference == -12


def test_add_item_without_stock_row_expects_zero(db_session, wh):
    p = make_product(db_session, "SKU-NEW")
    count = store.create_session(db_session, warehouse_id=wh.id)

    item = store.add_item(db_session, count.id, product_id=p.id, counted_quantity=3)

    assert item.expected_quantity == 0
    assert item.difference == 3


@pytest.mark.parametrize(
    "kwargs",
    [
        {"expected_quantity": -1},
        {"counted_quantity": -1},
        {"counted_quantity": 1.5},
        {"counted_quantity": True},
    ],
)
def test_add_item_rejects_bad_quantities(db_session, wh, kwargs):
    p = make_product(db_session, "SKU-Q")
    count = store.create_session(db_session, warehouse_id=wh.id)
    with pytest.raises(InvalidInput):
        store.add_item(db_session, count.id, product_id=p.id, **kwargs)


def test_add_item_unknown_product_or_count(db_session, wh):
    p = make_product(db_session, "SKU-X")
    count = store.create_session(db_session, warehouse_id=wh.id)

    with pytest.raises(NotFound):
        store.add_item(db_session, count.id, product_id=999, expected_quantity=1)
    with pytest.raises(NotFound):
        store.add_item(db_session, 999, product_id=p.id, expected_quantity=1)


def test_update_item_count_recomputes_difference(db_session, wh):
    p = make_product(db_session, "SKU-U")
    count = store.create_session(db_session, warehouse_id=wh.id)
    item = store.add_item(db_session, count.id, product_id=p.id, expected_quantity=10, counted_quantity=10)
    assert item.difference == 0

    item = store.update_item_count(db_session, count.id, item.id, counted_quantity=7, notes="carton abîmé")

    assert item.counted_quantity == 7
    assert item.difference == -3
    assert item.notes == "carton abîmé"


def test_update_item_count_item_of_other_session(db_session, wh):
    p = make_product(db_session, "SKU-O")
    a = store.create_session(db_session, warehouse_id=wh.id)
    b = store.create_session(db_session, warehouse_id=wh.id)
    item = store.add_item(db_session, a.id, product_id=p.id, expected_quantity=1)

    with pytest.raises(NotFound):
        store.update_item_count(db_session, b.id, item.id, counted_quantity=1)


def test_batch_update_is_all_or_nothing(db_session, wh):
    p1 = make_product(db_session, "SKU-B1")
    p2 = make_product(db_session, "SKU-B2")
    count = store.create_session(db_session, warehouse_id=wh.id)
    i1 = store.add_item(db_session, count.id, product_id=p1.id, expected_quantity=4)
    i2 = store.add_item(db_session, count.id, product_id=p2.id, expected_quantity=6)

    with pytest.raises(NotFound):
        store.batch_update_counts(
            db_session,
            count.id,
            [{"item_id": i1.id, "counted_quantity": 4}, {"item_id": 999, "counted_quantity": 1}],
        )
    db_session.expire_all()
    assert db_session.get(StockCountItem, i1.id).counted_quantity == 0

    items = store.batch_update_counts(
        db_session,
        count.id,
        [
            {"item_id": i1.id, "counted_quantity": 4},
            {"item_id": i2.id, "counted_quantity": 5, "notes": "recompté"},
        ],
    )
    assert [i.difference for i in items] == [0, -1]
    assert items[1].notes == "recompté"


def test_batch_update_rejects_negative(db_session, wh):
    p = make_product(db_session, "SKU-BN")
    count = store.create_session(db_session, warehouse_id=wh.id)
    item = store.add_item(db_session, count.id, product_id=p.id, expected_quantity=1)

    with pytest.raises(InvalidInput):
        store.batch_update_counts(db_session, count.id, [{"item_id": item.id, "counted_quantity": -2}])


def test_delete_item(db_session, wh):
    p = make_product(db_session, "SKU-D")
    count = store.create_session(db_session, warehouse_id=wh.id)
    item = store.add_item(db_session, count.id, product_id=p.id, expected_quantity=1)

    count = store.delete_item(db_session, count.id, item.id)

    assert count.items == []
    with pytest.raises(NotFound):
        store.delete_item(db_session, count.id, item.id)


def test_items_are_frozen_once_completed(db_session, wh):
    """
    GIVEN
    - une session passée en completed

    THEN
    - ajout / saisie / suppression de ligne -> InvalidState
    - les lignes ne bougent pas
    """
    p1 = make_product(db_session, "SKU-F1")
    p2 = make_product(db_session, "SKU-F2")
    count = store.create_session(db_session, warehouse_id=wh.id)
    item = store.add_item(db_session, count.id, product_id=p1.id, expected_quantity=3, counted_quantity=2)
    lifecycle.start(db_session, count.id)
    lifecycle.complete(db_session, count.id)

    with pytest.raises(InvalidState):
        store.add_item(db_session, count.id, product_id=p2.id, expected_quantity=1)
    with pytest.raises(InvalidState):
        store.update_item_count(db_session, count.id, item.id, counted_quantity=3)
    with pytest.raises(InvalidState):
        store.batch_update_counts(db_session, count.id, [{"item_id": item.id, "counted_quantity": 3}])
    with pytest.raises(InvalidState):
        store.delete_item(db_session, count.id, item.id)
    with pytest.raises(InvalidState):
        store.update_session(db_session, count.id, notes="trop tard")

    db_session.expire_all()
    item = db_session.get(StockCountItem, item.id)
    assert (item.expected_quantity, item.counted_quantity) == (3, 2)


def test_update_session_header(db_session, wh):
    count = store.create_session(db_session, warehouse_id=wh.id, count_number="INV-H")

    count = store.update_session(
        db_session, count.id, notes="zone froide", count_date=date(2024, 5, 2), count_number="INV-H2"
    )

    assert count.notes == "zone froide"
    assert count.count_date == date(2024, 5, 2)
    assert count.count_number == "INV-H2"


def test_update_session_rejects_unknown_fields(db_session, wh):
    count = store.create_session(db_session, warehouse_id=wh.id)
    with pytest.raises(InvalidInput):
        store.update_session(db_session, count.id, status="validated")


def test_update_session_number_conflict(db_session, wh):
    store.create_session(db_session, warehouse_id=wh.id, count_number="INV-1")
    b = store.create_session(db_session, warehouse_id=wh.id, count_number="INV-2")
    with pytest.raises(Conflict):
        store.update_session(db_session, b.id, count_number="INV-1")


def test_change_warehouse_only_when_empty(db_session, wh):
    other = make_warehouse(db_session, "ANNEX")
    p = make_product(db_session, "SKU-W")
    count = store.create_session(db_session, warehouse_id=wh.id)

    count = store.update_session(db_session, count.id, warehouse_id=other.id)
    assert count.warehouse_id == other.id

    store.add_item(db_session, count.id, product_id=p.id, expected_quantity=1)
    with pytest.raises(InvalidState):
        store.update_session(db_session, count.id, warehouse_id=wh.id)


def test_list_sessions_filters(db_session, wh):
    other = make_warehouse(db_session, "ANNEX")
    a = store.create_session(db_session, warehouse_id=wh.id, count_date=date(2024, 1, 1))
    store.create_session(db_session, warehouse_id=wh.id, count_date=date(2024, 2, 1))
    store.create_session(db_session, warehouse_id=other.id, count_date=date(2024, 3, 1))
    lifecycle.cancel(db_session, a.id)

    rows, total = store.list_sessions(db_session, warehouse_id=wh.id)
    assert total == 2
    assert [r.count_date for r in rows] == [date(2024, 2, 1), date(2024, 1, 1)]

    rows, total = store.list_sessions(db_session, status="cancelled")
    assert total == 1
    assert rows[0].id == a.id

    rows, total = store.list_sessions(db_session, skip=1, limit=1)
    assert total == 3
    assert len(rows) == 1


def test_delete_session_rules(db_session, wh):
    p = make_product(db_session, "SKU-DEL")
    planned = store.create_session(db_session, warehouse_id=wh.id)
    store.add_item(db_session, planned.id, product_id=p.id, expected_quantity=1)
    running = store.create_session(db_session, warehouse_id=wh.id)
    lifecycle.start(db_session, running.id)

    store.delete_session(db_session, planned.id)
    with pytest.raises(NotFound):
        store.get_session(db_session, planned.id)
    assert db_session.scalar(select(func.count()).select_from(StockCountItem)) == 0

    with pytest.raises(InvalidState):
        store.delete_session(db_session, running.id)


def test_generated_number_retried_when_taken_concurrently(db_session, wh, monkeypatch):
    """
    GIVEN
    - INV-20240301-001 inséré par un autre create entre le calcul du
      numéro et l'INSERT (simulé : le premier calcul renvoie ce numéro)

    THEN
    - pas de Conflict : nouvelle tentative, INV-20240301-002
    """
    store.create_session(db_session, warehouse_id=wh.id, count_number="INV-20240301-001")
    real_next = store._next_count_number
    calls = []

    def stale_then_real(db, count_date):
        calls.append(count_date)
        if len(calls) == 1:
            return "INV-20240301-001"
        return real_next(db, count_date)

    monkeypatch.setattr(store, "_next_count_number", stale_then_real)

    count = store.create_session(db_session, warehouse_id=wh.id, count_date=date(2024, 3, 1))

    assert len(calls) == 2
    assert count.count_number == "INV-20240301-002"
    assert db_session.scalar(select(func.count()).select_from(StockCount)) == 2


def test_generated_number_gives_up_after_retries(db_session, wh, monkeypatch):
    store.create_session(db_session, warehouse_id=wh.id, count_number="INV-20240301-001")
    monkeypatch.setattr(store, "_next_count_number", lambda db, count_date: "INV-20240301-001")

    with pytest.raises(Conflict, match="Could not allocate"):
        store.create_session(db_session, warehouse_id=wh.id, count_date=date(2024, 3, 1))

    assert db_session.scalar(select(func.count()).select_from(StockCount)) == 1

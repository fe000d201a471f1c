import pytest


def _setup(client, qty=5):
    wh = client.post("/v1/warehouses", json={"code": "MAIN", "name": "Entrepôt principal"}).json()
    p = client.post("/v1/products", json={"sku": "SKU-1", "name": "Riz 1kg", "unit_cost": "2.00"}).json()
    r = client.post(
        "/v1/stock-movements/receipt",
        json={"product_id": p["id"], "warehouse_id": wh["id"], "quantity": qty},
        headers={"Idempotency-Key": "rcpt-1"},
    )
    assert r.status_code == 200, r.text
    return wh, p


def _on_hand(client, wh, p):
    rows = client.get("/v1/stock", params={"warehouse_id": wh["id"], "product_id": p["id"]}).json()
    return rows[0]["qty_on_hand"]


def test_health(client):
    assert client.get("/v1/health").json() == {"status": "ok"}


def test_full_count_flow(client):
    wh, p = _setup(client)

    r = client.post("/v1/stock-counts", json={"warehouse_id": wh["id"], "count_number": "INV-API-1"})
    assert r.status_code == 201, r.text
    count = r.json()
    assert count["status"] == "planned"
    assert count["items"] == []

    r = client.post(f"/v1/stock-counts/{count['id']}/generate-items", json={})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["items_created"] == 1
    item = body["stock_count"]["items"][0]
    assert (item["expected_quantity"], item["counted_quantity"], item["difference"]) == (5, 0, -5)

    assert client.post(f"/v1/stock-counts/{count['id']}/start").json()["status"] == "in_progress"

    r = client.patch(
        f"/v1/stock-counts/{count['id']}/items/{item['id']}",
        json={"counted_quantity": 4, "notes": "un paquet ouvert"},
    )
    assert r.status_code == 200, r.text
    assert r.json()["difference"] == -1

    summary = client.get(f"/v1/stock-counts/{count['id']}/summary").json()
    assert summary["statistics"]["items_deficit"] == 1
    assert summary["quantities"]["net_difference"] == -1
    assert summary["status_display"] == "In progress"

    disc = client.get(f"/v1/stock-counts/{count['id']}/discrepancies").json()
    assert disc["discrepancy_count"] == 1
    assert disc["items"][0]["product_sku"] == "SKU-1"
    assert float(disc["total_value_impact"]) == -2.0

    assert client.post(f"/v1/stock-counts/{count['id']}/complete").json()["status"] == "completed"

    r = client.post(f"/v1/stock-counts/{count['id']}/validate")
    assert r.status_code == 200, r.text
    assert r.json()["adjustments_applied"] == 1
    assert r.json()["stock_count"]["status"] == "validated"
    assert _on_hand(client, wh, p) == 4

    moves = client.get("/v1/stock-movements", params={"reference": f"stock-count:{count['id']}"}).json()
    assert [m["signed_quantity"] for m in moves] == [-1]


def test_error_bodies(client):
    wh, p = _setup(client)
    count = client.post("/v1/stock-counts", json={"warehouse_id": wh["id"]}).json()

    r = client.get("/v1/stock-counts/999")
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"

    client.post(f"/v1/stock-counts/{count['id']}/items", json={"product_id": p["id"]})
    r = client.post(f"/v1/stock-counts/{count['id']}/items", json={"product_id": p["id"]})
    assert r.status_code == 409
    assert r.json()["error"] == "conflict"

    r = client.post(f"/v1/stock-counts/{count['id']}/validate")
    assert r.status_code == 409
    assert r.json()["error"] == "invalid_state"

    r = client.post("/v1/stock-counts", json={"warehouse_id": wh["id"], "status": "validated"})
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_input"


def test_ledger_rejection_is_distinct_from_invalid_state(client):
    """
    GIVEN
    - compté 0 pour un attendu de 5
    - 3 unités sorties entre la fin du comptage et la validation

    THEN
    - 502 ledger_error (et pas 409 invalid_state)
    - la session reste completed, le stock n'a pas bougé
    """
    wh, p = _setup(client)
    count = client.post("/v1/stock-counts", json={"warehouse_id": wh["id"]}).json()
    client.post(f"/v1/stock-counts/{count['id']}/items", json={"product_id": p["id"], "counted_quantity": 0})
    client.post(f"/v1/stock-counts/{count['id']}/start")
    client.post(f"/v1/stock-counts/{count['id']}/complete")

    r = client.post(
        "/v1/stock-movements/issue",
        json={"product_id": p["id"], "warehouse_id": wh["id"], "quantity": 3},
        headers={"Idempotency-Key": "iss-1"},
    )
    assert r.status_code == 200, r.text

    r = client.post(f"/v1/stock-counts/{count['id']}/validate")
    assert r.status_code == 502
    assert r.json()["error"] == "ledger_error"

    assert client.get(f"/v1/stock-counts/{count['id']}").json()["status"] == "completed"
    assert _on_hand(client, wh, p) == 2


def test_batch_and_auto_fill(client):
    wh, p = _setup(client)
    p2 = client.post("/v1/products", json={"sku": "SKU-2", "name": "Huile 1L"}).json()
    count = client.post("/v1/stock-counts", json={"warehouse_id": wh["id"]}).json()
    i1 = client.post(f"/v1/stock-counts/{count['id']}/items", json={"product_id": p["id"]}).json()
    i2 = client.post(
        f"/v1/stock-counts/{count['id']}/items",
        json={"product_id": p2["id"], "expected_quantity": 3},
    ).json()

    r = client.post(
        f"/v1/stock-counts/{count['id']}/items/batch",
        json=[{"item_id": i1["id"], "counted_quantity": 6}, {"item_id": i2["id"], "counted_quantity": 3}],
    )
    assert r.status_code == 200, r.text
    assert [i["difference"] for i in r.json()] == [1, 0]

    r = client.post(f"/v1/stock-counts/{count['id']}/auto-fill-counts")
    assert r.json()["items_updated"] == 2

    items = client.get(f"/v1/stock-counts/{count['id']}/items").json()
    assert items["count"] == 2
    assert all(i["difference"] == 0 for i in items["results"])


def test_list_update_delete(client):
    wh, _ = _setup(client)
    a = client.post("/v1/stock-counts", json={"warehouse_id": wh["id"], "count_date": "2024-04-01"}).json()
    client.post("/v1/stock-counts", json={"warehouse_id": wh["id"], "count_date": "2024-04-02"})

    listing = client.get("/v1/stock-counts", params={"warehouse_id": wh["id"]}).json()
    assert listing["count"] == 2

    r = client.patch(f"/v1/stock-counts/{a['id']}", json={"notes": "allée B"})
    assert r.json()["notes"] == "allée B"

    assert client.delete(f"/v1/stock-counts/{a['id']}").status_code == 204
    assert client.get(f"/v1/stock-counts/{a['id']}").status_code == 404

    report = client.get("/v1/stock-counts/report").json()
    assert report["summary"]["total_counts"] == 1


@pytest.mark.parametrize("quantity", [0, -1])
def test_negative_count_rejected_at_the_edge(client, quantity):
    wh, p = _setup(client)
    count = client.post("/v1/stock-counts", json={"warehouse_id": wh["id"]}).json()
    item = client.post(f"/v1/stock-counts/{count['id']}/items", json={"product_id": p["id"]}).json()

    r = client.patch(f"/v1/stock-counts/{count['id']}/items/{item['id']}", json={"counted_quantity": quantity})
    assert r.status_code == (200 if quantity == 0 else 422)


def test_client_cannot_use_adjustment_keys(client):
    """
    GIVEN
    - une réception postée avec la clé que la validation du comptage 1
      utiliserait pour le produit 1

    THEN
    - 400 invalid_input, rien n'est écrit
    - la validation ajuste ensuite le stock à la quantité comptée
    """
    wh, p = _setup(client, qty=10)

    r = client.post(
        "/v1/stock-movements/receipt",
        json={"product_id": p["id"], "warehouse_id": wh["id"], "quantity": 10},
        headers={"Idempotency-Key": f"stock-count:1:p{p['id']}"},
    )
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_input"
    assert _on_hand(client, wh, p) == 10

    count = client.post("/v1/stock-counts", json={"warehouse_id": wh["id"]}).json()
    assert count["id"] == 1
    client.post(f"/v1/stock-counts/{count['id']}/items", json={"product_id": p["id"], "counted_quantity": 4})
    client.post(f"/v1/stock-counts/{count['id']}/start")
    client.post(f"/v1/stock-counts/{count['id']}/complete")

    r = client.post(f"/v1/stock-counts/{count['id']}/validate")
    assert r.status_code == 200, r.text
    assert r.json()["adjustments_applied"] == 1
    assert _on_hand(client, wh, p) == 4

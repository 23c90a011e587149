import redis

from tableside.core.config import EnvironmentMode, get_settings


def order_body(seeded, **overrides) -> dict:
    body = {
        "tableCode": "T-01",
        "items": [
            {"menuItemId": seeded.item_a.id, "quantity": 2},
            {"menuItemId": seeded.item_b.id, "quantity": 1},
        ],
    }
    body.update(overrides)
    return body


async def create(client, seeded, **overrides) -> dict:
    resp = await client.post("/orders", json=order_body(seeded, **overrides))
    assert resp.status_code == 200, resp.text
    return resp.json()["order"]


async def patch_status(client, order: dict, status: str, **extra):
    return await client.patch(
        f"/orders/{order['id']}",
        json={"status": status, "version": order["version"], **extra},
    )


async def test_root(client) -> None:
    resp = await client.get("/")
    assert resp.status_code == 200
    assert resp.json()["health"] == "/health"


async def test_health_reports_degraded_without_redis(client, monkeypatch) -> None:
    def refuse(*args, **kwargs):
        raise redis.ConnectionError("connection refused")

    monkeypatch.setattr(redis.Redis, "from_url", refuse)
    resp = await client.get("/health")

    assert resp.status_code == 200
    data = resp.json()
    assert data["database"] == "healthy"
    assert data["redis"].startswith("unhealthy")
    assert data["status"] == "degraded"


async def test_create_order_returns_camel_case(client, seeded) -> None:
    order = await create(client, seeded, customerName="Asha")

    assert order["status"] == "NEW"
    assert order["version"] == 1
    assert order["tableCode"] == "T-01"
    assert order["tableId"] == seeded.table.id
    assert order["customerName"] == "Asha"
    assert order["sessionId"]
    assert order["total"] == 1300.0
    assert order["closedAt"] is None

    line = next(i for i in order["items"] if i["menuItemId"] == seeded.item_a.id)
    assert line["itemName"] == "Paneer Tikka"
    assert line["price"] == 500.0
    assert line["lineTotal"] == 1000.0
    assert line["status"] == "PENDING"


async def test_create_order_with_numeric_table_code(client, seeded) -> None:
    order = await create(client, seeded, tableCode=4)
    assert order["tableCode"] == "T-04"


async def test_create_order_empty_items(client, seeded) -> None:
    resp = await client.post("/orders", json=order_body(seeded, items=[]))
    assert resp.status_code == 400
    assert resp.json() == {
        "success": False,
        "error": "At least one item is required",
        "code": "INVALID_INPUT",
    }


async def test_create_order_malformed_body(client, seeded) -> None:
    body = order_body(seeded, items=[{"menuItemId": seeded.item_a.id, "quantity": 0}])
    resp = await client.post("/orders", json=body)
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_INPUT"
    assert resp.json()["success"] is False


async def test_create_order_missing_menu_item(client, seeded) -> None:
    body = order_body(seeded, items=[{"menuItemId": "ghost", "quantity": 1}])
    resp = await client.post("/orders", json=body)
    assert resp.status_code == 404
    data = resp.json()
    assert data["code"] == "MENU_ITEM_NOT_FOUND"
    assert data["details"] == {"missingIds": ["ghost"]}


async def test_create_order_unknown_table(client, seeded) -> None:
    resp = await client.post("/orders", json=order_body(seeded, tableCode="T-42"))
    assert resp.status_code == 404
    assert resp.json()["code"] == "TABLE_NOT_FOUND"


async def test_demo_mode_provisions_unknown_table(client, seeded, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "demo_auto_provision_tables", True)

    order = await create(client, seeded, tableCode="9")
    assert order["tableCode"] == "T-09"

    resp = await client.get("/tables", params={"code": "9"})
    assert resp.json()["tables"][0]["activeOrder"]["id"] == order["id"]


async def test_demo_provisioning_ignored_in_production(client, seeded, monkeypatch) -> None:
    settings = get_settings()
    monkeypatch.setattr(settings, "demo_auto_provision_tables", True)
    monkeypatch.setattr(settings, "env_mode", EnvironmentMode.PRODUCTION)
    assert not settings.demo_provisioning_active

    resp = await client.post("/orders", json=order_body(seeded, tableCode="9"))
    assert resp.status_code == 404
    assert resp.json()["code"] == "TABLE_NOT_FOUND"

    resp = await client.get("/tables", params={"code": "9"})
    assert resp.json()["tables"] == []


async def test_table_occupied(client, seeded) -> None:
    await create(client, seeded)
    resp = await client.post("/orders", json=order_body(seeded, tableCode="1"))
    assert resp.status_code == 409
    assert resp.json()["code"] == "TABLE_OCCUPIED"


async def test_full_lifecycle_over_http(client, seeded) -> None:
    order = await create(client, seeded)

    for status in ("PREPARING", "READY", "SERVED"):
        resp = await patch_status(client, order, status)
        assert resp.status_code == 200, resp.text
        order = resp.json()["order"]

    resp = await patch_status(client, order, "BILL_REQUESTED", customerName="Asha")
    order = resp.json()["order"]
    assert order["customerName"] == "Asha"
    assert order["version"] == 5

    resp = await client.post(
        f"/orders/{order['id']}/payment",
        json={"method": "upi", "version": order["version"]},
        headers={"X-Actor-Id": "cashier-1"},
    )
    assert resp.status_code == 200, resp.text
    order = resp.json()["order"]
    assert order["status"] == "CLOSED"
    assert order["closedAt"] is not None
    assert order["payment"]["method"] == "UPI"
    assert order["payment"]["amount"] == 1300.0

    tables = (await client.get("/tables", params={"code": "T-01"})).json()["tables"]
    assert tables[0]["status"] == "DIRTY"
    assert tables[0]["activeOrder"] is None


async def test_version_conflict_response(client, seeded) -> None:
    order = await create(client, seeded)
    resp = await patch_status(client, order, "PREPARING")
    assert resp.status_code == 200

    stale = await patch_status(client, order, "PREPARING")
    assert stale.status_code == 409
    data = stale.json()
    assert data["code"] == "VERSION_CONFLICT"
    assert data["error"] == "Order was modified by another user. Please refresh."
    assert data["details"] == {"expectedVersion": 1, "currentVersion": 2}


async def test_invalid_transition_response(client, seeded) -> None:
    order = await create(client, seeded)
    resp = await patch_status(client, order, "SERVED")
    assert resp.status_code == 400
    assert resp.json()["details"] == {"from": "NEW", "to": "SERVED"}


async def test_patch_requires_version(client, seeded) -> None:
    order = await create(client, seeded)
    resp = await client.patch(f"/orders/{order['id']}", json={"status": "PREPARING"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_INPUT"


async def test_get_order(client, seeded) -> None:
    order = await create(client, seeded)
    resp = await client.get(f"/orders/{order['id']}")
    assert resp.status_code == 200
    assert resp.json()["order"]["total"] == 1300.0

    missing = await client.get("/orders/nope")
    assert missing.status_code == 404
    assert missing.json()["code"] == "ORDER_NOT_FOUND"


async def test_list_orders_by_role(client, seeded) -> None:
    first = await create(client, seeded)
    second = await create(client, seeded, tableCode="T-04")
    resp = await patch_status(client, second, "PREPARING")
    second = resp.json()["order"]
    await patch_status(client, second, "READY")

    kitchen = (await client.get("/orders", params={"status": "NEW,PREPARING"})).json()
    assert [o["id"] for o in kitchen["orders"]] == [first["id"]]
    assert kitchen["total"] == 1

    floor = (await client.get("/orders", params={"status": "ready,served"})).json()
    assert [o["id"] for o in floor["orders"]] == [second["id"]]

    default = (await client.get("/orders", params={"sort": "desc"})).json()
    assert [o["id"] for o in default["orders"]] == [second["id"], first["id"]]

    limited = (await client.get("/orders", params={"limit": 1})).json()
    assert limited["total"] == 1


async def test_list_orders_unknown_status(client, seeded) -> None:
    resp = await client.get("/orders", params={"status": "NEW,EATING"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_INPUT"


async def test_list_orders_bad_limit(client, seeded) -> None:
    resp = await client.get("/orders", params={"limit": 0})
    assert resp.status_code == 400


async def test_append_items(client, seeded) -> None:
    order = await create(client, seeded)
    resp = await client.post(
        f"/orders/{order['id']}/items",
        json={"items": [{"menuItemId": seeded.item_a.id, "quantity": 1}], "version": 1},
    )
    assert resp.status_code == 200
    updated = resp.json()["order"]
    assert updated["total"] == 1800.0
    assert updated["version"] == 2
    assert len(updated["items"]) == 3


async def test_append_unavailable_item(client, seeded) -> None:
    order = await create(client, seeded)
    resp = await client.post(
        f"/orders/{order['id']}/items",
        json={"items": [{"menuItemId": seeded.unavailable.id, "quantity": 1}]},
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "MENU_ITEM_UNAVAILABLE"


async def test_item_status_endpoint(client, seeded) -> None:
    order = await create(client, seeded)
    item_id = order["items"][0]["id"]

    resp = await client.patch(f"/order-items/{item_id}", json={"status": "READY"})
    assert resp.status_code == 200
    assert resp.json()["item"]["status"] == "READY"

    again = await client.get(f"/orders/{order['id']}")
    assert again.json()["order"]["version"] == 1

    missing = await client.patch("/order-items/nope", json={"status": "READY"})
    assert missing.status_code == 404
    assert missing.json()["code"] == "ORDER_ITEM_NOT_FOUND"


async def test_table_administration(client, seeded) -> None:
    resp = await client.post("/tables", json={"tableCode": "12", "capacity": 6})
    assert resp.status_code == 200
    table = resp.json()["table"]
    assert table["tableCode"] == "T-12"
    assert table["status"] == "VACANT"

    duplicate = await client.post("/tables", json={"tableCode": "T-12", "capacity": 2})
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "TABLE_CODE_EXISTS"

    reset = await client.patch(f"/tables/{table['id']}", json={"status": "VACANT"})
    assert reset.status_code == 200

    wrong = await client.patch(f"/tables/{table['id']}", json={"status": "DIRTY"})
    assert wrong.status_code == 400

    retired = await client.delete(f"/tables/{table['id']}")
    assert retired.status_code == 200

    codes = [t["tableCode"] for t in (await client.get("/tables")).json()["tables"]]
    assert codes == ["T-01", "T-04"]


async def test_reset_occupied_table(client, seeded) -> None:
    await create(client, seeded)
    resp = await client.patch(f"/tables/{seeded.table.id}", json={"status": "VACANT"})
    assert resp.status_code == 409
    assert resp.json()["code"] == "TABLE_OCCUPIED"


async def test_table_orders(client, seeded) -> None:
    order = await create(client, seeded)
    resp = await client.get(f"/tables/{seeded.table.id}/orders")
    assert [o["id"] for o in resp.json()["orders"]] == [order["id"]]


async def test_menu(client, seeded) -> None:
    everything = (await client.get("/menu")).json()["items"]
    assert [i["name"] for i in everything] == ["Mango Lassi", "Masala Dosa", "Paneer Tikka"]

    available = (await client.get("/menu", params={"availableOnly": "true"})).json()["items"]
    assert {i["name"] for i in available} == {"Masala Dosa", "Paneer Tikka"}
    assert all(i["isAvailable"] for i in available)

    starters = (await client.get("/menu", params={"category": "Starters"})).json()["items"]
    assert [i["price"] for i in starters] == [500.0]

from decimal import Decimal

import models
from conftest import auth_headers, make_material, make_user


def _create_order(api, user, client_rec, work_a, work_b):
    return api.post("/api/v1/orders", headers=auth_headers(user), json={
        "client_id": client_rec.id,
        "patient_name": "Ivanova Maria",
        "items": [
            {"work_item_id": work_a.id, "quantity": 2},
            {"work_item_id": work_b.id, "quantity": 1, "price": 500},
        ],
    })


def test_health(api):
    r = api.get("/health")
    assert r.status_code == 200
    assert r.json() == {"success": True, "data": {"status": "ok"}}


def test_requires_bearer_token(api):
    r = api.get("/api/v1/orders")
    assert r.status_code == 401
    assert r.json() == {"success": False, "error": {"code": "UNAUTHORIZED", "message": "Authentication required"}}

    r = api.get("/api/v1/orders", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_create_and_read_order(api, owner, client_rec, work_a, work_b):
    r = _create_order(api, owner, client_rec, work_a, work_b)
    assert r.status_code == 201
    body = r.json()
    assert body["success"] is True
    order = body["data"]
    assert order["order_number"] == "0.0001"
    assert Decimal(str(order["total_price"])) == Decimal("2500")
    assert order["client_name"] == "Clinic 1"
    assert order["patient"]["last_name"] == "Ivanova"
    assert len(order["stages"]) == 6
    assert order["current_stage_id"] == order["stages"][0]["id"]

    r = api.get(f"/api/v1/orders/{order['id']}", headers=auth_headers(owner))
    assert r.status_code == 200
    detail = r.json()["data"]
    assert [h["action"] for h in detail["history"]] == ["order_created"]
    assert detail["comments"] == []


def test_body_validation_envelope(api, owner, client_rec):
    r = api.post("/api/v1/orders", headers=auth_headers(owner), json={"client_id": client_rec.id, "items": []})
    assert r.status_code == 400
    err = r.json()["error"]
    assert err["code"] == "VALIDATION_ERROR"
    assert "items" in err["message"]


def test_not_found_envelope(api, owner):
    r = api.get("/api/v1/orders/999", headers=auth_headers(owner))
    assert r.status_code == 404
    assert r.json()["error"] == {"code": "NOT_FOUND", "message": "Order not found"}


def test_role_checks(api, owner, technician, client_rec, work_a, work_b):
    order = _create_order(api, owner, client_rec, work_a, work_b).json()["data"]

    r = api.delete(f"/api/v1/orders/{order['id']}", headers=auth_headers(technician))
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "FORBIDDEN"

    r = api.put(
        f"/api/v1/orders/{order['id']}/items",
        headers=auth_headers(technician),
        json={"items": [{"work_item_id": work_a.id}]},
    )
    assert r.status_code == 403

    r = api.delete(f"/api/v1/orders/{order['id']}", headers=auth_headers(owner))
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "CANCELLED"


def test_replace_items_on_closed_order(api, owner, client_rec, work_a, work_b):
    order = _create_order(api, owner, client_rec, work_a, work_b).json()["data"]
    api.patch(f"/api/v1/orders/{order['id']}", headers=auth_headers(owner), json={"status": "DELIVERED"})

    r = api.put(
        f"/api/v1/orders/{order['id']}/items",
        headers=auth_headers(owner),
        json={"items": [{"work_item_id": work_a.id, "quantity": 1}]},
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "ORDER_CLOSED"


def test_stage_endpoints(api, db, org, owner, technician, client_rec, work_a, work_b):
    order = _create_order(api, owner, client_rec, work_a, work_b).json()["data"]
    first, second = order["stages"][0], order["stages"][1]

    r = api.put(
        f"/api/v1/orders/{order['id']}/stages/{second['id']}/assign",
        headers=auth_headers(owner),
        json={"assignee_id": technician.id},
    )
    assert r.status_code == 200
    assert r.json()["data"]["assignee_id"] == technician.id

    r = api.patch(
        f"/api/v1/orders/{order['id']}/stages/{first['id']}",
        headers=auth_headers(owner),
        json={"status": "COMPLETED"},
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["stage"]["status"] == "COMPLETED"
    assert data["auto_started_stage_id"] == second["id"]
    assert data["order_ready"] is False

    r = api.patch(
        f"/api/v1/orders/{order['id']}/stages/{first['id']}",
        headers=auth_headers(owner),
        json={"status": "IN_PROGRESS"},
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "STAGE_CLOSED"

    r = api.get("/api/v1/notifications", headers=auth_headers(technician))
    body = r.json()["data"]
    assert [n["type"] for n in body["notifications"]] == ["stage_assigned"]
    assert body["unread_count"] == 1


def test_kanban_route(api, owner, client_rec, work_a, work_b):
    _create_order(api, owner, client_rec, work_a, work_b)
    r = api.get("/api/v1/orders/kanban", headers=auth_headers(owner))
    assert r.status_code == 200
    columns = r.json()["data"]["columns"]
    assert columns[0]["status"] == "NEW" and columns[0]["count"] == 1


def test_list_orders_route(api, owner, client_rec, work_a, work_b):
    _create_order(api, owner, client_rec, work_a, work_b)
    r = api.get("/api/v1/orders", headers=auth_headers(owner), params={"search": "ivanova"})
    data = r.json()["data"]
    assert data["pagination"]["total"] == 1


def test_pricing_resolve_route(api, db, owner, client_rec, work_a):
    db.add(models.ClientPriceItem(client_id=client_rec.id, work_item_id=work_a.id, price=Decimal("850")))
    db.commit()
    r = api.get(
        "/api/v1/pricing/resolve",
        headers=auth_headers(owner),
        params={"client_id": client_rec.id, "work_item_id": work_a.id},
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["source"] == "client_override"
    assert Decimal(str(data["price"])) == Decimal("850")


def test_warehouse_routes(api, db, org, owner, client_rec, work_a, work_b):
    m = make_material(db, org, name="Wax", stock=1, min_stock=0)
    h = auth_headers(owner)

    r = api.post("/api/v1/warehouse/norms", headers=h, json={
        "work_item_id": work_a.id, "material_id": m.id, "quantity": 1,
    })
    assert r.status_code == 200
    r = api.post("/api/v1/warehouse/norms", headers=h, json={
        "work_item_id": work_a.id, "material_id": m.id, "quantity": 2,
    })
    assert Decimal(str(r.json()["data"]["quantity"])) == Decimal("2")
    assert len(api.get("/api/v1/warehouse/norms", headers=h).json()["data"]) == 1

    r = api.post("/api/v1/warehouse/movements", headers=h, json={
        "material_id": m.id, "type": "OUT", "quantity": 5,
    })
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "INSUFFICIENT_STOCK"

    order = _create_order(api, owner, client_rec, work_a, work_b).json()["data"]
    r = api.post("/api/v1/warehouse/write-off-order", headers=h, json={"order_id": order["id"]})
    assert r.status_code == 200
    result = r.json()["data"]
    assert result["movements"] == []
    assert len(result["shortages"]) == 1
    assert result["alerts"]

    r = api.post("/api/v1/warehouse/movements", headers=h, json={
        "material_id": m.id, "type": "IN", "quantity": 10, "price": 3,
    })
    assert r.status_code == 201
    r = api.get("/api/v1/warehouse/movements", headers=h, params={"material_id": m.id})
    assert r.json()["data"]["pagination"]["total"] == 1


def test_warehouse_alerts(api, db, org, owner):
    make_material(db, org, name="Low", stock=1, min_stock=5)
    make_material(db, org, name="Fine", stock=10, min_stock=5)
    r = api.get("/api/v1/warehouse/alerts", headers=auth_headers(owner))
    assert [a["name"] for a in r.json()["data"]] == ["Low"]


def test_salary_routes(api, db, org, owner, technician):
    accountant = make_user(db, org, models.UserRole.ACCOUNTANT.value, "Vera", "Counter")
    r = api.post("/api/v1/salary/calculate", headers=auth_headers(technician), json={"period": "2024-05"})
    assert r.status_code == 403

    r = api.post("/api/v1/salary/calculate", headers=auth_headers(accountant), json={"period": "2024-5"})
    assert r.status_code == 400

    r = api.post("/api/v1/salary/calculate", headers=auth_headers(accountant), json={"period": "2024-05"})
    assert r.status_code == 200
    records = r.json()["data"]
    assert [rec["user_id"] for rec in records] == [technician.id]

    r = api.patch("/api/v1/salary/pay", headers=auth_headers(accountant), json={"ids": [records[0]["id"]]})
    assert r.status_code == 403
    r = api.patch("/api/v1/salary/pay", headers=auth_headers(owner), json={"ids": [records[0]["id"]]})
    assert r.json()["data"] == {"updated": 1}

    r = api.get(f"/api/v1/salary/technician/{technician.id}", headers=auth_headers(owner))
    assert r.json()["data"]["records"][0]["is_paid"] is True


def test_notifications_read(api, db, org, owner, client_rec, work_a, work_b):
    _create_order(api, owner, client_rec, work_a, work_b)
    h = auth_headers(owner)
    items = api.get("/api/v1/notifications", headers=h).json()["data"]["notifications"]
    assert [n["type"] for n in items] == ["order_created"]

    r = api.patch(f"/api/v1/notifications/{items[0]['id']}/read", headers=h)
    assert r.json()["data"]["is_read"] is True

    _create_order(api, owner, client_rec, work_a, work_b)
    r = api.patch("/api/v1/notifications/read-all", headers=h)
    assert r.json()["data"] == {"updated": 1}
    assert api.get("/api/v1/notifications", headers=h).json()["data"]["unread_count"] == 0

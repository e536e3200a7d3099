"""End-to-end HTTP tests through the FastAPI app."""

import pytest

from dineflow import config


@pytest.mark.asyncio
async def test_health_and_config(client):
    assert (await client.get("/health")).json() == {"status": "ok"}
    cfg = (await client.get("/config")).json()
    assert cfg["vat_rate"] == 0.12
    assert "card" in cfg["payment_methods"]


@pytest.mark.asyncio
async def test_staff_endpoints_require_auth(client, seeded):
    response = await client.post(f"/api/tables/{seeded['tables'][0]}/claim")
    assert response.status_code == 401

    response = await client.get("/api/orders/kitchen")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_waiter_cannot_use_admin_endpoints(client, waiter_headers):
    response = await client.post("/api/admin/daily-reset", headers=waiter_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_me_returns_roles(client, waiter_headers):
    me = (await client.get("/api/auth/me", headers=waiter_headers)).json()
    assert me["username"] == "waiter1"
    assert me["roles"] == ["waiter"]


@pytest.mark.asyncio
async def test_domain_errors_have_code_and_detail(client, seeded, waiter_headers):
    table_id = seeded["tables"][0]
    first = await client.post(f"/api/tables/{table_id}/claim", headers=waiter_headers)
    assert first.status_code == 200

    second = await client.post(f"/api/tables/{table_id}/claim", headers=waiter_headers)
    assert second.status_code == 409
    body = second.json()
    assert body["code"] == "table_occupied"
    assert "already occupied" in body["detail"]

    missing = await client.get("/api/sessions/99999")
    assert missing.status_code == 404
    assert missing.json()["code"] == "session_not_found"


@pytest.mark.asyncio
async def test_full_dining_flow(client, seeded, waiter_headers):
    table_id = seeded["tables"][0]

    # Diners arrive.
    alice = (await client.post("/api/sessions/join", json={"table_id": table_id, "diner_name": "Alice"})).json()
    session_id = alice["session_id"]
    assert alice["is_new_session"] is True
    pin = alice["pin"]

    bob = await client.post(
        "/api/sessions/join", json={"table_id": table_id, "diner_name": "Bob", "pin": pin}
    )
    assert bob.status_code == 200
    assert bob.json()["session_id"] == session_id

    clash = await client.post("/api/sessions/join", json={"table_id": table_id, "diner_name": "alice"})
    assert clash.status_code == 409
    assert clash.json()["code"] == "name_taken"

    # Ordering.
    burger = await client.post("/api/orders/cart", json={
        "session_id": session_id, "diner_name": "Alice", "menu_item_id": seeded["menu"]["burger"], "quantity": 2,
    })
    assert burger.status_code == 201
    platter = await client.post("/api/orders/cart", json={
        "session_id": session_id, "diner_name": "Bob", "menu_item_id": seeded["menu"]["platter"], "is_shared": True,
    })
    platter_id = platter.json()["id"]

    confirmed = (await client.post("/api/orders/confirm", json={"session_id": session_id})).json()
    assert len(confirmed["confirmed"]) == 2
    again = (await client.post("/api/orders/confirm", json={"session_id": session_id})).json()
    assert again["confirmed"] == []

    # Kitchen.
    queue = (await client.get("/api/orders/kitchen", headers=waiter_headers)).json()
    assert {o["id"] for o in queue} == {burger.json()["id"], platter_id}
    for status in ("preparing", "ready"):
        step = await client.post(
            f"/api/orders/{burger.json()['id']}/status", json={"status": status}, headers=waiter_headers
        )
        assert step.status_code == 200
    backwards = await client.post(
        f"/api/orders/{burger.json()['id']}/status", json={"status": "waiting"}, headers=waiter_headers
    )
    assert backwards.status_code == 409
    assert backwards.json()["code"] == "invalid_order_transition"

    inbox = (await client.get("/api/notifications", params={"type": "kitchen_ready"}, headers=waiter_headers)).json()
    assert len(inbox) == 1

    # Names are deduplicated case-insensitively.
    bad_split = await client.post("/api/splits", json={"order_id": platter_id, "participants": ["Bob", "bob"]})
    assert bad_split.status_code == 400
    assert bad_split.json()["code"] == "invalid_participant_count"

    split = await client.post("/api/splits", json={"order_id": platter_id, "participants": ["Alice", "Bob"]})
    assert split.status_code == 201
    assert split.json()["split_price"] == 50.0

    price = (await client.get(f"/api/orders/{platter_id}/price")).json()
    assert price["each_price"] == 100.0
    assert price["per_person_price"] == 50.0

    # Bill and payment.
    bill = (await client.get(f"/api/payments/{session_id}/bill")).json()
    assert bill["subtotal"] == 125.0  # 2 x 12.50 + 100.00
    assert bill["vat_amount"] == 15.0
    assert bill["total"] == 140.0

    requested = await client.post(
        f"/api/payments/{session_id}/request", json={"payment_type": "table", "tip_amount": 5}
    )
    assert requested.status_code == 201
    assert requested.json()["final_total"] == 145.0

    conflicting = await client.post(
        f"/api/payments/{session_id}/request", json={"payment_type": "individual", "diner_name": "Bob"}
    )
    assert conflicting.status_code == 409
    assert conflicting.json()["code"] == "payment_already_pending"

    unauthenticated = await client.post(
        f"/api/payments/{session_id}/complete", json={"payment_type": "table", "payment_method": "card"}
    )
    assert unauthenticated.status_code == 401

    receipt = await client.post(
        f"/api/payments/{session_id}/complete",
        json={"payment_type": "table", "payment_method": "card"},
        headers=waiter_headers,
    )
    assert receipt.status_code == 200
    assert receipt.json()["total"] == 145.0
    assert receipt.json()["completed_by"] == "waiter1"

    replay = await client.post(
        f"/api/payments/{session_id}/complete",
        json={"payment_type": "table", "payment_method": "card"},
        headers=waiter_headers,
    )
    assert replay.json()["id"] == receipt.json()["id"]

    status = (await client.get(f"/api/payments/{session_id}/status")).json()
    assert status["payment_status"] == "completed"
    assert status["status"] == "completed"

    feed = (await client.get(f"/api/notifications/session/{session_id}")).json()
    redirect = [n for n in feed if n["type"] == "payment_complete"]
    assert redirect[0]["metadata"]["action"] == "redirect_to_receipt"

    tables = (await client.get("/api/tables")).json()
    assert next(t for t in tables if t["id"] == table_id)["occupied"] is False


@pytest.mark.asyncio
async def test_verify_pin_endpoint(client, seeded, waiter_headers):
    table_id = seeded["tables"][1]
    claim = (await client.post(f"/api/tables/{table_id}/claim", headers=waiter_headers)).json()

    ok = await client.post("/api/tables/verify-pin", json={"table": "2", "pin": claim["pin"]})
    assert ok.status_code == 200
    assert ok.json()["session_id"] == claim["session_id"]

    wrong = "0000" if claim["pin"] != "0000" else "9999"
    bad = await client.post("/api/tables/verify-pin", json={"table": table_id, "pin": wrong})
    assert bad.status_code == 403
    assert bad.json()["code"] == "invalid_pin"


@pytest.mark.asyncio
async def test_admin_adjust_bill_and_reset_payment(client, seeded, admin_headers):
    table_id = seeded["tables"][2]
    joined = (await client.post("/api/sessions/join", json={"table_id": table_id, "diner_name": "Dana"})).json()
    session_id = joined["session_id"]
    order = (await client.post("/api/orders/cart", json={
        "session_id": session_id, "diner_name": "Dana", "menu_item_id": seeded["menu"]["lemonade"],
    })).json()
    await client.post("/api/orders/confirm", json={"session_id": session_id})

    adjusted = await client.post(
        f"/api/admin/sessions/{session_id}/adjust-bill",
        json={"order_ids": [order["id"]], "reason": "comped"},
        headers=admin_headers,
    )
    assert adjusted.status_code == 200
    assert adjusted.json()["amount_removed"] == 3.0

    await client.post(f"/api/payments/{session_id}/request", json={"payment_type": "table"})
    reset = await client.post(f"/api/admin/sessions/{session_id}/reset-payment", headers=admin_headers)
    assert reset.status_code == 200
    assert reset.json()["payment_status"] == "none"

    logs = (await client.get("/api/admin/audit-logs", params={"action": "bill_adjusted"}, headers=admin_headers)).json()
    assert len(logs) == 1
    assert logs[0]["performed_by"] == "manager1"


@pytest.mark.asyncio
async def test_reaper_endpoint_accepts_cron_secret(client, seeded, monkeypatch):
    monkeypatch.setattr(config, "CRON_SECRET", "tick-tock")

    denied = await client.post("/api/admin/reaper/run", headers={"X-Cron-Secret": "wrong"})
    assert denied.status_code == 401

    response = await client.post("/api/admin/reaper/run", headers={"X-Cron-Secret": "tick-tock"})
    assert response.status_code == 200
    body = response.json()
    assert body["triggered_by"] == "cron"
    assert body["deleted"] == {"cart_orders": 0, "sessions": 0}
    assert body["errors"] == []


@pytest.mark.asyncio
async def test_reaper_endpoint_accepts_admin_token(client, admin_headers):
    response = await client.post("/api/admin/reaper/run", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["triggered_by"] == "manager1"

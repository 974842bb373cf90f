"""HTTP-level tests for the REST API.

The app is driven through httpx's ASGI transport. The lifespan hook is not
run, so each test installs its own ServiceContainer on ``app.state``.
"""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from escrow_settlement.config import Settings
from escrow_settlement.main import create_app
from escrow_settlement.services.container import build_services

from conftest import BUYER, SELLER, SELLER_ACCOUNT

CREATE_BODY = {
    "buyer_id": BUYER,
    "seller_id": SELLER,
    "seller_destination_id": SELLER_ACCOUNT,
    "amount": 10000,
    "item_description": "Vintage film camera",
    "item_type": "physical_goods",
}


@pytest_asyncio.fixture
async def client(services):
    app = create_app()
    app.state.services = services
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http:
        yield http


async def create(client: httpx.AsyncClient, **overrides) -> dict:
    response = await client.post("/api/v1/escrow", json={**CREATE_BODY, **overrides})
    assert response.status_code == 201, response.text
    return response.json()["transaction"]


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_returns_fee_split(self, client) -> None:
        response = await client.post("/api/v1/escrow", json=CREATE_BODY)

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        txn = body["transaction"]
        assert txn["status"] == "pending_payment"
        assert (txn["platform_fee"], txn["rail_fee"], txn["seller_amount"]) == (280, 320, 9400)
        assert txn["payment_intent_id"].startswith("pi_sim_")
        assert [c["type"] for c in txn["conditions"]] == [
            "tracking_confirmation",
            "buyer_confirmation",
            "time_based",
        ]
        assert "settlement_claim" not in txn

    @pytest.mark.asyncio
    async def test_malformed_conditions_are_listed(self, client) -> None:
        response = await client.post(
            "/api/v1/escrow",
            json={**CREATE_BODY, "conditions": [{"type": "telepathy"}]},
        )

        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "INVALID_CONDITIONS"
        assert body["errors"]

    @pytest.mark.asyncio
    async def test_amount_below_minimum(self, client) -> None:
        response = await client.post("/api/v1/escrow", json={**CREATE_BODY, "amount": 50})

        assert response.status_code == 400
        assert response.json()["error"] == "AMOUNT_OUT_OF_BOUNDS"

    @pytest.mark.asyncio
    async def test_request_schema_is_enforced(self, client) -> None:
        response = await client.post("/api/v1/escrow", json={**CREATE_BODY, "amount": 0})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_same_buyer_and_seller(self, client) -> None:
        response = await client.post("/api/v1/escrow", json={**CREATE_BODY, "seller_id": BUYER})

        assert response.status_code == 400
        assert response.json()["error"] == "SAME_PARTY"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_happy_path_over_http(self, client) -> None:
        txn = await create(client)
        base = f"/api/v1/escrow/{txn['id']}"

        paid = await client.post(f"{base}/capture-payment", json={"actor_id": BUYER})
        assert paid.status_code == 200
        assert paid.json()["transaction"]["status"] == "payment_received"

        shipped = await client.post(
            f"{base}/ship",
            json={"seller_id": SELLER, "carrier": "ups", "tracking_number": "1Z999AA1"},
        )
        assert shipped.json()["transaction"]["shipping"]["tracking_number"] == "1Z999AA1"

        delivered = await client.post(f"{base}/carrier-update", json={"status": "delivered"})
        assert delivered.json()["transaction"]["status"] == "delivered"
        assert delivered.json()["evaluation"]["unmet"] == [
            "Buyer must confirm receipt",
            "Auto-release after 14 days if no dispute",
        ]

        confirmed = await client.post(f"{base}/confirm", json={"buyer_id": BUYER})
        body = confirmed.json()
        assert body["transaction"]["status"] == "released"
        assert body["evaluation"]["released"] is True
        assert body["transaction"]["payout_id"].startswith("po_sim_")

        events = (await client.get(f"{base}/events")).json()
        assert events[0]["event_type"] == "created"
        assert events[-1]["event_type"] == "released"

    @pytest.mark.asyncio
    async def test_status_endpoint(self, client) -> None:
        txn = await create(client)

        response = await client.get(f"/api/v1/escrow/{txn['id']}/status")

        body = response.json()
        assert body["status"] == "pending_payment"
        assert set(body["allowed_events"]) == {"capture_payment", "cancel"}
        assert body["all_conditions_met"] is False

    @pytest.mark.asyncio
    async def test_cancel_without_body(self, client) -> None:
        txn = await create(client)

        response = await client.post(f"/api/v1/escrow/{txn['id']}/cancel")

        assert response.status_code == 200
        assert response.json()["transaction"]["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_dispute_then_refund(self, client) -> None:
        txn = await create(client)
        base = f"/api/v1/escrow/{txn['id']}"
        await client.post(f"{base}/capture-payment")
        await client.post(f"{base}/ship", json={"seller_id": SELLER, "carrier": "ups", "tracking_number": "1Z2"})

        disputed = await client.post(f"{base}/dispute", json={"buyer_id": BUYER, "reason": "Never arrived"})
        assert disputed.json()["transaction"]["status"] == "disputed"

        resolved = await client.post(
            f"{base}/resolve-dispute", json={"outcome": "refund", "refund_amount": 4000}
        )
        assert resolved.status_code == 200
        assert resolved.json()["status"] == "refunded"
        assert resolved.json()["amount"] == 4000

    @pytest.mark.asyncio
    async def test_user_transactions(self, client) -> None:
        first = await create(client)
        await create(client, buyer_id="buyer_carol")

        response = await client.get(f"/api/v1/escrow/users/{BUYER}/transactions", params={"role": "buyer"})

        body = response.json()
        assert body["user_id"] == BUYER
        assert [t["id"] for t in body["transactions"]] == [first["id"]]


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_unknown_transaction(self, client, sample_transaction_id) -> None:
        response = await client.get(f"/api/v1/escrow/{sample_transaction_id}")

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "TRANSACTION_NOT_FOUND",
            "message": f"Escrow transaction not found: {sample_transaction_id}",
        }

    @pytest.mark.asyncio
    async def test_wrong_buyer(self, client) -> None:
        txn = await create(client)
        response = await client.post(f"/api/v1/escrow/{txn['id']}/capture-payment", json={"actor_id": "mallory"})
        assert response.status_code == 403
        assert response.json()["error"] == "UNAUTHORIZED_ACTOR"

    @pytest.mark.asyncio
    async def test_invalid_transition(self, client) -> None:
        txn = await create(client)
        response = await client.post(
            f"/api/v1/escrow/{txn['id']}/ship",
            json={"seller_id": SELLER, "carrier": "ups", "tracking_number": "1Z1"},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE_TRANSITION"

    @pytest.mark.asyncio
    async def test_release_before_conditions(self, client) -> None:
        txn = await create(client)
        await client.post(f"/api/v1/escrow/{txn['id']}/capture-payment")

        response = await client.post(f"/api/v1/escrow/{txn['id']}/release")

        assert response.status_code == 409
        assert response.json()["error"] == "CONDITIONS_NOT_MET"

    @pytest.mark.asyncio
    async def test_rail_failure(self, client, rail) -> None:
        txn = await create(client)
        rail.fail["capture_payment"] = 1

        response = await client.post(f"/api/v1/escrow/{txn['id']}/capture-payment")

        assert response.status_code == 502
        assert response.json()["error"] == "PAYMENT_RAIL_ERROR"

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client) -> None:
        response = await client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"


class TestPlatformRoutes:
    @pytest.mark.asyncio
    async def test_config_update_applies_to_new_transactions(self, client) -> None:
        before = (await client.get("/api/v1/platform/config")).json()
        assert before["platform_fee_percentage"] == 2.5

        updated = await client.patch("/api/v1/platform/config", json={"platform_fee_percentage": 3.0})
        assert updated.status_code == 200
        assert updated.json()["platform_fee_percentage"] == 3.0
        assert updated.json()["platform_fee_fixed"] == 30

        txn = await create(client)
        assert txn["platform_fee"] == 330

    @pytest.mark.asyncio
    async def test_inconsistent_bounds_rejected(self, client) -> None:
        response = await client.patch("/api/v1/platform/config", json={"min_transaction_amount": 2_000_000})
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_CONFIG"

    @pytest.mark.asyncio
    async def test_supported_conditions(self, client) -> None:
        body = (await client.get("/api/v1/platform/conditions")).json()
        assert "tracking_confirmation" in body["builtin"]
        assert "custom" in body["builtin"]
        assert body["custom"] == []

    @pytest.mark.asyncio
    async def test_health(self, client) -> None:
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": "0.1.0", "store": "healthy", "redis": "disabled"}


class TestCron:
    @pytest.mark.asyncio
    async def test_open_when_no_secret(self, client) -> None:
        response = await client.post("/api/v1/cron/escrow-auto-release")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["auto_release"]["processed"] == 0

    @pytest.mark.asyncio
    async def test_secret_required_when_configured(self, store, rail, clock) -> None:
        settings = Settings(_env_file=None, store_backend="memory", cron_secret="s3cret")
        app = create_app()
        app.state.services = build_services(store, rail, settings=settings, clock=clock)

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http:
            missing = await http.get("/api/v1/cron/escrow-auto-release")
            wrong = await http.get(
                "/api/v1/cron/escrow-auto-release", headers={"Authorization": "Bearer nope"}
            )
            ok = await http.get(
                "/api/v1/cron/escrow-auto-release", headers={"Authorization": "Bearer s3cret"}
            )

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert ok.status_code == 200
        assert set(ok.json()) == {"success", "auto_release", "tracking", "reminders", "timestamp"}

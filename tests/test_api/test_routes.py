"""HTTP surface tests: routes, status codes and the rejection body.

The app is driven in-process through httpx's ASGITransport with the test
engine placed on ``app.state`` (the lifespan is not run).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest

from escrow_engine.domain.collaborators import ArbitrationRecord
from escrow_engine.domain.enums import ArbitrationDecision
from escrow_engine.infrastructure.database.engine import build_engine
from escrow_engine.main import create_app

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fakeredis.aioredis import FakeRedis
    from fastapi import FastAPI

    from escrow_engine.arbitration import MockArbitrator
    from escrow_engine.config import Settings
    from escrow_engine.services.engine import EscrowEngine

BUYER = "buyer-1"
SELLER = "seller-1"
OPERATOR = "ops-1"


@pytest.fixture
def app(engine: EscrowEngine, redis: FakeRedis) -> FastAPI:
    application = create_app()
    application.state.engine = engine
    application.state.redis = redis
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


def _as(actor: str, **extra: str) -> dict:
    return {"X-Actor-Id": actor, **extra}


async def _create(client: httpx.AsyncClient, amount: str = "100") -> dict:
    resp = await client.post(
        "/api/v1/escrow",
        json={"buyer_id": BUYER, "seller_id": SELLER, "amount": amount},
        headers=_as(BUYER),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestEscrowRoutes:
    async def test_create_and_get(self, client: httpx.AsyncClient) -> None:
        created = await _create(client)
        assert created["status"] == "INITIATED"
        assert created["buyer_id"] == BUYER

        resp = await client.get(f"/api/v1/escrow/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["id"] == created["id"]

    async def test_create_requires_actor_header(self, client: httpx.AsyncClient) -> None:
        resp = await client.post(
            "/api/v1/escrow", json={"buyer_id": BUYER, "seller_id": SELLER, "amount": "5"}
        )
        assert resp.status_code == 422

    async def test_create_rejects_bad_amount(self, client: httpx.AsyncClient) -> None:
        resp = await client.post(
            "/api/v1/escrow",
            json={"buyer_id": BUYER, "seller_id": SELLER, "amount": "-1"},
            headers=_as(BUYER),
        )
        assert resp.status_code == 422

    async def test_unknown_transaction_is_404(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/api/v1/escrow/00000000-0000-0000-0000-000000000000")
        assert resp.status_code == 404
        body = resp.json()
        assert body["error"] == "NOT_FOUND"
        assert body["current"] is None

    async def test_happy_path_over_http(self, client: httpx.AsyncClient) -> None:
        tx_id = (await _create(client))["id"]
        base = f"/api/v1/escrow/{tx_id}"

        assert (await client.post(f"{base}/fund", headers=_as(BUYER))).json()["status"] == "FUNDED"
        proof = await client.post(
            f"{base}/proofs",
            json={"proof_type": "tracking", "content_ref": "TRK-9"},
            headers=_as(SELLER),
        )
        assert proof.status_code == 201
        confirm = await client.post(f"{base}/confirm-delivery", headers=_as(BUYER))
        assert confirm.json()["status"] == "VERIFIED"
        released = await client.post(f"{base}/release", headers=_as(BUYER))
        assert released.json()["status"] == "COMPLETED"

        status = (await client.get(f"{base}/status")).json()
        assert status["status"] == "COMPLETED"
        assert status["allowed_events"] == []

        events = (await client.get(f"{base}/events")).json()
        assert [e["new_status"] for e in events][:2] == ["INITIATED", "FUNDED"]

    async def test_wrong_actor_is_403_with_current(self, client: httpx.AsyncClient) -> None:
        tx_id = (await _create(client))["id"]
        resp = await client.post(f"/api/v1/escrow/{tx_id}/fund", headers=_as(SELLER))
        assert resp.status_code == 403
        body = resp.json()
        assert body["error"] == "UNAUTHORIZED"
        assert body["current"]["status"] == "INITIATED"

    async def test_illegal_transition_is_409(self, client: httpx.AsyncClient) -> None:
        tx_id = (await _create(client))["id"]
        resp = await client.post(
            f"/api/v1/escrow/{tx_id}/transition",
            json={"target_status": "COMPLETED"},
            headers=_as(BUYER),
        )
        assert resp.status_code == 409
        assert resp.json()["error"] == "INVALID_TRANSITION"

    async def test_idempotency_header_replays(self, client: httpx.AsyncClient) -> None:
        payload = {"buyer_id": BUYER, "seller_id": SELLER, "amount": "7"}
        headers = _as(BUYER, **{"Idempotency-Key": "create-7"})
        first = await client.post("/api/v1/escrow", json=payload, headers=headers)
        second = await client.post("/api/v1/escrow", json=payload, headers=headers)
        assert first.json()["id"] == second.json()["id"]

        listed = (await client.get(f"/api/v1/escrow/user/{BUYER}")).json()
        assert len(listed) == 1

    async def test_request_id_echoed(self, client: httpx.AsyncClient) -> None:
        resp = await client.get(
            "/api/v1/escrow/00000000-0000-0000-0000-000000000000",
            headers={"X-Request-ID": "req-123"},
        )
        assert resp.headers["X-Request-ID"] == "req-123"


class TestDisputeRoutes:
    async def _disputed(self, client: httpx.AsyncClient) -> str:
        tx_id = (await _create(client))["id"]
        await client.post(f"/api/v1/escrow/{tx_id}/fund", headers=_as(BUYER))
        return tx_id

    async def test_open_dispute_resolves(self, client: httpx.AsyncClient) -> None:
        tx_id = await self._disputed(client)
        resp = await client.post(
            f"/api/v1/escrow/{tx_id}/disputes",
            json={"reason": "never shipped"},
            headers=_as(BUYER),
        )
        assert resp.status_code == 201
        dispute = resp.json()
        assert dispute["status"] == "CLOSED"
        assert dispute["resolution"] == "resolved_buyer"

        fetched = await client.get(f"/api/v1/disputes/{dispute['id']}")
        assert fetched.json()["id"] == dispute["id"]
        listed = await client.get(f"/api/v1/escrow/{tx_id}/disputes")
        assert len(listed.json()) == 1

    async def test_manual_resolution_is_operator_only(
        self, client: httpx.AsyncClient, arbitrator: MockArbitrator
    ) -> None:
        arbitrator.script(
            ArbitrationRecord(decision=ArbitrationDecision.RESOLVED_SELLER, confidence=0.5)
        )
        tx_id = await self._disputed(client)
        dispute = (
            await client.post(
                f"/api/v1/escrow/{tx_id}/disputes",
                json={"reason": "damaged"},
                headers=_as(BUYER),
            )
        ).json()
        assert dispute["status"] == "ESCALATED"

        url = f"/api/v1/disputes/{dispute['id']}/resolve"
        body = {"decision": "resolved_seller", "rationale": "photos inconclusive"}
        assert (await client.post(url, json=body, headers=_as(SELLER))).status_code == 403

        resolved = await client.post(url, json=body, headers=_as(OPERATOR))
        assert resolved.status_code == 200
        assert resolved.json()["status"] == "CLOSED"

        bad = await client.post(url, json={"decision": "coin_flip"}, headers=_as(OPERATOR))
        assert bad.status_code == 422

    async def test_conflicting_dispute_is_409(
        self, client: httpx.AsyncClient, arbitrator: MockArbitrator
    ) -> None:
        arbitrator.script(
            ArbitrationRecord(decision=ArbitrationDecision.RESOLVED_SELLER, confidence=0.5)
        )
        tx_id = await self._disputed(client)
        url = f"/api/v1/escrow/{tx_id}/disputes"
        await client.post(url, json={"reason": "first"}, headers=_as(BUYER))
        resp = await client.post(url, json={"reason": "second"}, headers=_as(SELLER))
        assert resp.status_code == 409
        assert resp.json()["error"] == "CONFLICTING_DISPUTE"


class TestUserRoutes:
    async def test_reputation_defaults(self, client: httpx.AsyncClient) -> None:
        resp = await client.get("/api/v1/users/newcomer/reputation")
        assert resp.status_code == 200
        assert resp.json()["overall_score"] == 0.5

    async def test_verification_operator_only(self, client: httpx.AsyncClient) -> None:
        url = f"/api/v1/users/{SELLER}/verification"
        denied = await client.put(url, json={"status": "verified"}, headers=_as(SELLER))
        assert denied.status_code == 403
        ok = await client.put(url, json={"status": "verified"}, headers=_as(OPERATOR))
        assert ok.json()["trust_level"] == "verified"


class TestHealth:
    async def test_health_ok(
        self, client: httpx.AsyncClient, settings: Settings, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        db_engine = build_engine(settings.database_url)
        monkeypatch.setattr("escrow_engine.api.routes.health._get_engine", lambda: db_engine)
        try:
            resp = await client.get("/health")
        finally:
            await db_engine.dispose()
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["database"] == "healthy"
        assert body["redis"] == "healthy"

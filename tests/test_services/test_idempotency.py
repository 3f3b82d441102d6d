"""Idempotency key replay through the Redis store (fakeredis)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from escrow_engine.domain.enums import ErrorKind, EscrowStatus
from escrow_engine.infrastructure.redis_client import RedisIdempotencyStore

if TYPE_CHECKING:
    from conftest import FlakySettlement, Lifecycle
    from fakeredis.aioredis import FakeRedis

    from escrow_engine.services.engine import EscrowEngine

BUYER = "buyer-1"
SELLER = "seller-1"


class TestIdempotentOperations:
    async def test_create_replays_same_transaction(self, engine: EscrowEngine) -> None:
        first = await engine.create_transaction(BUYER, BUYER, SELLER, "10", idempotency_key="k-1")
        second = await engine.create_transaction(BUYER, BUYER, SELLER, "10", idempotency_key="k-1")
        assert first.ok and second.ok
        assert second.replayed
        assert second.value.id == first.value.id
        assert len((await engine.list_user_transactions(BUYER)).value) == 1

    async def test_keys_are_scoped_per_actor(self, engine: EscrowEngine) -> None:
        first = await engine.create_transaction(BUYER, BUYER, SELLER, "10", idempotency_key="k")
        second = await engine.create_transaction(SELLER, BUYER, SELLER, "10", idempotency_key="k")
        assert not second.replayed
        assert second.value.id != first.value.id

    async def test_fund_replay_does_not_call_settlement_twice(
        self, lifecycle: Lifecycle, engine: EscrowEngine, settlement: FlakySettlement
    ) -> None:
        tx = await lifecycle.create()
        first = await engine.fund(str(tx.id), BUYER, idempotency_key="fund-1")
        second = await engine.fund(str(tx.id), BUYER, idempotency_key="fund-1")
        assert first.value.status == EscrowStatus.FUNDED
        assert second.replayed
        assert second.value.status == EscrowStatus.FUNDED
        assert [op for op, _ in settlement.calls].count("confirm_deposit") == 1

    async def test_failed_operation_frees_the_key(
        self, lifecycle: Lifecycle, engine: EscrowEngine
    ) -> None:
        tx = await lifecycle.create()
        rejected = await engine.fund(str(tx.id), SELLER, idempotency_key="fund-2")
        assert rejected.error_kind is ErrorKind.UNAUTHORIZED

        # Same actor, same key: the rejection was not stored, so it runs again.
        again = await engine.fund(str(tx.id), SELLER, idempotency_key="fund-2")
        assert again.error_kind is ErrorKind.UNAUTHORIZED
        assert not again.replayed

    async def test_in_flight_key_is_a_duplicate(
        self, lifecycle: Lifecycle, engine: EscrowEngine, redis: FakeRedis
    ) -> None:
        tx = await lifecycle.funded()
        await redis.set(
            RedisIdempotencyStore.key_for("release", BUYER, "rel-1"), "pending"
        )
        outcome = await engine.release(str(tx.id), BUYER, idempotency_key="rel-1")
        assert outcome.error_kind is ErrorKind.DUPLICATE_OPERATION
        assert outcome.current.status == EscrowStatus.FUNDED


class TestStore:
    async def test_claim_complete_claim(self, redis: FakeRedis) -> None:
        store = RedisIdempotencyStore(redis, ttl_seconds=60)
        assert await store.claim("op", "a", "k") is None
        await store.complete("op", "a", "k", {"entity": "EscrowTransaction", "id": "x"})
        assert await store.claim("op", "a", "k") == {"entity": "EscrowTransaction", "id": "x"}

    async def test_release_frees_key(self, redis: FakeRedis) -> None:
        store = RedisIdempotencyStore(redis)
        await store.claim("op", "a", "k")
        await store.release("op", "a", "k")
        assert await store.claim("op", "a", "k") is None

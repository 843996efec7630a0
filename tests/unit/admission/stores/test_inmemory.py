"""Unit tests for InMemoryAtomicStore."""

import pytest

from tollgate.admission.keys import AdmissionKeys
from tollgate.admission.stores.base import Procedure, ProcedureArgs, ReplyCode
from tollgate.admission.stores.inmemory import InMemoryAtomicStore

KEYS = AdmissionKeys(ratelimit="ratelimit:op:D1", dedup="dedup:op:fp1")


def window_args(limit: int = 2, member: str = "m") -> ProcedureArgs:
    return ProcedureArgs(
        now_ms=None,
        dedup_ttl_ms=5000,
        limit=limit,
        period_ms=1000,
        state_ttl_ms=2000,
        member=member,
    )


@pytest.fixture
def store(clock) -> InMemoryAtomicStore:
    return InMemoryAtomicStore(clock=clock)


class TestInMemoryWindow:
    """Tests for the window procedure."""

    async def test_allow_records_dedup_claim(self, store: InMemoryAtomicStore) -> None:
        reply = await store.execute(Procedure.ADMIT_WINDOW, KEYS, window_args())
        assert reply.code == ReplyCode.ALLOW
        assert store.peek("dedup:op:fp1") == "1"

    async def test_duplicate_does_not_touch_limiter(self, store: InMemoryAtomicStore) -> None:
        await store.execute(Procedure.ADMIT_WINDOW, KEYS, window_args())
        before = list(store.peek("ratelimit:op:D1"))

        reply = await store.execute(Procedure.ADMIT_WINDOW, KEYS, window_args())

        assert reply.code == ReplyCode.DUPLICATE
        assert reply.remaining is None
        assert store.peek("ratelimit:op:D1") == before

    async def test_rate_limited_content_is_claimed(self, store: InMemoryAtomicStore) -> None:
        await store.execute(Procedure.ADMIT_WINDOW, KEYS, window_args(limit=1))
        other = AdmissionKeys(ratelimit="ratelimit:op:D1", dedup="dedup:op:fp2")

        reply = await store.execute(Procedure.ADMIT_WINDOW, other, window_args(limit=1))
        retry = await store.execute(Procedure.ADMIT_WINDOW, other, window_args(limit=1))

        assert reply.code == ReplyCode.RATE_LIMITED
        assert store.peek("dedup:op:fp2") == "1"
        assert retry.code == ReplyCode.DUPLICATE

    async def test_duplicates_of_saturated_caller_leave_state_alone(
        self, store: InMemoryAtomicStore, clock
    ) -> None:
        await store.execute(Procedure.ADMIT_WINDOW, KEYS, window_args(limit=1))
        other = AdmissionKeys(ratelimit="ratelimit:op:D1", dedup="dedup:op:fp2")
        await store.execute(Procedure.ADMIT_WINDOW, other, window_args(limit=1))
        before = list(store.peek("ratelimit:op:D1"))

        clock.advance(0.25)
        replies = [
            await store.execute(Procedure.ADMIT_WINDOW, other, window_args(limit=1))
            for _ in range(3)
        ]
        clock.advance(1.75)

        assert [r.code for r in replies] == [ReplyCode.DUPLICATE] * 3
        # The state expires on its original schedule, so nothing refreshed it
        assert before == [1_000_000.0]
        assert store.peek("ratelimit:op:D1") is None

    async def test_dedup_claim_expires(self, store: InMemoryAtomicStore, clock) -> None:
        await store.execute(Procedure.ADMIT_WINDOW, KEYS, window_args(limit=10))
        clock.advance(5.0)
        assert store.peek("dedup:op:fp1") is None

        reply = await store.execute(Procedure.ADMIT_WINDOW, KEYS, window_args(limit=10))
        assert reply.code == ReplyCode.ALLOW

    async def test_limiter_state_expires(self, store: InMemoryAtomicStore, clock) -> None:
        no_dedup = AdmissionKeys(ratelimit="ratelimit:op:D1")
        await store.execute(Procedure.ADMIT_WINDOW, no_dedup, window_args())
        clock.advance(2.0)
        assert store.peek("ratelimit:op:D1") is None

    async def test_explicit_now_is_used_for_limiter(self, store: InMemoryAtomicStore) -> None:
        no_dedup = AdmissionKeys(ratelimit="ratelimit:op:D1")
        args = ProcedureArgs(1_000_000, 0, 1, 1000, 2000, "m")
        await store.execute(Procedure.ADMIT_WINDOW, no_dedup, args)
        assert store.peek("ratelimit:op:D1") == [1_000_000.0]


class TestInMemoryBucket:
    """Tests for the bucket procedure."""

    async def test_bucket_state_is_tokens_and_timestamp(
        self, store: InMemoryAtomicStore, clock
    ) -> None:
        reply = await store.execute(Procedure.ADMIT_BUCKET, KEYS, window_args(limit=3))
        assert reply.code == ReplyCode.ALLOW
        assert reply.remaining == 2
        assert store.peek("ratelimit:op:D1") == (2.0, clock.now * 1000)

    async def test_duplicate_does_not_refill_or_consume(
        self, store: InMemoryAtomicStore, clock
    ) -> None:
        await store.execute(Procedure.ADMIT_BUCKET, KEYS, window_args(limit=3))
        before = store.peek("ratelimit:op:D1")

        clock.advance(0.5)
        reply = await store.execute(Procedure.ADMIT_BUCKET, KEYS, window_args(limit=3))

        assert reply.code == ReplyCode.DUPLICATE
        assert store.peek("ratelimit:op:D1") == before


class TestInMemoryExpiry:
    """Tests for purging expired entries."""

    async def test_expired_entries_swept_on_execute(self, clock) -> None:
        store = InMemoryAtomicStore(clock=clock, sweep_interval=10.0)
        for i in range(3):
            keys = AdmissionKeys(ratelimit=f"ratelimit:op:D{i}", dedup=f"dedup:op:fp{i}")
            await store.execute(Procedure.ADMIT_WINDOW, keys, window_args())
        assert store.entry_count() == 6

        clock.advance(10.0)
        await store.execute(
            Procedure.ADMIT_WINDOW, AdmissionKeys(ratelimit="ratelimit:op:D9"), window_args()
        )

        assert store.entry_count() == 1

    async def test_live_entries_survive_sweep(self, clock) -> None:
        store = InMemoryAtomicStore(clock=clock, sweep_interval=1.0)
        await store.execute(Procedure.ADMIT_WINDOW, KEYS, window_args())

        clock.advance(1.0)
        await store.execute(
            Procedure.ADMIT_WINDOW, AdmissionKeys(ratelimit="ratelimit:op:D9"), window_args()
        )

        assert store.peek("dedup:op:fp1") == "1"


class TestInMemoryUtilities:
    """Tests for backend metadata and helpers."""

    async def test_backend_and_ping(self, store: InMemoryAtomicStore) -> None:
        assert store.backend == "inmemory"
        assert await store.ping() is True

    async def test_clear(self, store: InMemoryAtomicStore) -> None:
        await store.execute(Procedure.ADMIT_WINDOW, KEYS, window_args())
        store.clear()
        assert store.peek("dedup:op:fp1") is None

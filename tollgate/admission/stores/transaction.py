"""Redis-backed atomic store using optimistic transactions.

For Redis deployments where scripting is disabled. Both keys are WATCHed,
the state is read and evaluated client-side, and the writes are applied in
MULTI/EXEC with the dedup claim queued first. An existing dedup record ends
the attempt before any rate-limit state is read. If another client touches
either key in between, EXEC aborts and the whole procedure is retried from a
fresh read, which then sees the other client's claim.
"""

from typing import Any

from redis.asyncio import Redis
from redis.asyncio.client import Pipeline
from redis.exceptions import WatchError

from tollgate.admission.exceptions import StoreUnavailableError
from tollgate.admission.keys import AdmissionKeys
from tollgate.admission.stores.base import (
    AtomicStore,
    Procedure,
    ProcedureArgs,
    ProcedureReply,
    ReplyCode,
)
from tollgate.admission.stores.procedures import (
    DUPLICATE_REPLY,
    bucket_step,
    window_step,
)
from tollgate.observability.logging import get_logger

logger = get_logger(__name__)


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode()
    return float(value)


class RedisTransactionStore(AtomicStore):
    """Redis store running admission procedures as WATCH/MULTI/EXEC transactions.

    Uses the same key layout and data structures as RedisScriptStore, so
    the two can be swapped on a live keyspace.
    """

    backend = "redis_transaction"

    def __init__(self, redis: Redis, max_retries: int = 5) -> None:
        """Initialize Redis transaction store.

        Args:
            redis: Redis client instance
            max_retries: Attempts before a contended key is reported unavailable
        """
        self._redis = redis
        self._max_retries = max_retries

    async def execute(
        self,
        procedure: Procedure,
        keys: AdmissionKeys,
        args: ProcedureArgs,
    ) -> ProcedureReply:
        """Run the procedure, retrying when a watched key changes.

        Raises:
            StoreUnavailableError: If every attempt conflicted
        """
        for attempt in range(1, self._max_retries + 1):
            try:
                return await self._attempt(procedure, keys, args)
            except WatchError:
                logger.debug(
                    "admission_transaction_conflict",
                    key=keys.ratelimit,
                    attempt=attempt,
                )
        raise StoreUnavailableError(
            f"Transaction on {keys.ratelimit} conflicted {self._max_retries} times"
        )

    async def _attempt(
        self,
        procedure: Procedure,
        keys: AdmissionKeys,
        args: ProcedureArgs,
    ) -> ProcedureReply:
        async with self._redis.pipeline(transaction=True) as pipe:
            await pipe.watch(*keys.as_list())

            if keys.dedup is not None and await pipe.exists(keys.dedup):
                await pipe.unwatch()
                return DUPLICATE_REPLY

            now_ms = args.now_ms
            if now_ms is None:
                seconds, micros = await pipe.time()
                now_ms = int(seconds) * 1000 + int(micros) // 1000

            if procedure == Procedure.ADMIT_WINDOW:
                reply = await self._window(pipe, keys, args, now_ms)
            else:
                reply = await self._bucket(pipe, keys, args, now_ms)

            await pipe.execute()
            return reply

    @staticmethod
    def _begin(pipe: Pipeline, keys: AdmissionKeys, args: ProcedureArgs) -> None:
        pipe.multi()
        if keys.dedup is not None:
            pipe.set(keys.dedup, "1", px=args.dedup_ttl_ms, nx=True)

    async def _window(
        self,
        pipe: Pipeline,
        keys: AdmissionKeys,
        args: ProcedureArgs,
        now_ms: int,
    ) -> ProcedureReply:
        entries = await pipe.zrangebyscore(
            keys.ratelimit, f"({now_ms - args.period_ms}", "+inf", withscores=True
        )
        reply, _ = window_step(
            [score for _, score in entries], now_ms, args.limit, args.period_ms
        )

        self._begin(pipe, keys, args)
        pipe.zremrangebyscore(keys.ratelimit, "-inf", now_ms - args.period_ms)
        if reply.code == ReplyCode.ALLOW:
            pipe.zadd(keys.ratelimit, {args.member: now_ms})
        pipe.pexpire(keys.ratelimit, args.state_ttl_ms)
        return reply

    async def _bucket(
        self,
        pipe: Pipeline,
        keys: AdmissionKeys,
        args: ProcedureArgs,
        now_ms: int,
    ) -> ProcedureReply:
        raw_tokens, raw_last = await pipe.hmget(keys.ratelimit, ["tokens", "ts"])
        reply, tokens, last_ms = bucket_step(
            _as_float(raw_tokens),
            _as_float(raw_last),
            now_ms,
            args.limit,
            args.period_ms,
        )

        self._begin(pipe, keys, args)
        pipe.hset(keys.ratelimit, mapping={"tokens": repr(tokens), "ts": repr(last_ms)})
        pipe.pexpire(keys.ratelimit, args.state_ttl_ms)
        return reply

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        await self._redis.aclose()

"""Redis-backed atomic store using Lua scripting.

Each admission is one EVALSHA round trip; Redis runs the script without
interleaving any other command, which makes the conditional dedup claim and
the limiter update a single indivisible step.

Key format:
    dedup:{operation_id}:{fingerprint}      string sentinel, PX dedup TTL
    ratelimit:{operation_id}:{caller_id}    sorted set (window) or hash (bucket)
"""

from redis.asyncio import Redis

from tollgate.admission.keys import AdmissionKeys
from tollgate.admission.stores.base import (
    AtomicStore,
    Procedure,
    ProcedureArgs,
    ProcedureReply,
)
from tollgate.admission.stores.procedures import SCRIPTS
from tollgate.observability.logging import get_logger

logger = get_logger(__name__)


class RedisScriptStore(AtomicStore):
    """Redis store that runs admission procedures as registered Lua scripts.

    Scripts are registered once; redis-py sends EVALSHA and reloads the
    script transparently when the server replies NOSCRIPT.
    """

    backend = "redis"

    def __init__(self, redis: Redis) -> None:
        """Initialize Redis script store.

        Args:
            redis: Redis client instance
        """
        self._redis = redis
        self._scripts = {
            procedure: redis.register_script(source)
            for procedure, source in SCRIPTS.items()
        }

    async def execute(
        self,
        procedure: Procedure,
        keys: AdmissionKeys,
        args: ProcedureArgs,
    ) -> ProcedureReply:
        """Run the procedure's script in one round trip."""
        script = self._scripts[procedure]
        raw = await script(keys=keys.as_list(), args=args.as_argv())
        reply = ProcedureReply.from_raw(raw)

        logger.debug(
            "admission_script_executed",
            procedure=procedure.value,
            key=keys.ratelimit,
            code=reply.code.name,
        )
        return reply

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        await self._redis.aclose()

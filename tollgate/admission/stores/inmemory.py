"""In-memory atomic store for testing and single-process deployments.

Procedures run to completion under a lock, so they are atomic relative to
each other within one process. Expiry follows the store clock, which can be
replaced for deterministic tests.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

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


@dataclass
class _Entry:
    value: Any
    expires_at_ms: float


class InMemoryAtomicStore(AtomicStore):
    """In-memory store implementing the admission procedures.

    Window state is a list of admission timestamps, bucket state is a
    ``(tokens, last_refill_ms)`` pair and dedup records are sentinels.
    """

    backend = "inmemory"

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        sweep_interval: float = 60.0,
    ) -> None:
        """Initialize in-memory store.

        Args:
            clock: Returns the current time in seconds
            sweep_interval: Seconds between purges of expired entries
        """
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}
        self._sweep_interval_ms = int(sweep_interval * 1000)
        self._next_sweep_ms = self._clock_ms() + self._sweep_interval_ms

    def _clock_ms(self) -> int:
        return int(self._clock() * 1000)

    def _get(self, key: str, clock_ms: int) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at_ms <= clock_ms:
            del self._entries[key]
            return None
        return entry.value

    def _put(self, key: str, value: Any, ttl_ms: int, clock_ms: int) -> None:
        self._entries[key] = _Entry(value=value, expires_at_ms=clock_ms + ttl_ms)

    def _sweep(self, clock_ms: int) -> None:
        # Dedup records for content never seen again are only reclaimed here
        if clock_ms < self._next_sweep_ms:
            return
        expired = [k for k, e in self._entries.items() if e.expires_at_ms <= clock_ms]
        for key in expired:
            del self._entries[key]
        self._next_sweep_ms = clock_ms + self._sweep_interval_ms

    async def execute(
        self,
        procedure: Procedure,
        keys: AdmissionKeys,
        args: ProcedureArgs,
    ) -> ProcedureReply:
        """Run a procedure while holding the store lock."""
        with self._lock:
            clock_ms = self._clock_ms()
            self._sweep(clock_ms)
            now_ms = args.now_ms if args.now_ms is not None else clock_ms

            if keys.dedup is not None:
                if self._get(keys.dedup, clock_ms) is not None:
                    return DUPLICATE_REPLY
                self._put(keys.dedup, "1", args.dedup_ttl_ms, clock_ms)

            if procedure == Procedure.ADMIT_WINDOW:
                scores = self._get(keys.ratelimit, clock_ms) or []
                reply, live = window_step(scores, now_ms, args.limit, args.period_ms)
                if reply.code == ReplyCode.ALLOW:
                    live.append(float(now_ms))
                self._put(keys.ratelimit, live, args.state_ttl_ms, clock_ms)
            else:
                tokens, last_ms = self._get(keys.ratelimit, clock_ms) or (None, None)
                reply, tokens, last_ms = bucket_step(
                    tokens, last_ms, now_ms, args.limit, args.period_ms
                )
                self._put(keys.ratelimit, (tokens, last_ms), args.state_ttl_ms, clock_ms)
            return reply

    def entry_count(self) -> int:
        """Return the number of stored entries, expired or not (test utility)."""
        with self._lock:
            return len(self._entries)

    def peek(self, key: str) -> Any:
        """Return the live value stored under a key (test utility)."""
        with self._lock:
            return self._get(key, self._clock_ms())

    def clear(self) -> None:
        """Clear all entries (test utility)."""
        with self._lock:
            self._entries.clear()

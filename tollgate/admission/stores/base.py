"""Atomic store capability interface.

A store executes a named admission procedure against a fixed set of keys
as one indivisible step relative to every other procedure touching the
same keys.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any

from tollgate.admission.exceptions import StoreUnavailableError
from tollgate.admission.keys import AdmissionKeys


class Procedure(str, Enum):
    """Named multi-step procedures a store can run atomically."""

    ADMIT_WINDOW = "admit_window"
    ADMIT_BUCKET = "admit_bucket"


class ReplyCode(IntEnum):
    """Outcome codes returned by admission procedures."""

    ALLOW = 0
    DUPLICATE = 1
    RATE_LIMITED = 2


@dataclass(frozen=True)
class ProcedureArgs:
    """Arguments of an admission procedure, in milliseconds."""

    now_ms: int | None
    """Logically agreed time; None lets the store use its own clock."""

    dedup_ttl_ms: int
    limit: int
    period_ms: int
    """Window length, or milliseconds to refill one token."""

    state_ttl_ms: int
    member: str
    """Unique id recorded for a window admission."""

    def as_argv(self) -> list[str | int]:
        """Positional script arguments (ARGV[1..6])."""
        return [
            "" if self.now_ms is None else self.now_ms,
            self.dedup_ttl_ms,
            self.limit,
            self.period_ms,
            self.state_ttl_ms,
            self.member,
        ]


@dataclass(frozen=True)
class ProcedureReply:
    """Reply of an admission procedure."""

    code: ReplyCode
    remaining: int | None = None
    retry_after_ms: int = 0

    @classmethod
    def from_raw(cls, raw: Any) -> "ProcedureReply":
        """Parse a ``[code, remaining, retry_after_ms]`` script reply.

        A negative remaining count means "not evaluated".

        Raises:
            StoreUnavailableError: If the reply does not have that shape
        """
        if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)) or len(raw) != 3:
            raise StoreUnavailableError(f"Malformed procedure reply: {raw!r}")
        try:
            code = ReplyCode(int(raw[0]))
            remaining = int(raw[1])
            retry_after_ms = int(raw[2])
        except (TypeError, ValueError) as exc:
            raise StoreUnavailableError(f"Malformed procedure reply: {raw!r}") from exc
        return cls(
            code=code,
            remaining=remaining if remaining >= 0 else None,
            retry_after_ms=max(0, retry_after_ms),
        )


class AtomicStore(ABC):
    """Abstract interface for stores that run admission procedures atomically."""

    backend: str = "abstract"

    @abstractmethod
    async def execute(
        self,
        procedure: Procedure,
        keys: AdmissionKeys,
        args: ProcedureArgs,
    ) -> ProcedureReply:
        """Run a procedure as one indivisible step.

        Args:
            procedure: Which admission procedure to run
            keys: Rate-limit key and optional dedup key
            args: Procedure arguments

        Returns:
            ProcedureReply with the classified outcome
        """
        pass

    async def ping(self) -> bool:
        """Check that the store is reachable."""
        return True

    async def close(self) -> None:
        """Release connections held by the store."""
        return None

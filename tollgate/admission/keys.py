"""Store key construction.

Key format:
    dedup:{operation_id}:{fingerprint}
    ratelimit:{operation_id}:{caller_id}

Identity components are percent-escaped for ``%`` and ``:`` so that two
different (operation, caller) pairs can never render the same key.
"""

from dataclasses import dataclass

DEDUP_PREFIX = "dedup"
RATELIMIT_PREFIX = "ratelimit"


@dataclass(frozen=True)
class AdmissionKeys:
    """Keys touched by one admission evaluation."""

    ratelimit: str
    dedup: str | None = None

    def as_list(self) -> list[str]:
        """Keys in procedure order: rate-limit state first, then dedup."""
        if self.dedup is None:
            return [self.ratelimit]
        return [self.ratelimit, self.dedup]


def escape_component(value: str) -> str:
    """Escape the key separator inside an identity component."""
    return value.replace("%", "%25").replace(":", "%3A")


class KeyBuilder:
    """Builds namespaced store keys for dedup records and limiter state."""

    def __init__(
        self,
        namespace: str | None = None,
        cluster_hash_tags: bool = False,
    ) -> None:
        """Initialize the key builder.

        Args:
            namespace: Optional prefix shared by every key
            cluster_hash_tags: Wrap the operation id in ``{}`` so both keys
                of one evaluation hash to the same Redis Cluster slot
        """
        self._namespace = namespace
        self._cluster_hash_tags = cluster_hash_tags

    def _operation(self, operation_id: str) -> str:
        if not operation_id:
            raise ValueError("operation_id must not be empty")
        escaped = escape_component(operation_id)
        if self._cluster_hash_tags:
            return "{" + escaped + "}"
        return escaped

    def _join(self, *parts: str) -> str:
        if self._namespace:
            return ":".join((self._namespace, *parts))
        return ":".join(parts)

    def dedup(self, operation_id: str, fingerprint: str) -> str:
        """Key of the dedup record for a fingerprint."""
        if not fingerprint:
            raise ValueError("fingerprint must not be empty")
        return self._join(DEDUP_PREFIX, self._operation(operation_id), fingerprint)

    def ratelimit(self, operation_id: str, caller_id: str) -> str:
        """Key of the limiter state for a caller."""
        if not caller_id:
            raise ValueError("caller_id must not be empty")
        return self._join(
            RATELIMIT_PREFIX,
            self._operation(operation_id),
            escape_component(caller_id),
        )

    def build(
        self, operation_id: str, caller_id: str, fingerprint: str | None
    ) -> AdmissionKeys:
        """Build all keys for one evaluation."""
        return AdmissionKeys(
            ratelimit=self.ratelimit(operation_id, caller_id),
            dedup=self.dedup(operation_id, fingerprint) if fingerprint else None,
        )

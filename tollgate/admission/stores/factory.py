"""AtomicStore factory for creating backend instances.

The Redis connection URL comes from configuration and can be overridden
with the TOLLGATE_REDIS_URL environment variable so credentials stay out of
config files.
"""

import os

from redis.asyncio import Redis

from tollgate.admission.stores.base import AtomicStore
from tollgate.admission.stores.inmemory import InMemoryAtomicStore
from tollgate.admission.stores.redis import RedisScriptStore
from tollgate.admission.stores.transaction import RedisTransactionStore
from tollgate.config.models.storage import StorageConfig
from tollgate.observability.logging import get_logger

logger = get_logger(__name__)


def create_store(config: StorageConfig) -> AtomicStore:
    """Create an AtomicStore instance based on configuration.

    Args:
        config: Storage configuration from settings

    Returns:
        Configured AtomicStore instance

    Raises:
        ValueError: If backend type is not supported
    """
    backend = config.backend

    if backend == "inmemory":
        logger.info("creating_admission_store", backend="inmemory")
        return InMemoryAtomicStore()

    url = os.environ.get("TOLLGATE_REDIS_URL", config.url)

    if backend in ("redis", "redis_transaction"):
        client = Redis.from_url(
            url,
            socket_timeout=config.socket_timeout_seconds,
            socket_connect_timeout=config.socket_timeout_seconds,
        )
        logger.info(
            "creating_admission_store",
            backend=backend,
            timeout_seconds=config.timeout_seconds,
        )
        if backend == "redis":
            return RedisScriptStore(client)
        return RedisTransactionStore(client, max_retries=config.max_retries)

    raise ValueError(f"Unsupported admission store backend: {backend}")

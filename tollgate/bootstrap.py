"""Bootstrap module for wiring admission guards from configuration.

Handles:
- Loading configuration from TOML files
- Configuring logging
- Creating the shared admission store
- Creating one AdmissionGuard per configured operation

Example usage:

    from tollgate.bootstrap import build_guards

    guards = build_guards()
    verdict = await guards["submitResult"].check(payload, caller_id="D1")
"""

from tollgate.admission.engine import AdmissionEngine
from tollgate.admission.guard import AdmissionGuard
from tollgate.admission.keys import KeyBuilder
from tollgate.admission.stores.base import AtomicStore
from tollgate.admission.stores.factory import create_store
from tollgate.config import Settings, get_settings
from tollgate.observability.logging import get_logger, setup_logging

logger = get_logger(__name__)


def build_engine(settings: Settings, store: AtomicStore | None = None) -> AdmissionEngine:
    """Create the engine shared by every guard.

    Args:
        settings: Loaded settings
        store: Store override (default: built from settings.storage)
    """
    return AdmissionEngine(
        store or create_store(settings.storage),
        key_builder=KeyBuilder(
            namespace=settings.storage.key_namespace,
            cluster_hash_tags=settings.storage.cluster_hash_tags,
        ),
        timeout=settings.storage.timeout_seconds,
    )


def build_guards(
    settings: Settings | None = None,
    store: AtomicStore | None = None,
    configure_logging: bool = False,
) -> dict[str, AdmissionGuard]:
    """Create guards for every configured operation.

    Args:
        settings: Settings override (default: get_settings())
        store: Store override (default: built from settings.storage)
        configure_logging: Apply the observability.logging section first

    Returns:
        Guards keyed by operation_id
    """
    settings = settings or get_settings()

    if configure_logging:
        logging_config = settings.observability.logging
        setup_logging(
            level=logging_config.level,
            format=logging_config.format,
            redact_payloads=logging_config.redact_payloads,
        )

    engine = build_engine(settings, store)
    guards = {
        policy.operation_id: AdmissionGuard(policy, engine)
        for policy in settings.operations
    }

    logger.info(
        "admission_guards_built",
        backend=engine.store.backend,
        operations=sorted(guards),
    )
    return guards

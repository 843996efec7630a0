"""FastAPI application factory.

Creates an ingestion gateway with admission middleware on the configured
protected paths, admission error handlers, and health/metrics endpoints.
Business routes are supplied by the caller:

    uvicorn --factory tollgate.api.app:create_app
"""

from collections.abc import Sequence

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from tollgate.admission.exceptions import TollgateError
from tollgate.admission.stores.base import AtomicStore
from tollgate.api.exceptions import error_response
from tollgate.api.middleware.admission import AdmissionMiddleware
from tollgate.bootstrap import build_guards
from tollgate.config import Settings, get_settings
from tollgate.observability.logging import get_logger
from tollgate.observability.metrics import setup_metrics

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    store: AtomicStore | None = None,
    routers: Sequence[APIRouter] = (),
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings override (default: get_settings())
        store: Store override (default: built from settings.storage)
        routers: Business routers to mount behind the middleware

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    guards = build_guards(settings, store, configure_logging=True)
    setup_metrics()

    app = FastAPI(title="Tollgate", version="1.0.0")
    app.state.guards = guards
    app.state.settings = settings

    app.add_middleware(
        AdmissionMiddleware,
        guards={
            path: guards[operation_id]
            for path, operation_id in settings.api.protected_paths.items()
        },
        caller_header=settings.api.caller_header,
        enabled=settings.api.enabled,
    )

    @app.exception_handler(TollgateError)
    async def tollgate_error_handler(request: Request, exc: TollgateError) -> JSONResponse:
        """Handle admission errors raised by guarded route handlers."""
        logger.warning(
            "admission_error",
            error_type=type(exc).__name__,
            message=exc.message,
            path=request.url.path,
        )
        return error_response(exc)

    @app.get("/health")
    async def health() -> JSONResponse:
        """Report whether the admission store is reachable."""
        any_guard = next(iter(guards.values()), None)
        healthy = True
        backend = settings.storage.backend
        if any_guard is not None:
            store_ = any_guard.engine.store
            backend = store_.backend
            try:
                healthy = await store_.ping()
            except Exception as e:  # noqa: BLE001
                logger.warning("health_check_store_failed", error=str(e))
                healthy = False
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={"status": "healthy" if healthy else "unhealthy", "store": backend},
        )

    if settings.observability.metrics.enabled:

        @app.get(settings.observability.metrics.path)
        async def metrics() -> Response:
            """Expose Prometheus metrics."""
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    for router in routers:
        app.include_router(router)

    logger.info(
        "app_created",
        protected_paths=sorted(settings.api.protected_paths),
        backend=settings.storage.backend,
    )
    return app

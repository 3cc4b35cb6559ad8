"""Realm reconciliation service - FastAPI application."""

from contextlib import asynccontextmanager

import logging
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kmm.reconcile.audit import configure_audit_logging
from kmm.reconcile.config import Settings, get_settings
from kmm.reconcile.errors import (
    InvalidEndpointError,
    ReconcileError,
    UnknownClusterError,
    UnknownTagError,
)
from kmm.reconcile.keycloak import KeycloakError
from kmm.reconcile.routes import clusters_router, diff_router, health_router
from kmm.reconcile.routes.deps import init_deps

logger = logging.getLogger(__name__)

# Checked in order, subclasses before their bases
_ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (UnknownClusterError, status.HTTP_404_NOT_FOUND),
    (UnknownTagError, status.HTTP_400_BAD_REQUEST),
    (InvalidEndpointError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ReconcileError, status.HTTP_400_BAD_REQUEST),
    (KeycloakError, status.HTTP_502_BAD_GATEWAY),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    configure_audit_logging(
        log_level=settings.log_level,
        json_format=settings.audit_json_format,
        service_name=settings.service_name,
    )

    await init_deps()

    logger.info(
        "%s ready (environment: %s, inventory: %s)",
        settings.service_name,
        settings.environment,
        settings.inventory_path,
    )

    yield

    logger.info("Shutting down %s", settings.service_name)


def _error_response(request: Request, exc: Exception) -> JSONResponse:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="Keycloak Realm Reconciliation",
        description="Compare and sync Keycloak realms across clusters",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None if settings.environment == "production" else "/docs",
        redoc_url=None if settings.environment == "production" else "/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(clusters_router)
    app.include_router(diff_router)

    for error_type in (ReconcileError, KeycloakError):
        app.add_exception_handler(error_type, _error_response)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception on %s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    return app


# Default app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "kmm.reconcile.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
    )

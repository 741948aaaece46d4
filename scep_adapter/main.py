"""FastAPI application entry point for the SCEP responder.

Initializes configuration, CA certificate store, service, and routes.
Run with: uvicorn scep_adapter.main:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from scep_adapter import __version__
from scep_adapter.audit.logger import (
    configure_audit_logger,
    log_error,
    log_shutdown,
    log_startup,
)
from scep_adapter.ca.store import create_ca_store
from scep_adapter.config import load_config_from_env
from scep_adapter.exceptions import SCEPAdapterError
from scep_adapter.routes.scep import configure_routes, router
from scep_adapter.service import SCEPService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from scep_adapter.config import Settings
    from scep_adapter.service import PKIMessageHandler


def create_app(
    settings: Settings | None = None,
    pki_handler: PKIMessageHandler | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings instance. If not provided,
            loads from environment or defaults.
        pki_handler: Handler for PKIOperation and GetNextCACert. Without
            one those operations answer with a 500 error page.

    Returns:
        Configured FastAPI application.
    """
    if settings is None:
        settings = load_config_from_env()

    configure_audit_logger(settings.audit)

    ca_store = create_ca_store(settings.ca)
    service = SCEPService(settings.capabilities, ca_store, pki_handler)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan events."""
        log_startup(
            version=__version__,
            host=settings.server.host,
            port=settings.server.port,
        )
        yield
        log_shutdown()

    app = FastAPI(
        title="SCEP Adapter",
        description="Simple Certificate Enrollment Protocol (RFC 8894) responder",
        version=__version__,
        lifespan=lifespan,
    )

    configure_routes(service)
    app.include_router(router, prefix=settings.server.path)

    @app.exception_handler(SCEPAdapterError)
    async def scep_error_handler(
        _request: Request,
        exc: SCEPAdapterError,
    ) -> PlainTextResponse:
        """Answer SCEP Adapter errors with a plain-text page and matching status."""
        log_error(error=exc, context="request_handling")
        return PlainTextResponse(exc.message, status_code=exc.http_status.value)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint for monitoring."""
        return {"status": "healthy", "version": __version__}

    return app


def main() -> None:
    """Run the responder using uvicorn."""
    settings = load_config_from_env()

    uvicorn_config: dict[str, str | int | bool | None] = {
        "app": "scep_adapter.main:create_app",
        "factory": True,
        "host": settings.server.host,
        "port": settings.server.port,
        "reload": False,
    }

    if settings.server.tls:
        uvicorn_config["ssl_certfile"] = str(settings.server.tls.cert_file)
        uvicorn_config["ssl_keyfile"] = str(settings.server.tls.key_file)

    uvicorn.run(**uvicorn_config)


if __name__ == "__main__":
    main()

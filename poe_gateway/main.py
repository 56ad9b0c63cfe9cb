"""Main FastAPI application for the Poe gateway."""

import logging
import socket
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import chat_completions, list_models, list_upstream_models
from .logging import setup_logging
from .services import GatewayServices
from .settings import Settings, load_settings

logger = logging.getLogger("poe-gateway")


def create_app(
    settings: Optional[Settings] = None,
    *,
    services: Optional[GatewayServices] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Resolved settings; loaded from the environment when omitted.
        services: Prebuilt services (tests inject fakes this way).
        transport: httpx transport for upstream calls, used when services are
            built here.

    Returns:
        The configured FastAPI application instance.
    """
    if services is None:
        settings = settings or load_settings()
        services = GatewayServices(settings, transport=transport)
    settings = services.settings

    app = FastAPI(title="Poe Gateway")
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def startup_event() -> None:
        """Handle application startup."""
        logger.info("Poe gateway starting up...")
        logger.info("Configured bind address %s:%s", settings.host, settings.port)
        if settings.host == "0.0.0.0":
            hostname = socket.gethostname()
            logger.info("Reachable on local network at http://%s:%s", hostname, settings.port)
        logger.info("Upstream base URL: %s", settings.poe_base_url)
        logger.info(
            "Attachment cache: ttl=%ss, capacity=%d bytes; pacing interval %sms",
            settings.cache_ttl_seconds,
            settings.cache_capacity_bytes,
            settings.rate_limit_ms,
        )
        logger.info("Model mapping enabled: %s", services.mapping.enabled)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        """Handle application shutdown."""
        await services.aclose()
        logger.info("Upstream client closed")

    # Register routes
    app.post("/v1/chat/completions")(chat_completions)
    app.post("/chat/completions")(chat_completions)
    app.get("/v1/models")(list_models)
    app.get("/models")(list_models)
    app.get("/api/models")(list_upstream_models)

    logger.info("FastAPI application created")
    return app


def run() -> None:
    """Console entry point: serve the gateway with uvicorn."""
    settings = load_settings()
    setup_logging(settings.log_level)
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()

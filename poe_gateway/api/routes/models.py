"""Models listing endpoints - OpenAI compatible."""

import logging
from typing import Optional

from fastapi import Request

from ...core.exceptions import GatewayError
from .chat import get_services, http_error

logger = logging.getLogger("poe-gateway")


def _optional_bearer(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


async def list_models(request: Request) -> dict:
    """List available models in OpenAI API format.

    GET /v1/models (also /models)

    Uses the cached upstream list, renamed, filtered and extended by the
    model mapping.
    """
    logger.info("Received models list request")
    services = get_services(request)
    try:
        models = await services.listed_models(_optional_bearer(request))
    except GatewayError as exc:
        logger.error("Failed to list models: %s", exc.message)
        raise http_error(exc) from exc
    return {"object": "list", "data": models}


async def list_upstream_models(request: Request) -> dict:
    """List the raw upstream models and refresh the cached list.

    GET /api/models
    """
    logger.info("Received raw models list request")
    services = get_services(request)
    try:
        models = await services.upstream_models(_optional_bearer(request), refresh=True)
    except GatewayError as exc:
        logger.error("Failed to list upstream models: %s", exc.message)
        raise http_error(exc) from exc
    return {"object": "list", "data": models}

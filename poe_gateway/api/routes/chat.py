"""OpenAI-compatible chat completions endpoint."""

import json
import logging
from typing import AsyncIterator, Mapping

from fastapi import HTTPException, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from ...core.exceptions import (
    AuthenticationError,
    GatewayError,
    RequestTooLargeError,
    ValidationError,
    error_from_kind,
)
from ...logging import mask_secret
from ...services import GatewayServices
from ...translation.assembler import ResponseAssembler, prompt_text_of
from ...translation.normalizer import parse_chat_request
from ...types.deltas import Delta, Error, Usage

logger = logging.getLogger("poe-gateway")


def get_services(request: Request) -> GatewayServices:
    return request.app.state.services


def http_error(exc: GatewayError) -> HTTPException:
    """Convert a gateway error into an OpenAI-shaped HTTP error."""
    return HTTPException(status_code=exc.status_code, detail=exc.to_openai_error())


def bearer_token(request: Request) -> str:
    """Extract the caller's credential, forwarded upstream unchanged.

    Raises:
        AuthenticationError: No bearer credential was supplied.
    """
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationError("Missing bearer token in Authorization header")
    return token


async def read_limited_body(request: Request, limit: int) -> bytes:
    """Read the request body, rejecting anything larger than limit bytes."""
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise RequestTooLargeError(f"Request body exceeds the {limit} byte limit")

    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            raise RequestTooLargeError(f"Request body exceeds the {limit} byte limit")
        chunks.append(chunk)
    return b"".join(chunks)


def parse_json_body(body: bytes) -> Mapping:
    try:
        payload = json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.error(f"Invalid JSON payload: {exc}")
        raise ValidationError("Invalid JSON payload", code="invalid_json") from exc
    if not isinstance(payload, Mapping):
        logger.error("Payload must be a JSON object")
        raise ValidationError("Request body must be a JSON object", code="invalid_json_shape")
    return payload


async def _prime(deltas: AsyncIterator[Delta]) -> list[Delta]:
    """Pull deltas up to the first one that produces output.

    A stream that fails before producing anything is reported as an HTTP
    error instead of a 200 stream.
    """
    primed: list[Delta] = []
    async for delta in deltas:
        primed.append(delta)
        if not isinstance(delta, Usage):
            break
    return primed


async def _replay(primed: list[Delta], rest: AsyncIterator[Delta]) -> AsyncIterator[Delta]:
    try:
        for delta in primed:
            yield delta
        async for delta in rest:
            yield delta
    finally:
        await rest.aclose()  # type: ignore[attr-defined]


async def chat_completions(request: Request) -> Response:
    """Handle OpenAI-compatible chat completion requests.

    POST /v1/chat/completions (also /chat/completions)

    The request is normalized into a Poe bot query, sent upstream and the
    bot's events are transcoded back into a completion object or an SSE
    stream of completion chunks.
    """
    logger.info(f"Handling {request.method} request to {request.url.path}")
    services = get_services(request)

    try:
        api_key = bearer_token(request)
        body = await read_limited_body(request, services.settings.max_request_bytes)
        chat_request = parse_chat_request(parse_json_body(body))
        upstream_request = await services.normalizer.normalize(chat_request, api_key)
    except GatewayError as exc:
        logger.error("Rejecting chat request (%s): %s", exc.status_code, exc.message)
        raise http_error(exc) from exc

    logger.info(
        "Processing request for model %s -> bot %s, stream=%s, key=%s",
        chat_request.model,
        upstream_request.bot_name,
        chat_request.stream,
        mask_secret(api_key),
    )

    assembler = ResponseAssembler(
        chat_request.model,
        include_usage=chat_request.include_usage,
        prompt_text=prompt_text_of(upstream_request.messages),
    )
    deltas = services.chat_deltas(
        chat_request,
        upstream_request,
        api_key,
        disconnect_checker=request.is_disconnected if chat_request.stream else None,
    )

    if not chat_request.stream:
        try:
            completion = await assembler.collect(deltas)
        except GatewayError as exc:
            logger.error("Chat completion failed (%s): %s", exc.status_code, exc.message)
            raise http_error(exc) from exc
        finally:
            await deltas.aclose()  # type: ignore[attr-defined]
        return JSONResponse(content=completion)

    try:
        primed = await _prime(deltas)
    except BaseException:
        await deltas.aclose()  # type: ignore[attr-defined]
        raise
    if primed and isinstance(primed[-1], Error):
        await deltas.aclose()  # type: ignore[attr-defined]
        exc = error_from_kind(primed[-1].kind, primed[-1].message)
        logger.error("Upstream failed before streaming (%s): %s", exc.status_code, exc.message)
        raise http_error(exc)

    return StreamingResponse(
        assembler.stream(_replay(primed, deltas)),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )

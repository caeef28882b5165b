"""
OpenAI-compatible endpoints.

Point any OpenAI-style client at: http://localhost:4000/v1/chat/completions

Requests are enriched with the user profile and retrieved context, then
forwarded to the upstream provider. Streaming responses are relayed
line by line as they arrive.
"""

import json
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import ValidationError

from enrichproxy.llm.errors import UpstreamError
from enrichproxy.llm.proxy_client import UpstreamResponse
from enrichproxy.models.chat import ChatRequest

logger = logging.getLogger(__name__)
router = APIRouter()

DEFAULT_MAX_BODY_BYTES = 1 << 20

STREAM_ERROR_EVENT = "data: " + json.dumps(
    {"error": {"message": "upstream read error", "type": "server_error"}}
) + "\n\n"


class RequestTooLarge(Exception):
    pass


def _error_response(status_code: int, error_type: str, message: str) -> JSONResponse:
    """OpenAI-style error body: {"error": {"message": ..., "type": ...}}."""
    return JSONResponse(
        status_code=status_code,
        content={"error": {"message": message, "type": error_type}},
    )


async def _read_body(request: Request, limit: int) -> bytes:
    """Read the request body, refusing to buffer more than ``limit`` bytes."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise RequestTooLarge()

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise RequestTooLarge()
    return bytes(body)


async def relay_stream(upstream: UpstreamResponse) -> AsyncGenerator[str, None]:
    """
    Relay upstream SSE lines as they arrive.

    A read failure is reported as a single error event and ends the
    stream. The upstream response is closed when the relay ends.
    """
    try:
        async for line in upstream.aiter_lines():
            yield line + "\n"
    except Exception as e:
        logger.error(f"Upstream stream read error: {e}")
        yield STREAM_ERROR_EVENT
    finally:
        await upstream.aclose()


class UpstreamStreamingResponse(StreamingResponse):
    """
    StreamingResponse that owns the upstream response it relays.

    The upstream is closed when the response finishes sending, including
    when the client goes away before the first chunk is pulled and the
    relay generator never starts.
    """

    def __init__(self, upstream: UpstreamResponse, **kwargs):
        super().__init__(relay_stream(upstream), **kwargs)
        self.upstream = upstream

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.upstream.aclose()


@router.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@router.get("/v1/models")
async def list_models(request: Request):
    """List the models the upstream provider exposes (OpenAI-compatible)."""
    proxy = request.app.state.proxy_client
    try:
        models = await proxy.list_models()
    except UpstreamError as e:
        logger.error(f"Listing upstream models failed: {e}")
        return _error_response(502, "api_error", f"failed to list models: {e}")

    return {
        "object": "list",
        "data": [m.model_dump(exclude_none=True) for m in models],
    }


@router.post("/v1/chat/completions")
async def chat_completions(request: Request):
    """
    OpenAI-compatible chat completions, enriched and forwarded upstream.

    Every field of the request body is forwarded; only the message
    array may be modified by enrichment.
    """
    state = request.app.state
    limit: int = getattr(state, "max_request_body_bytes", DEFAULT_MAX_BODY_BYTES)

    try:
        raw = await _read_body(request, limit)
    except RequestTooLarge:
        return _error_response(413, "invalid_request_error", f"request body exceeds {limit} bytes")

    try:
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError("request body must be a JSON object")
        chat_request = ChatRequest.model_validate(payload)
    except (ValueError, ValidationError) as e:
        return _error_response(400, "invalid_request_error", f"invalid request body: {e}")

    if not isinstance(chat_request.messages, list) or not chat_request.messages:
        return _error_response(400, "invalid_request_error", "messages is required and must not be empty")

    enricher = getattr(state, "enricher", None)
    if enricher is not None:
        chat_request, meta = await enricher.enrich(chat_request)
        logger.debug(
            f"Request enriched: intent_extracted={meta.intent_extracted}, "
            f"chunks_used={len(meta.chunks_used)}, duration_ms={meta.enrichment_duration_ms:.1f}"
        )

    proxy = state.proxy_client
    try:
        result = await proxy.send(chat_request)
    except UpstreamError as e:
        logger.error(f"Upstream chat completion failed: {e}")
        return _error_response(502, "api_error", f"upstream error: {e}")

    if chat_request.stream:
        return UpstreamStreamingResponse(
            result,
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    return Response(content=result, media_type="application/json")

"""
Profile and context-ingestion endpoints.

These feed the stores the enrichment pipeline reads from:
- GET/PATCH /profile: read and update the user profile
- POST /ingest: embed a piece of text and store it for retrieval
"""

import json
import logging
import uuid
from datetime import datetime, timezone

import httpx
from fastapi import APIRouter, Request
from pydantic import ValidationError

from enrichproxy.models.ingest import IngestRequest, IngestResponse
from enrichproxy.retrieval.types import ContextChunk
from enrichproxy.routers.openai_compat import (
    DEFAULT_MAX_BODY_BYTES,
    RequestTooLarge,
    _error_response,
    _read_body,
)

logger = logging.getLogger(__name__)
router = APIRouter()


async def _read_json_object(request: Request) -> dict:
    limit: int = getattr(request.app.state, "max_request_body_bytes", DEFAULT_MAX_BODY_BYTES)
    payload = json.loads(await _read_body(request, limit))
    if not isinstance(payload, dict):
        raise ValueError("request body must be a JSON object")
    return payload


def _unavailable(what: str):
    return _error_response(503, "api_error", f"{what} is unavailable: enrichment is disabled")


@router.get("/profile")
async def get_profile(request: Request):
    """Current structured user profile."""
    manager = getattr(request.app.state, "profile_manager", None)
    if manager is None:
        return _unavailable("profile")
    return manager.get_profile().model_dump()


@router.patch("/profile")
async def patch_profile(request: Request):
    """
    Update profile fields.

    The body is a JSON object of dot-notation keys to values, e.g.
    ``{"identity.role": "backend engineer", "interests": ["databases"]}``.
    Returns the updated profile.
    """
    manager = getattr(request.app.state, "profile_manager", None)
    if manager is None:
        return _unavailable("profile")

    try:
        fields = await _read_json_object(request)
    except RequestTooLarge:
        return _error_response(413, "invalid_request_error", "request body too large")
    except ValueError as e:
        return _error_response(400, "invalid_request_error", f"invalid request body: {e}")

    for key, value in fields.items():
        manager.set_field(key, value)
    logger.info(f"Profile updated: {sorted(fields)}")

    return manager.get_profile().model_dump()


@router.post("/ingest")
async def ingest(request: Request):
    """Embed the submitted text and add it to the vector store."""
    state = request.app.state
    embedder = getattr(state, "embedder", None)
    store = getattr(state, "vector_store", None)
    if embedder is None or store is None:
        return _unavailable("ingestion")

    try:
        ingest_request = IngestRequest.model_validate(await _read_json_object(request))
    except RequestTooLarge:
        return _error_response(413, "invalid_request_error", "request body too large")
    except (ValueError, ValidationError) as e:
        return _error_response(400, "invalid_request_error", f"invalid request body: {e}")

    try:
        vector = await embedder.embed(ingest_request.content)
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Embedding ingested content failed: {e}")
        return _error_response(502, "api_error", f"failed to embed content: {e}")

    chunk = ContextChunk(
        id=str(uuid.uuid4()),
        source_id=ingest_request.source,
        source_type=ingest_request.type,
        text=ingest_request.content,
        tags=json.dumps(ingest_request.tags),
        created_at=datetime.now(timezone.utc),
    )
    store.add(chunk, vector)
    logger.info(f"Ingested chunk {chunk.id} from {chunk.source_id!r} ({len(chunk.text)} chars)")

    return IngestResponse(id=chunk.id).model_dump()

"""
Enrichment pipeline: turns a raw chat request into an enriched one.

Stages run strictly in order, each feeding the next:

    intent -> retrieve -> rerank -> profile -> compose

Every stage is run through ``_run_stage`` which returns a StageResult
instead of raising. What happens on failure is decided in one place,
STAGE_POLICY: collaborator stages are absorbed (their fallback value is
used and the pipeline continues), while a composition failure is fatal
and the original, unenriched request is forwarded instead. ``enrich``
itself therefore never raises, except for caller cancellation.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, List, Optional, Tuple
from pydantic import BaseModel, Field

from enrichproxy.intent.extractor import Intent
from enrichproxy.models.chat import ChatRequest, last_user_message
from enrichproxy.pipeline.composer import Composer
from enrichproxy.retrieval.reranker import NoOpReranker, Reranker
from enrichproxy.retrieval.types import ContextChunk

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5
DEFAULT_CANDIDATE_MULTIPLIER = 4
DEFAULT_INTENT_TIMEOUT = 3.0

# What a failed stage means for the rest of the pipeline
ABSORB = "absorb"
FATAL = "fatal"

STAGE_POLICY = {
    "intent": ABSORB,
    "retrieve": ABSORB,
    "rerank": ABSORB,
    "profile": ABSORB,
    "compose": FATAL,
}


class EnrichmentMetadata(BaseModel):
    """
    Diagnostics for one enriched request. Never persisted.

    Attributes:
        intent_extracted: Whether a non-empty intent came back
        chunks_used: IDs of the chunks placed in the prompt, in prompt order
        enrichment_duration_ms: Wall-clock time of the whole pipeline
        reranking_duration_ms: Wall-clock time of the rerank stage
    """
    intent_extracted: bool = False
    chunks_used: List[str] = Field(default_factory=list)
    enrichment_duration_ms: float = 0.0
    reranking_duration_ms: float = 0.0


class StageResult:
    """Outcome of one pipeline stage: a value, or the error that replaced it."""

    def __init__(self, value: Any = None, error: Optional[Exception] = None):
        self.value = value
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None


async def _run_stage(name: str, awaitable: Awaitable, fallback: Any) -> StageResult:
    try:
        return StageResult(await awaitable)
    except Exception as e:
        if STAGE_POLICY[name] == ABSORB:
            logger.warning(f"Enrichment stage '{name}' failed, continuing without it: {e!r}")
        return StageResult(fallback, e)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class Enricher:
    """
    Orchestrates intent extraction, retrieval, reranking, profile lookup
    and prompt composition for a single request.

    Holds only its collaborators and immutable configuration, so one
    instance is shared by all concurrent requests.
    """

    def __init__(
        self,
        extractor,
        retriever,
        profile,
        composer: Composer,
        reranker: Optional[Reranker] = None,
        top_k: int = DEFAULT_TOP_K,
        candidate_multiplier: int = DEFAULT_CANDIDATE_MULTIPLIER,
        intent_timeout: float = DEFAULT_INTENT_TIMEOUT,
    ):
        """
        Args:
            extractor: IntentExtractor (async ``extract(query)``)
            retriever: Retriever (async ``retrieve_for_intent(query, intent, top_k)``)
            profile: ProfileManager (async ``get_summary()``)
            composer: Composer used for the final splice
            reranker: Second-pass reranker; no-op when omitted
            top_k: Chunks kept after reranking
            candidate_multiplier: Over-fetch factor for the candidate pool
            intent_timeout: Time budget for intent extraction (s)
        """
        self.extractor = extractor
        self.retriever = retriever
        self.profile = profile
        self.composer = composer
        self.reranker = reranker or NoOpReranker()
        self.top_k = top_k if top_k > 0 else DEFAULT_TOP_K
        self.candidate_multiplier = candidate_multiplier if candidate_multiplier > 0 else DEFAULT_CANDIDATE_MULTIPLIER
        self.intent_timeout = intent_timeout

    async def enrich(self, request: ChatRequest) -> Tuple[ChatRequest, EnrichmentMetadata]:
        """
        Run the pipeline and return (request to forward, metadata).

        The returned request is the enriched one, or the original when
        composition fails or there is nothing to add.
        """
        start = time.perf_counter()
        meta = EnrichmentMetadata()

        query = last_user_message(request.messages)

        # 1. Intent, bounded by its own time budget
        intent_result = await _run_stage(
            "intent",
            asyncio.wait_for(self.extractor.extract(query), timeout=self.intent_timeout),
            Intent(),
        )
        intent: Intent = intent_result.value or Intent()
        meta.intent_extracted = not intent.is_empty

        # 2. Over-fetch candidates for the reranker
        candidates: List[ContextChunk] = []
        if query:
            pool_size = self.top_k * self.candidate_multiplier
            retrieve_result = await _run_stage(
                "retrieve",
                self.retriever.retrieve_for_intent(query, intent, pool_size),
                [],
            )
            candidates = retrieve_result.value or []

        # 3. Rerank, then trim
        chunks = candidates
        if candidates:
            rerank_start = time.perf_counter()
            rerank_result = await _run_stage("rerank", self.reranker.rerank(query, candidates), candidates)
            meta.reranking_duration_ms = _elapsed_ms(rerank_start)
            chunks = rerank_result.value or []
        chunks = chunks[: self.top_k]

        # 4. Profile
        profile_result = await _run_stage("profile", self.profile.get_summary(), "")
        profile_summary: str = profile_result.value or ""

        # 5. Compose
        compose_result = await _run_stage(
            "compose",
            self._compose(request, chunks, profile_summary),
            (request, []),
        )
        if not compose_result.ok:
            logger.warning(f"Prompt composition failed, forwarding original request: {compose_result.error}")
        enriched, used = compose_result.value
        meta.chunks_used = [c.id for c in used]

        meta.enrichment_duration_ms = _elapsed_ms(start)
        logger.debug(
            f"Enrichment done in {meta.enrichment_duration_ms:.1f}ms "
            f"(intent={meta.intent_extracted}, candidates={len(candidates)}, "
            f"chunks_used={len(meta.chunks_used)}, rerank={meta.reranking_duration_ms:.1f}ms)"
        )
        return enriched, meta

    async def _compose(
        self,
        request: ChatRequest,
        chunks: List[ContextChunk],
        profile_summary: str,
    ) -> Tuple[ChatRequest, List[ContextChunk]]:
        return self.composer.compose_with_selection(request, chunks, profile_summary)

"""
Second-pass reranking of retrieved candidates.

The pipeline over-fetches candidates from vector search and lets a
reranker reorder/filter them. The default is a no-op; the LLM reranker
scores each (query, chunk) pair with a local model.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import List, Tuple

from enrichproxy.retrieval.types import ContextChunk

logger = logging.getLogger(__name__)

# Max concurrent scoring calls against the local engine
RERANK_CONCURRENCY = 3

SCORE_SCHEMA = {
    "type": "object",
    "properties": {
        "score": {"type": "number", "description": "Relevance score 0.0-1.0"},
    },
    "required": ["score"],
}


class Reranker(ABC):
    """Re-scores candidate chunks by query relevance."""

    @abstractmethod
    async def rerank(self, query: str, chunks: List[ContextChunk]) -> List[ContextChunk]:
        """
        Return a reordered and possibly filtered subset of ``chunks``.
        Must never return chunks that were not in the input.
        """
        pass


class NoOpReranker(Reranker):
    """Passes chunks through unchanged. Used when reranking is disabled."""

    async def rerank(self, query: str, chunks: List[ContextChunk]) -> List[ContextChunk]:
        return chunks


def parse_score(response: str, original_score: float) -> Tuple[float, bool]:
    """
    Extract a relevance score from an LLM response.

    Small local models often wrap JSON in markdown fences or add filler
    text, so fences are stripped and the outermost ``{...}`` is parsed.

    Returns:
        (score, ok). On failure the original score is returned with ok=False.
    """
    s = response.strip()

    fence = s.find("```")
    if fence != -1:
        s = s[fence + 3:]
        if s.startswith("json"):
            s = s[4:]
        end = s.find("```")
        if end != -1:
            s = s[:end]

    start = s.find("{")
    end = s.rfind("}")
    if start == -1 or end <= start:
        return original_score, False

    try:
        obj = json.loads(s[start:end + 1])
        return float(obj["score"]), True
    except (ValueError, KeyError, TypeError):
        return original_score, False


class LLMReranker(Reranker):
    """
    Scores (query, chunk) pairs with a local LLM.

    Scoring runs concurrently, bounded to RERANK_CONCURRENCY calls.
    Once ``top_k`` chunks are scored the remaining calls are cancelled.
    If the hard timeout fires first, the input is returned unchanged.
    """

    def __init__(
        self,
        client,
        model: str = "phi3.5",
        timeout: float = 2.0,
        threshold: float = 0.0,
        top_k: int = 0,
    ):
        """
        Args:
            client: OllamaClient (anything with an async ``chat``)
            model: Local model used for scoring
            timeout: Hard limit for the whole rerank call (s)
            threshold: Chunks scoring below this are dropped
            top_k: Early-return count; 0 scores every chunk
        """
        self.client = client
        self.model = model
        self.timeout = timeout
        self.threshold = threshold
        self.top_k = top_k

    async def rerank(self, query: str, chunks: List[ContextChunk]) -> List[ContextChunk]:
        if not chunks:
            return chunks

        early_return_at = self.top_k if 0 < self.top_k < len(chunks) else 0
        semaphore = asyncio.Semaphore(RERANK_CONCURRENCY)

        async def _score(chunk: ContextChunk) -> ContextChunk:
            async with semaphore:
                try:
                    score = await self._score_chunk(query, chunk)
                except Exception as e:
                    logger.debug(f"Reranker: scoring {chunk.id} failed, keeping original score: {e}")
                    return chunk
            return chunk.model_copy(update={"score": score})

        tasks = [asyncio.ensure_future(_score(ch)) for ch in chunks]
        scored: List[ContextChunk] = []
        try:
            for next_done in asyncio.as_completed(tasks, timeout=self.timeout):
                scored.append(await next_done)
                if early_return_at and len(scored) >= early_return_at:
                    break
        except asyncio.TimeoutError:
            logger.warning(
                f"Reranker timed out after {self.timeout:g}s with {len(scored)}/{len(chunks)} "
                f"scored, keeping retrieval order"
            )
            return chunks
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            # Let cancelled tasks finish so none outlive this call
            await asyncio.gather(*tasks, return_exceptions=True)

        filtered = [ch for ch in scored if ch.score >= self.threshold]
        filtered.sort(key=lambda c: c.score, reverse=True)
        return filtered

    async def _score_chunk(self, query: str, chunk: ContextChunk) -> float:
        prompt = (
            "Rate the relevance of the following text to the query on a scale of 0.0 to 1.0.\n"
            f"Query: {query}\n"
            f"Text: {chunk.text}\n"
            'Respond with only a JSON object: {"score": <float>}'
        )
        response = await self.client.chat(
            self.model,
            [{"role": "user", "content": prompt}],
            SCORE_SCHEMA,
        )
        score, ok = parse_score(response, chunk.score)
        if not ok:
            logger.debug(f"Reranker: could not parse score from {response!r}, using original")
        return score


def create_reranker(
    enabled: bool,
    client=None,
    model: str = "phi3.5",
    timeout: float = 2.0,
    threshold: float = 0.0,
    top_k: int = 0,
) -> Reranker:
    """LLMReranker when enabled (and a client is available), NoOpReranker otherwise."""
    if not enabled or client is None:
        return NoOpReranker()
    return LLMReranker(client, model=model, timeout=timeout, threshold=threshold, top_k=top_k)

"""
Vector store interface and an in-process implementation.

The retriever only needs ``search``; any persistent backend can be
plugged in by implementing the VectorStore protocol.
"""

import logging
import math
from typing import List, Protocol, Tuple

from enrichproxy.retrieval.types import ContextChunk

logger = logging.getLogger(__name__)


class VectorStore(Protocol):
    """Similarity search over stored context chunks."""

    async def search(self, vector: List[float], top_k: int) -> List[ContextChunk]:
        """Return up to top_k chunks ordered by similarity (score set)."""
        ...


def _norm(v: List[float]) -> float:
    return math.sqrt(sum(x * x for x in v))


def cosine_similarity(a: List[float], b: List[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either is all zeros."""
    if len(a) != len(b):
        raise ValueError(f"dimension mismatch: {len(a)} != {len(b)}")
    na, nb = _norm(a), _norm(b)
    if na == 0 or nb == 0:
        return 0.0
    return sum(x * y for x, y in zip(a, b)) / (na * nb)


class InMemoryVectorStore:
    """
    Brute-force cosine search over chunks held in memory.

    Used as the default store when no persistent backend is configured,
    and in tests.
    """

    def __init__(self):
        self._records: List[Tuple[ContextChunk, List[float]]] = []

    def add(self, chunk: ContextChunk, vector: List[float]) -> None:
        self._records.append((chunk, list(vector)))

    def count(self) -> int:
        return len(self._records)

    async def search(self, vector: List[float], top_k: int) -> List[ContextChunk]:
        scored = []
        for chunk, stored in self._records:
            try:
                score = cosine_similarity(vector, stored)
            except ValueError as e:
                logger.debug(f"Skipping chunk {chunk.id}: {e}")
                continue
            scored.append(chunk.model_copy(update={"score": score}))
        scored.sort(key=lambda c: c.score, reverse=True)
        return scored[:top_k]

"""
Context retrieval: embedding + vector search, guided by the extracted intent.
"""

import logging
from typing import Dict, List

from enrichproxy.intent.extractor import Intent
from enrichproxy.retrieval.types import ContextChunk

logger = logging.getLogger(__name__)


class Retriever:
    """
    Finds context chunks relevant to a query.

    Attributes:
        embedder: Embedder producing query vectors
        store: VectorStore searched with those vectors
    """

    def __init__(self, embedder, store):
        self.embedder = embedder
        self.store = store

    async def retrieve(self, query: str, top_k: int) -> List[ContextChunk]:
        """Embed the query and return the top_k most similar chunks."""
        vector = await self.embedder.embed(query)
        return await self.store.search(vector, top_k)

    async def retrieve_for_intent(
        self,
        query: str,
        intent: Intent,
        top_k: int,
    ) -> List[ContextChunk]:
        """
        Search for the query itself and for each entity the intent names.

        Results are merged and deduplicated by source, keeping the
        highest-scoring chunk per source, then sorted by score and
        trimmed to top_k. A failing search is logged and skipped so one
        bad entity never empties the whole result.
        """
        if not query:
            return []

        searches = [query] + [e for e in intent.entities if e]
        best: Dict[str, ContextChunk] = {}

        for text in searches:
            try:
                results = await self.retrieve(text, top_k)
            except Exception as e:
                logger.warning(f"Retrieval for {text!r} failed: {e}")
                continue
            for chunk in results:
                key = chunk.source_id or chunk.id
                current = best.get(key)
                if current is None or chunk.score > current.score:
                    best[key] = chunk

        merged = sorted(best.values(), key=lambda c: c.score, reverse=True)
        return merged[:top_k]

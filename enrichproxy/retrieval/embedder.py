"""
Text embedding via the local engine.
"""

import asyncio
import logging
from typing import List

logger = logging.getLogger(__name__)

# Bound concurrency so batch embedding doesn't overwhelm the engine
EMBED_CONCURRENCY = 4


class Embedder:
    """Wraps an OllamaClient to generate text embeddings with a fixed model."""

    def __init__(self, client, model: str = "nomic-embed-text"):
        self.client = client
        self.model = model

    async def embed(self, text: str) -> List[float]:
        """Embedding vector for a single text."""
        return await self.client.embed(self.model, text)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embeddings for several texts, computed concurrently, in input order."""
        if not texts:
            return []

        semaphore = asyncio.Semaphore(EMBED_CONCURRENCY)

        async def _one(text: str) -> List[float]:
            async with semaphore:
                return await self.embed(text)

        return list(await asyncio.gather(*(_one(t) for t in texts)))

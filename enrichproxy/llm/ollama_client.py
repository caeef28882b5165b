"""
Ollama client for the local models used during enrichment.

Intent extraction, reranking and embeddings all run against a local
Ollama instance; this is the thin HTTP layer they share.
"""

import logging
from typing import Any, Dict, List, Optional
import httpx

logger = logging.getLogger(__name__)


class OllamaClient:
    """
    Async client for a local Ollama server.

    A single httpx.AsyncClient is reused across calls so concurrent
    requests share one connection pool.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            base_url: Ollama server URL
            http_client: Pre-built client (tests inject a MockTransport here)
        """
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        # No client-side timeout: callers bound each call with their own deadline
        self._client = http_client or httpx.AsyncClient(timeout=None)

    def _get_headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    async def chat(
        self,
        model: str,
        messages: List[Dict[str, str]],
        json_schema: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Send a non-streaming chat request and return the assistant content.

        When ``json_schema`` is given it is passed as Ollama's ``format``
        so the model is constrained to structured output.
        """
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": False,
        }
        if json_schema is not None:
            payload["format"] = json_schema

        response = await self._client.post(
            f"{self.base_url}/api/chat",
            headers=self._get_headers(),
            json=payload,
        )
        response.raise_for_status()
        data = response.json()
        return data.get("message", {}).get("content", "")

    async def embed(self, model: str, text: str) -> List[float]:
        """Return the embedding vector for a single text."""
        response = await self._client.post(
            f"{self.base_url}/api/embed",
            headers=self._get_headers(),
            json={"model": model, "input": text},
        )
        response.raise_for_status()
        data = response.json()
        embeddings = data.get("embeddings") or []
        if not embeddings:
            raise ValueError(f"Ollama returned no embedding for model {model}")
        return embeddings[0]

    async def list_models(self) -> List[str]:
        """Names of all models installed in the local Ollama instance."""
        response = await self._client.get(
            f"{self.base_url}/api/tags",
            headers=self._get_headers(),
        )
        response.raise_for_status()
        data = response.json()
        return [m.get("name", "") for m in data.get("models", [])]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

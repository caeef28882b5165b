"""
FastAPI application entry point.

Architecture:
  OpenAI-style client → http://127.0.0.1:4000/v1/chat/completions
                      → enrichment (local Ollama models + profile)
                      → upstream provider (OpenRouter)

Run with ``enrichproxy`` (installed script) or
``uvicorn enrichproxy.main:create_app --factory``.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from enrichproxy.config import Settings, get_settings
from enrichproxy.intent.extractor import IntentExtractor
from enrichproxy.llm.ollama_client import OllamaClient
from enrichproxy.llm.proxy_client import ProxyClient
from enrichproxy.pipeline.composer import Composer
from enrichproxy.pipeline.enricher import Enricher
from enrichproxy.profile.manager import InMemoryProfileStore, ProfileManager
from enrichproxy.retrieval.embedder import Embedder
from enrichproxy.retrieval.reranker import create_reranker
from enrichproxy.retrieval.retriever import Retriever
from enrichproxy.retrieval.vector_store import InMemoryVectorStore
from enrichproxy.routers import context, openai_compat

# ============================================================
# Logging Configuration
# ============================================================
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Suppress per-request log lines from the HTTP client stack
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_proxy_client(settings: Settings) -> ProxyClient:
    return ProxyClient(
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
        referer=settings.openrouter_referer,
        title=settings.openrouter_title,
        request_timeout=settings.request_timeout,
        stream_timeout=settings.stream_timeout,
        max_retries=settings.max_retries,
        initial_backoff=settings.initial_backoff,
    )


def build_enricher(settings: Settings, ollama: OllamaClient) -> Enricher:
    """Wire the enrichment pipeline from settings around one Ollama client."""
    retriever = Retriever(
        Embedder(ollama, model=settings.embed_model),
        InMemoryVectorStore(),
    )
    reranker = create_reranker(
        settings.rerank_enabled,
        ollama,
        model=settings.rerank_model,
        timeout=settings.rerank_timeout,
        threshold=settings.rerank_threshold,
        top_k=settings.top_k,
    )
    return Enricher(
        extractor=IntentExtractor(ollama, model=settings.intent_model),
        retriever=retriever,
        profile=ProfileManager(InMemoryProfileStore(), ttl=settings.profile_cache_ttl),
        composer=Composer(max_context_tokens=settings.max_context_tokens),
        reranker=reranker,
        top_k=settings.top_k,
        candidate_multiplier=settings.candidate_multiplier,
        intent_timeout=settings.intent_timeout,
    )


def create_app(
    settings: Optional[Settings] = None,
    proxy_client: Optional[ProxyClient] = None,
    enricher: Optional[Enricher] = None,
) -> FastAPI:
    """
    Build the application.

    Components that are passed in are used as-is and left open on
    shutdown; components built here from settings are closed with the app.

    Args:
        settings: Settings to use (defaults to get_settings())
        proxy_client: Upstream client; built from settings when omitted
        enricher: Enrichment pipeline; built from settings when omitted
            and enrichment is enabled
    """
    settings = settings or get_settings()
    if settings.debug:
        logging.getLogger("enrichproxy").setLevel(logging.DEBUG)

    owned = []

    if proxy_client is None:
        proxy_client = build_proxy_client(settings)
        owned.append(proxy_client)

    if enricher is None and settings.enrichment_enabled:
        ollama = OllamaClient(settings.ollama_base_url)
        owned.append(ollama)
        enricher = build_enricher(settings, ollama)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle application startup and shutdown events."""
        logger.info(
            f"Starting enrichment proxy (upstream={proxy_client.base_url}, "
            f"enrichment={'on' if enricher is not None else 'off'})"
        )
        if not settings.openrouter_api_key:
            logger.warning("OPENROUTER_API_KEY is not set; upstream calls will be rejected")

        yield  # Application runs here

        logger.info("Shutting down enrichment proxy...")
        for client in owned:
            await client.aclose()

    app = FastAPI(
        title="enrichproxy",
        description="Context-enriching proxy for OpenAI-compatible chat completions",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.proxy_client = proxy_client
    app.state.enricher = enricher
    app.state.profile_manager = getattr(enricher, "profile", None)
    retriever = getattr(enricher, "retriever", None)
    app.state.embedder = getattr(retriever, "embedder", None)
    app.state.vector_store = getattr(retriever, "store", None)
    app.state.max_request_body_bytes = settings.max_request_body_bytes

    app.include_router(openai_compat.router, tags=["OpenAI Compatible"])
    app.include_router(context.router, tags=["Context"])

    return app


# ============================================================
# Run with Uvicorn
# ============================================================
def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "enrichproxy.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    run()

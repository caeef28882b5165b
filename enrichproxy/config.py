"""
Configuration module for the enrichment proxy.
Loads environment variables and provides centralized config access.
"""

from typing import Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.

    Component constructors take these values explicitly, so every
    default documented here can also be overridden in code or tests.
    """

    # ============================================================
    # Upstream Provider (OpenRouter, OpenAI-compatible)
    # ============================================================
    openrouter_api_key: Optional[str] = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    # Sent as HTTP-Referer / X-Title so the provider can attribute traffic
    openrouter_referer: str = "https://github.com/enrichproxy/enrichproxy"
    openrouter_title: str = "enrichproxy"

    # Per-attempt deadlines (seconds). Streaming holds the connection open
    # for the whole generation, so it gets a much longer ceiling.
    request_timeout: float = 60.0
    stream_timeout: float = 300.0

    # Retry only applies to HTTP 429
    max_retries: int = 3
    initial_backoff: float = 0.5

    # ============================================================
    # Enrichment Pipeline
    # ============================================================
    enrichment_enabled: bool = True
    max_context_tokens: int = 4000
    top_k: int = 5
    candidate_multiplier: int = 4
    intent_timeout: float = 3.0

    # ============================================================
    # Local Engine (Ollama)
    # ============================================================
    ollama_base_url: str = "http://localhost:11434"
    intent_model: str = "phi3.5"
    embed_model: str = "nomic-embed-text"
    rerank_model: str = "phi3.5"

    # LLM reranker is opt-in; the no-op reranker is used otherwise
    rerank_enabled: bool = False
    rerank_timeout: float = 2.0
    rerank_threshold: float = 0.0

    # ============================================================
    # User Profile
    # ============================================================
    profile_cache_ttl: float = 60.0

    # ============================================================
    # Server Configuration
    # ============================================================
    host: str = "127.0.0.1"
    port: int = 4000
    debug: bool = False
    max_request_body_bytes: int = 1 << 20

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reloading env vars on every call.
    """
    return Settings()

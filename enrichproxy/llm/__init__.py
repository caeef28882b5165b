"""
LLM clients package.
The upstream cloud provider client plus the local Ollama client used by
the enrichment pipeline.
"""

from enrichproxy.llm.errors import (
    RateLimitExhaustedError,
    UpstreamDecodeError,
    UpstreamError,
    UpstreamStatusError,
    UpstreamTimeoutError,
    UpstreamTransportError,
)
from enrichproxy.llm.ollama_client import OllamaClient
from enrichproxy.llm.proxy_client import ProxyClient, UpstreamResponse

__all__ = [
    "OllamaClient",
    "ProxyClient",
    "UpstreamResponse",
    "UpstreamError",
    "RateLimitExhaustedError",
    "UpstreamStatusError",
    "UpstreamTransportError",
    "UpstreamTimeoutError",
    "UpstreamDecodeError",
]

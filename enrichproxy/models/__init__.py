"""
Wire models shared by the pipeline, the upstream client and the API.
"""

from enrichproxy.models.chat import (
    ChatMessage,
    ChatRequest,
    ModelInfo,
    ModelList,
    last_user_message,
    parse_messages,
)
from enrichproxy.models.ingest import IngestRequest, IngestResponse

__all__ = [
    "ChatMessage",
    "ChatRequest",
    "IngestRequest",
    "IngestResponse",
    "ModelInfo",
    "ModelList",
    "last_user_message",
    "parse_messages",
]

"""
Retrieval data models.

A ContextChunk is one retrieved unit of context. Scores are only
comparable within a single retrieval call; they are not bounded to
[0, 1].
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class ContextChunk(BaseModel):
    """
    A retrieved context fragment with its relevance score.

    Attributes:
        id: Unique chunk identifier
        source_id: Identifier of the document/record the chunk came from
        source_type: Kind of source (doc, note, message, ...)
        text: The chunk text injected into the prompt
        score: Relevance score (higher = more relevant)
        tags: Raw tag string stored alongside the chunk
        created_at: When the chunk was stored, if known
    """
    id: str
    source_id: str = ""
    source_type: str = ""
    text: str = ""
    score: float = 0.0
    tags: str = ""
    created_at: Optional[datetime] = Field(default=None)

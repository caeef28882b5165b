"""
Request/response models for context ingestion.
"""

from typing import List
from pydantic import BaseModel, Field


class IngestRequest(BaseModel):
    """
    A piece of context to embed and store for later retrieval.

    Attributes:
        source: Where the content came from (required, becomes source_id)
        type: Kind of source; defaults to "text"
        title: Optional human-readable title
        content: The text to embed and store (required)
        tags: Free-form tags kept with the stored chunk
    """
    source: str = Field(..., min_length=1)
    type: str = "text"
    title: str = ""
    content: str = Field(..., min_length=1)
    tags: List[str] = Field(default_factory=list)


class IngestResponse(BaseModel):
    id: str
    status: str = "stored"

"""
User profile models: the structured "digital self" summarized into
every enriched prompt.
"""

from typing import Dict, List
from pydantic import BaseModel, Field


class IdentityProfile(BaseModel):
    """Professional role and working context (e.g. current_projects)."""
    role: str = ""
    working_context: Dict[str, str] = Field(default_factory=dict)


class CommunicationProfile(BaseModel):
    """How the user prefers responses to be written."""
    tone: str = ""          # e.g. "direct, no fluff"
    format: str = ""        # e.g. "markdown with code"
    detail_level: str = ""  # e.g. "medium, skip basics"


class Profile(BaseModel):
    """
    Structured user profile assembled from flat key-value storage.

    Attributes:
        identity: Role and working context
        communication: Tone/format/detail preferences
        interests: Free-form interest tags
        expertise: domain -> level (e.g. "python" -> "expert")
        opinions: Stated opinions, injected verbatim
        preferences: Stated preferences, injected verbatim
    """
    identity: IdentityProfile = Field(default_factory=IdentityProfile)
    communication: CommunicationProfile = Field(default_factory=CommunicationProfile)
    interests: List[str] = Field(default_factory=list)
    expertise: Dict[str, str] = Field(default_factory=dict)
    opinions: List[str] = Field(default_factory=list)
    preferences: List[str] = Field(default_factory=list)

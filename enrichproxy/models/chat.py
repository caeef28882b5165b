"""
Chat request/message models for the OpenAI-compatible wire format.

Both models keep every field they do not explicitly know about in
pydantic's extra mapping, so provider-specific fields (tool call ids,
temperature, response_format, ...) round-trip unchanged through the
proxy and through prompt composition.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """
    A single chat message: role + content plus any passthrough fields.

    ``content`` may be null (e.g. assistant turns that only carry
    tool calls). Fields absent on input stay absent on output.
    """
    model_config = ConfigDict(extra="allow")

    role: str
    content: Optional[str] = None

    @property
    def extra_fields(self) -> Dict[str, Any]:
        """Provider-specific fields that are not role/content."""
        return dict(self.model_extra or {})

    def to_dict(self) -> Dict[str, Any]:
        """Merge role/content and the extra fields back into one object."""
        return self.model_dump(exclude_unset=True)


class ChatRequest(BaseModel):
    """
    OpenAI-compatible chat completion request.

    ``messages`` is kept as the raw decoded JSON array; it is parsed
    into ``ChatMessage`` objects only where the content has to be
    inspected or rewritten.
    """
    model_config = ConfigDict(extra="allow")

    model: str = ""
    messages: Any = Field(default_factory=list)
    stream: bool = False

    def to_payload(self) -> Dict[str, Any]:
        """Serialize for the upstream provider, preserving passthrough fields."""
        return self.model_dump(exclude_unset=True)

    def with_messages(self, messages: List[Dict[str, Any]]) -> "ChatRequest":
        """Return a copy of this request carrying a new message array."""
        return self.model_copy(update={"messages": messages})


def parse_messages(raw: Any) -> List[ChatMessage]:
    """
    Parse a raw message array into ChatMessage objects.

    Raises:
        ValueError: if ``raw`` is not a list of message objects with a
            string role and a string (or null) content.
    """
    if not isinstance(raw, list):
        raise ValueError(f"messages must be an array, got {type(raw).__name__}")
    messages = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValueError(f"message {i} is not an object")
        # pydantic's ValidationError subclasses ValueError
        messages.append(ChatMessage.model_validate(item))
    return messages


def last_user_message(raw: Any) -> str:
    """Content of the last user-authored message, or "" if there is none."""
    try:
        messages = parse_messages(raw)
    except ValueError:
        return ""
    for msg in reversed(messages):
        if msg.role == "user":
            return msg.content or ""
    return ""


class ModelInfo(BaseModel):
    """A model entry returned by the upstream /models endpoint."""
    model_config = ConfigDict(extra="allow")

    id: str
    object: str = "model"
    created: Optional[int] = None
    owned_by: Optional[str] = None


class ModelList(BaseModel):
    """Response body of /v1/models."""
    object: str = "list"
    data: List[ModelInfo] = []

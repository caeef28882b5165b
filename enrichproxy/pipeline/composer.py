"""
Prompt composer: merges the user profile and retrieved context into a
system-level instruction block under a token budget.

Block format (the ``content`` of the system message)::

    [User Profile]
    <summary>

    [Retrieved Context]
    (Score: 0.91, Source: doc:readme)
    <chunk text>

When the request already starts with a system message the block is
prepended to its content, separated by a ``---`` line. Every other
message, and every unrecognized field on any message, passes through
unchanged.
"""

import logging
from typing import List, Tuple

from enrichproxy.models.chat import ChatMessage, ChatRequest, parse_messages
from enrichproxy.retrieval.types import ContextChunk

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTEXT_TOKENS = 4000

PROFILE_HEADER = "[User Profile]\n"
CONTEXT_HEADER = "\n\n[Retrieved Context]\n"
SYSTEM_DELIMITER = "\n\n---\n\n"


def estimate_tokens(text: str) -> int:
    """
    Rough token count, ~4 chars per token (rounded up).

    A budget heuristic, not a tokenizer: only monotonic budget
    enforcement can be relied on.
    """
    return (len(text) + 3) // 4


def format_chunk(chunk: ContextChunk) -> str:
    """Render one chunk with its score and source for traceability."""
    return f"(Score: {chunk.score:.2f}, Source: {chunk.source_type}:{chunk.source_id})\n{chunk.text}\n\n"


class ComposeError(ValueError):
    """
    The request's messages could not be parsed.

    ``request`` is the original, untouched request so callers can
    forward it unenriched.
    """

    def __init__(self, message: str, request: ChatRequest):
        super().__init__(message)
        self.request = request


class Composer:
    """
    Builds enriched chat requests.

    Attributes:
        max_context_tokens: Budget (estimated tokens) for injected context
    """

    def __init__(self, max_context_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS):
        if max_context_tokens <= 0:
            max_context_tokens = DEFAULT_MAX_CONTEXT_TOKENS
        self.max_context_tokens = max_context_tokens

    def compose(
        self,
        request: ChatRequest,
        chunks: List[ContextChunk],
        profile_summary: str,
    ) -> ChatRequest:
        """
        Return ``request`` with the enrichment block spliced in.

        Raises:
            ComposeError: the message payload is not a list of messages
        """
        enriched, _ = self.compose_with_selection(request, chunks, profile_summary)
        return enriched

    def compose_with_selection(
        self,
        request: ChatRequest,
        chunks: List[ContextChunk],
        profile_summary: str,
    ) -> Tuple[ChatRequest, List[ContextChunk]]:
        """
        Like ``compose`` but also returns the chunks that made it into
        the prompt, in prompt order.
        """
        try:
            messages = parse_messages(request.messages)
        except ValueError as e:
            raise ComposeError(f"parsing messages: {e}", request) from e

        enrichment, selected = self.build_enrichment(chunks, profile_summary)
        if not enrichment:
            return request, []

        if messages and messages[0].role == "system":
            existing = messages[0].content or ""
            messages[0].content = enrichment + SYSTEM_DELIMITER + existing if existing else enrichment
        else:
            messages.insert(0, ChatMessage(role="system", content=enrichment))

        return request.with_messages([m.to_dict() for m in messages]), selected

    def build_enrichment(
        self,
        chunks: List[ContextChunk],
        profile_summary: str,
    ) -> Tuple[str, List[ContextChunk]]:
        """
        Build the enrichment block and report which chunks were used.

        Chunks are taken in descending score order (stable on ties). A
        chunk is accepted only if its estimated cost fits the remaining
        budget; otherwise it is skipped and the scan continues. Chunks
        are never truncated.
        """
        parts = []
        if profile_summary:
            parts.append(PROFILE_HEADER + profile_summary)

        if not chunks:
            return "".join(parts), []

        ranked = sorted(chunks, key=lambda c: c.score, reverse=True)

        profile_tokens = estimate_tokens("".join(parts))
        remaining = self.max_context_tokens - profile_tokens - estimate_tokens(CONTEXT_HEADER)

        selected: List[ContextChunk] = []
        entries = []
        for chunk in ranked:
            entry = format_chunk(chunk)
            cost = estimate_tokens(entry)
            if cost > remaining:
                logger.debug(f"Skipping chunk {chunk.id}: {cost} tokens > {remaining} remaining")
                continue
            selected.append(chunk)
            entries.append(entry)
            remaining -= cost

        if entries:
            parts.append(CONTEXT_HEADER)
            parts.extend(entries)

        return "".join(parts), selected

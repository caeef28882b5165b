"""
Intent extraction using a fast local LLM.

Turns the user's latest message into a structured Intent that guides
retrieval. Extraction is best-effort: any failure yields an empty
Intent so the enrichment pipeline never blocks on it.
"""

import json
import logging
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, ValidationError

from enrichproxy.intent.prompt import INTENT_SCHEMA, build_prompt

logger = logging.getLogger(__name__)


class Intent(BaseModel):
    """
    Structured extraction result for one user query.

    Attributes:
        intent_type: recall, task, question or preference_update ("" when unknown)
        entities: Named entities (people, projects, technologies, concepts)
        topics: Semantic topic tags
        context_needs: Kinds of stored context that would help answer
        is_private: Whether the query contains sensitive information
    """
    intent_type: str = ""
    entities: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)
    context_needs: List[str] = Field(default_factory=list)
    is_private: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.intent_type


class IntentExtractor:
    """
    Extracts structured intent via an Ollama chat model with a JSON schema.

    Attributes:
        client: OllamaClient (anything with an async ``chat``)
        model: Local model name
    """

    def __init__(self, client, model: str = "phi3.5"):
        self.client = client
        self.model = model

    async def extract(
        self,
        query: str,
        history: Optional[List[Dict[str, str]]] = None,
        profile_summary: str = "",
    ) -> Intent:
        """
        Analyse the query and return an Intent, or an empty Intent on
        any failure (engine error, malformed JSON).
        """
        if not query:
            return Intent()

        messages = build_prompt(query, history, profile_summary)

        try:
            raw = await self.client.chat(self.model, messages, INTENT_SCHEMA)
        except Exception as e:
            logger.warning(f"Intent extraction chat failed: {e}")
            return Intent()

        try:
            return Intent.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning(f"Failed to parse intent from LLM response: {e} (response={raw!r})")
            return Intent()

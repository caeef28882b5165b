"""
Prompt construction for intent extraction.
"""

from typing import Dict, List, Optional


INTENT_SYSTEM_PROMPT = """You are an intent extraction engine. Analyze the user's query and conversation history. Your output must be ONLY a single valid JSON object that conforms to the provided schema. Do not include any other text, prose, or markdown.

Intent types:
- "recall": user wants to remember or retrieve something from the past
- "task": user wants to accomplish a specific action
- "question": user is asking a general knowledge or technical question
- "preference_update": user is expressing or updating a preference

Rules:
- Extract all named entities (people, projects, technologies, concepts).
- Infer relevant topic tags for semantic search.
- Determine what stored context would help answer the query.
- Set is_private to true only if the query contains clearly sensitive personal information."""


# JSON schema passed to Ollama's structured output ``format`` field
INTENT_SCHEMA = {
    "type": "object",
    "properties": {
        "intent_type": {
            "type": "string",
            "description": "One of: recall, task, question, preference_update",
        },
        "entities": {"type": "array", "description": "Named entities mentioned in the query"},
        "topics": {"type": "array", "description": "Semantic topic tags"},
        "context_needs": {
            "type": "array",
            "description": "What kind of context would help answer this query",
        },
        "is_private": {"type": "boolean", "description": "Whether the user flagged this as sensitive"},
    },
    "required": ["intent_type", "entities", "topics", "context_needs", "is_private"],
}


def build_prompt(
    query: str,
    history: Optional[List[Dict[str, str]]] = None,
    profile_summary: str = "",
) -> List[Dict[str, str]]:
    """
    Build the chat messages for intent extraction.

    Layout: system instructions (plus the profile when known), then the
    recent history, then the query as the final user message.
    """
    system = INTENT_SYSTEM_PROMPT
    if profile_summary:
        system += f"\n\n[User Profile]\n{profile_summary}"

    messages = [{"role": "system", "content": system}]
    messages.extend(history or [])
    messages.append({"role": "user", "content": query})
    return messages

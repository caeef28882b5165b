"""
Profile manager: cached, structured access to the user profile.

Profile data lives in a flat key-value store using dot-notation keys
("identity.role", "communication.tone", ...). List and map values are
stored as JSON. The manager assembles them into a Profile, caches it
for a short TTL and renders the compact summary injected into prompts.
"""

import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Protocol

from enrichproxy.profile.types import Profile

logger = logging.getLogger(__name__)

# Keeps the summary under ~500 tokens (4 chars/token)
MAX_SUMMARY_CHARS = 2000

EMPTY_PROFILE_SUMMARY = "User profile: not yet configured."


class ProfileStore(Protocol):
    """Storage operations the manager needs."""

    def get_all_keys(self) -> Dict[str, str]:
        ...

    def set_key(self, key: str, value: str) -> None:
        ...


class InMemoryProfileStore:
    """Dict-backed ProfileStore used when no persistent store is wired in."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get_all_keys(self) -> Dict[str, str]:
        return dict(self._data)

    def set_key(self, key: str, value: str) -> None:
        self._data[key] = value


def _load_json_key(keys: Dict[str, str], key: str, expected: type) -> Any:
    """Decode a JSON-valued key, logging and skipping malformed values."""
    raw = keys.get(key)
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except ValueError as e:
        logger.warning(f"Malformed profile key {key!r}, skipping: {e}")
        return None
    if not isinstance(value, expected):
        logger.warning(f"Profile key {key!r} is not a JSON {expected.__name__}, skipping")
        return None
    return value


def build_profile(keys: Dict[str, str]) -> Profile:
    """Assemble a Profile from flat dot-notation key-value pairs."""
    profile = Profile()

    if "identity.role" in keys:
        profile.identity.role = keys["identity.role"]
    working_context = _load_json_key(keys, "identity.working_context", dict)
    if working_context is not None:
        profile.identity.working_context = {str(k): str(v) for k, v in working_context.items()}

    profile.communication.tone = keys.get("communication.tone", "")
    profile.communication.format = keys.get("communication.format", "")
    profile.communication.detail_level = keys.get("communication.detail_level", "")

    for field_name in ("interests", "opinions", "preferences"):
        values = _load_json_key(keys, field_name, list)
        if values is not None:
            setattr(profile, field_name, [str(v) for v in values])

    expertise = _load_json_key(keys, "expertise", dict)
    if expertise is not None:
        profile.expertise = {str(k): str(v) for k, v in expertise.items()}

    return profile


def summarize(profile: Profile) -> str:
    """
    Render a compact one-paragraph summary for prompt injection.

    Example: "User: backend engineer. Expert in: go (expert), python
    (advanced). Prefers: direct tone, markdown. Interests: databases."
    """
    parts = []

    if profile.identity.role:
        parts.append(f"User: {profile.identity.role}.")

    if profile.expertise:
        # Sorted for deterministic output
        exps = [f"{domain} ({profile.expertise[domain]})" for domain in sorted(profile.expertise)]
        parts.append(f"Expert in: {', '.join(exps)}.")

    comm = profile.communication
    comm_parts = []
    if comm.tone:
        comm_parts.append(f"{comm.tone} tone")
    if comm.format:
        comm_parts.append(comm.format)
    if comm.detail_level:
        comm_parts.append(comm.detail_level)
    if comm_parts:
        parts.append(f"Prefers: {', '.join(comm_parts)}.")

    if profile.interests:
        parts.append(f"Interests: {', '.join(profile.interests)}.")

    parts.extend(profile.opinions)
    parts.extend(profile.preferences)

    if not parts:
        return EMPTY_PROFILE_SUMMARY

    summary = " ".join(parts)
    if len(summary) > MAX_SUMMARY_CHARS:
        cut = summary[:MAX_SUMMARY_CHARS]
        space = cut.rfind(" ")
        summary = cut[:space] if space > 0 else cut
    return summary


class ProfileManager:
    """
    Cached access to the stored user profile.

    Attributes:
        store: ProfileStore holding the flat keys
        ttl: Seconds a loaded profile stays cached
    """

    def __init__(
        self,
        store: ProfileStore,
        ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.ttl = ttl
        self._clock = clock
        self._cached: Optional[Profile] = None
        self._cached_at = 0.0

    def get_profile(self) -> Profile:
        """Structured profile from cache or storage (a copy, safe to mutate)."""
        if self._cached is not None and self._clock() < self._cached_at + self.ttl:
            return self._cached.model_copy(deep=True)

        keys = self.store.get_all_keys()
        profile = build_profile(keys)
        self._cached = profile
        self._cached_at = self._clock()
        return profile.model_copy(deep=True)

    def set_field(self, key: str, value: Any) -> None:
        """Persist a profile key (non-strings JSON-encoded) and drop the cache."""
        stored = value if isinstance(value, str) else json.dumps(value)
        self.store.set_key(key, stored)
        self._cached = None

    async def get_summary(self) -> str:
        """Compact profile summary for prompt injection."""
        return summarize(self.get_profile())

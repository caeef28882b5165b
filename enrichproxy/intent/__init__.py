"""
Intent extraction package.
"""

from enrichproxy.intent.extractor import Intent, IntentExtractor
from enrichproxy.intent.prompt import build_prompt

__all__ = ["Intent", "IntentExtractor", "build_prompt"]

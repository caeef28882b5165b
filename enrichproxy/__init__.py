"""
enrichproxy: a context-enriching proxy for OpenAI-compatible chat APIs.
"""

__version__ = "0.1.0"

"""
API routers package.
"""

from enrichproxy.routers import context, openai_compat

__all__ = ["context", "openai_compat"]

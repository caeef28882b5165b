"""
Enrichment pipeline: prompt composition and stage orchestration.
"""

from enrichproxy.pipeline.composer import ComposeError, Composer, estimate_tokens
from enrichproxy.pipeline.enricher import EnrichmentMetadata, Enricher

__all__ = ["ComposeError", "Composer", "EnrichmentMetadata", "Enricher", "estimate_tokens"]

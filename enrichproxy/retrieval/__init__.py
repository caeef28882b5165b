"""
Retrieval package: context chunks, embeddings, vector search and reranking.
"""

from enrichproxy.retrieval.embedder import Embedder
from enrichproxy.retrieval.reranker import LLMReranker, NoOpReranker, Reranker, create_reranker
from enrichproxy.retrieval.retriever import Retriever
from enrichproxy.retrieval.types import ContextChunk
from enrichproxy.retrieval.vector_store import InMemoryVectorStore, VectorStore

__all__ = [
    "ContextChunk",
    "Embedder",
    "InMemoryVectorStore",
    "LLMReranker",
    "NoOpReranker",
    "Reranker",
    "Retriever",
    "VectorStore",
    "create_reranker",
]

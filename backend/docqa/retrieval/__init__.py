"""
Retrieval Module

Hybrid retrieval system combining dense and sparse methods:
- OpenAI embeddings for semantic search
- BM25 for keyword matching
- Reciprocal Rank Fusion for combining results
- Document diversification and per-document caps
- Jina or Cohere reranking for final ordering
"""

from docqa.retrieval.embeddings import EmbeddingService
from docqa.retrieval.chunk_store import QdrantChunkStore
from docqa.retrieval.document_store import QdrantDocumentStore
from docqa.retrieval.bm25_index import BM25Index
from docqa.retrieval.hybrid_search import HybridSearcher, RetrievalError, hybrid_retrieve
from docqa.retrieval.reranker import CohereReranker, JinaReranker, build_reranker

__all__ = [
    "EmbeddingService",
    "QdrantChunkStore",
    "QdrantDocumentStore",
    "BM25Index",
    "HybridSearcher",
    "RetrievalError",
    "hybrid_retrieve",
    "CohereReranker",
    "JinaReranker",
    "build_reranker"
]

"""
Collaborator Interfaces

Contracts the hybrid searcher depends on. Concrete implementations live
beside this module (OpenAI embeddings, Qdrant stores, Jina/Cohere rerankers);
tests substitute in-memory fakes.
"""

from typing import Dict, List, Optional, Protocol, Sequence

from docqa.models import DenseCandidate, LexicalCandidate, RerankResult


class Embedder(Protocol):
    async def embed_query(self, query: str) -> List[float]:
        ...


class ChunkStore(Protocol):
    async def fetch_dense_candidates(
        self,
        tenant_id: str,
        limit: int
    ) -> List[DenseCandidate]:
        ...

    async def fetch_lexical_candidates(
        self,
        tenant_id: str,
        query: str,
        limit: int
    ) -> List[LexicalCandidate]:
        ...


class DocumentStore(Protocol):
    async def resolve_names(self, tenant_id: str, doc_ids: Sequence[str]) -> Dict[str, str]:
        ...


class Reranker(Protocol):
    async def rerank(
        self,
        query: str,
        texts: List[str],
        top_n: int
    ) -> Optional[List[RerankResult]]:
        """Return positions sorted by descending score, or None when unavailable."""
        ...

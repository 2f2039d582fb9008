"""
Pydantic Data Models

Defines the data structures that flow through the retrieval engine:
- Stored passage and document records
- Per-path candidates (dense, lexical)
- The fused RetrievedItem returned to callers
- Reranker results and citations for display
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Optional


# ============================================================================
# Stored Records
# ============================================================================

class ChunkRecord(BaseModel):
    """A passage as held by the chunk store."""
    id: str = Field(..., description="Unique passage identifier")
    tenant_id: str = Field(..., description="Owning tenant")
    doc_id: str = Field(..., description="Owning document")
    text: str = Field(..., description="Passage content")
    page: Optional[int] = Field(None, description="Page number for paginated sources")
    embedding: Optional[List[float]] = Field(None, description="Precomputed embedding vector")


class DocumentRecord(BaseModel):
    """A document as held by the document store."""
    id: str = Field(..., description="Unique document identifier")
    tenant_id: str = Field(..., description="Owning tenant")
    name: str = Field(..., description="Display name")


# ============================================================================
# Candidates
# ============================================================================

class DenseCandidate(BaseModel):
    """Passage returned by the dense fetch, carrying its stored vector."""
    id: str
    doc_id: str
    text: str
    page: Optional[int] = None
    vector: List[float]


class LexicalCandidate(BaseModel):
    """Passage returned by the lexical search with its native relevance score."""
    id: str
    doc_id: str
    text: str
    page: Optional[int] = None
    relevance_score: float


class RetrievedItem(BaseModel):
    """
    A passage moving through fusion, diversification and reranking.

    dense_score and bm25_score are only set by the path that found the
    passage; fused_score accumulates the RRF contributions of both.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(..., description="Passage identifier, merge key")
    doc_id: str = Field(..., description="Owning document")
    text: str = Field(..., description="Passage content")
    page: Optional[int] = Field(None, description="Page number")
    dense_score: Optional[float] = Field(None, description="Raw dot-product similarity")
    bm25_score: Optional[float] = Field(None, description="Native lexical relevance score")
    fused_score: float = Field(0.0, description="Sum of reciprocal-rank contributions")
    doc_name: Optional[str] = Field(None, description="Document display name")

    def to_citation(self) -> "Citation":
        """Build the citation shown next to an answer."""
        return Citation(
            id=self.id,
            name=self.doc_name or self.doc_id,
            snippet=self.text,
            page=self.page,
        )


class RerankResult(BaseModel):
    """One reranked position: index into the submitted texts and its score."""
    index: int
    score: float


class Citation(BaseModel):
    """Source reference for UI display."""
    id: str = Field(..., description="Passage identifier")
    name: str = Field(..., description="Document name, or id when unnamed")
    snippet: str = Field(..., description="Passage text")
    page: Optional[int] = Field(None, description="Page number")

"""
Hybrid Search Module

Combines dense (embedding) and lexical (BM25) retrieval over one tenant's
passages using Reciprocal Rank Fusion, then shapes the result for citation
display.

Pipeline:
    embed query ─► dense fetch ─► rank_dense ─┐
    lexical fetch ─► rank_lexical ────────────┴► fuse ─► diversify
        ─► cap_per_document ─► rerank (optional) ─► document names ─► top k

The lexical branch does not wait for the embedding; both branches run
concurrently. Embedding and store failures (including deadline expiry) fail
the call with RetrievalError. Reranker failures only cost the rerank.

Usage:
    searcher = HybridSearcher(chunk_store, document_store, embedding_service, reranker)
    items = await searcher.retrieve("demo", "support hours", k=6)
"""

from typing import Awaitable, List, Optional, TypeVar
from functools import lru_cache
import asyncio
import logging

from docqa.config import settings
from docqa.models import RetrievedItem
from docqa.retrieval.interfaces import ChunkStore, DocumentStore, Embedder, Reranker
from docqa.retrieval.ranking import (
    DENSE_TOP_N,
    RRF_K,
    apply_rerank_order,
    cap_per_document,
    diversify,
    fuse,
    rank_dense,
    rank_lexical,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetrievalError(Exception):
    """A fatal retrieval stage failure; the original error is the cause."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"Retrieval failed at {stage} stage: {cause!r}")
        self.stage = stage
        self.cause = cause


class HybridSearcher:
    """
    Hybrid search combining dense and lexical retrieval.

    Stages after fusion:
    - Diversification: first half of k may repeat a document, the rest
      prefer unseen documents
    - Per-document cap: hard limit of max_per_doc passages per document
    - Reranking: optional, fail-soft, only with more than two candidates
    """

    RRF_K = RRF_K
    DENSE_TOP_N = DENSE_TOP_N

    # Reranking is skipped for lists this short
    MIN_RERANK_CANDIDATES = 3

    def __init__(
        self,
        chunk_store: ChunkStore,
        document_store: DocumentStore,
        embedding_service: Embedder,
        reranker: Optional[Reranker] = None,
        max_per_doc: int = None,
        rerank_timeout: float = None
    ):
        """
        Initialize hybrid searcher.

        Args:
            chunk_store: Dense and lexical candidate source
            document_store: Document name lookup
            embedding_service: Query embedder
            reranker: Optional cross-encoder reranker
            max_per_doc: Default passages allowed per document
            rerank_timeout: Seconds before the reranker is abandoned
        """
        self.chunk_store = chunk_store
        self.document_store = document_store
        self.embedding_service = embedding_service
        self.reranker = reranker
        self.max_per_doc = max_per_doc if max_per_doc is not None else settings.RETRIEVAL_MAX_PER_DOC
        self.rerank_timeout = rerank_timeout if rerank_timeout is not None else settings.RERANK_TIMEOUT_SECONDS

    async def retrieve(
        self,
        tenant_id: str,
        query: str,
        k: int = None,
        dense_limit: int = None,
        bm25_limit: int = None,
        max_per_doc: int = None,
        timeout: float = None
    ) -> List[RetrievedItem]:
        """
        Retrieve the best passages for a query within one tenant.

        Args:
            tenant_id: Tenant whose passages are searched
            query: Natural-language query
            k: Maximum number of passages to return
            dense_limit: Dense candidate pool size
            bm25_limit: Lexical candidate pool size
            max_per_doc: Passages allowed per document (at least 1)
            timeout: Deadline in seconds for embedding and store calls (0 disables)

        Returns:
            At most k passages, best first, with document names attached

        Raises:
            ValueError: If k < 1 or the query is blank
            RetrievalError: If embedding, a store call, or the deadline fails
        """
        k = k if k is not None else settings.RETRIEVAL_TOP_K
        dense_limit = dense_limit if dense_limit is not None else settings.RETRIEVAL_DENSE_LIMIT
        bm25_limit = bm25_limit if bm25_limit is not None else settings.RETRIEVAL_BM25_LIMIT
        max_per_doc = max_per_doc if max_per_doc is not None else self.max_per_doc
        timeout = timeout if timeout is not None else settings.RETRIEVAL_TIMEOUT_SECONDS

        if k < 1:
            raise ValueError(f"k must be at least 1, got {k}")
        if not query or not query.strip():
            raise ValueError("query must not be blank")

        logger.info(f"Hybrid retrieve: tenant={tenant_id} '{query}' (k={k}, max_per_doc={max_per_doc})")

        deadline = asyncio.get_running_loop().time() + timeout if timeout else None

        dense_ranked, lexical_ranked = await self._fetch_ranked(
            tenant_id, query, dense_limit, bm25_limit, deadline
        )
        logger.debug(f"Dense: {len(dense_ranked)} ranked, Lexical: {len(lexical_ranked)} ranked")

        fused = fuse(dense_ranked, lexical_ranked)
        diversified = diversify(fused, k)
        capped = cap_per_document(diversified, k, max_per_doc)

        ordered = await self._apply_rerank(query, capped, k)
        enriched = await self._enrich(tenant_id, ordered, deadline)

        results = enriched[:k]
        logger.info(f"Returned {len(results)} passages from {len(fused)} fused candidates")
        return results

    async def _fetch_ranked(
        self,
        tenant_id: str,
        query: str,
        dense_limit: int,
        bm25_limit: int,
        deadline: Optional[float]
    ):
        """Run both candidate branches concurrently; one failing cancels the other."""
        lexical_task = asyncio.create_task(self._lexical_branch(tenant_id, query, bm25_limit, deadline))
        dense_task = asyncio.create_task(self._dense_branch(tenant_id, query, dense_limit, deadline))
        tasks = (dense_task, lexical_task)

        try:
            dense_ranked, lexical_ranked = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return dense_ranked, lexical_ranked

    async def _dense_branch(
        self,
        tenant_id: str,
        query: str,
        limit: int,
        deadline: Optional[float]
    ) -> List[RetrievedItem]:
        query_vector = await self._run_stage(
            "embedding", self.embedding_service.embed_query(query), deadline
        )
        candidates = await self._run_stage(
            "dense", self.chunk_store.fetch_dense_candidates(tenant_id, limit), deadline
        )
        return rank_dense(query_vector, candidates, top_n=self.DENSE_TOP_N)

    async def _lexical_branch(
        self,
        tenant_id: str,
        query: str,
        limit: int,
        deadline: Optional[float]
    ) -> List[RetrievedItem]:
        candidates = await self._run_stage(
            "lexical", self.chunk_store.fetch_lexical_candidates(tenant_id, query, limit), deadline
        )
        return rank_lexical(candidates)

    async def _run_stage(self, stage: str, call: Awaitable[T], deadline: Optional[float]) -> T:
        """Await a collaborator call under the deadline, tagging failures with the stage."""
        remaining = None
        if deadline is not None:
            remaining = max(0.0, deadline - asyncio.get_running_loop().time())

        try:
            return await asyncio.wait_for(call, remaining)
        except asyncio.TimeoutError as e:
            logger.error(f"Retrieval {stage} stage timed out")
            raise RetrievalError(stage, e) from e
        except Exception as e:
            logger.error(f"Retrieval {stage} stage failed: {e}")
            raise RetrievalError(stage, e) from e

    async def _apply_rerank(
        self,
        query: str,
        items: List[RetrievedItem],
        k: int
    ) -> List[RetrievedItem]:
        """
        Reorder items with the reranker, keeping the current order on any failure.

        Args:
            query: Search query
            items: Capped items in RRF order
            k: Requested result count

        Returns:
            Reranked items, or items unchanged
        """
        if self.reranker is None or len(items) < self.MIN_RERANK_CANDIDATES:
            return items

        texts = [item.text for item in items]
        top_n = min(k, len(texts))
        try:
            ranked = await asyncio.wait_for(
                self.reranker.rerank(query, texts, top_n),
                self.rerank_timeout
            )
            if not ranked:
                logger.warning("Reranker returned no results, keeping RRF order")
                return items
            return apply_rerank_order(items, ranked, top_n)
        except Exception as e:
            logger.warning(f"Reranker failed, keeping RRF order: {e!r}")
            return items

    async def _enrich(
        self,
        tenant_id: str,
        items: List[RetrievedItem],
        deadline: Optional[float]
    ) -> List[RetrievedItem]:
        """Attach document names with one batched lookup; unknown ids stay unnamed."""
        doc_ids = list(dict.fromkeys(item.doc_id for item in items))
        if not doc_ids:
            return items

        names = await self._run_stage(
            "enrichment", self.document_store.resolve_names(tenant_id, doc_ids), deadline
        )
        return [item.model_copy(update={"doc_name": names.get(item.doc_id)}) for item in items]

    async def close(self) -> None:
        """Release collaborator clients that hold connections."""
        for collaborator in (self.reranker, self.chunk_store, self.document_store):
            close = getattr(collaborator, "close", None)
            if close is not None:
                await close()


@lru_cache()
def get_searcher() -> HybridSearcher:
    """
    Build the default searcher from settings (Qdrant stores, OpenAI
    embeddings, configured reranker). Cached for the process.
    """
    from docqa.retrieval.chunk_store import QdrantChunkStore
    from docqa.retrieval.document_store import QdrantDocumentStore
    from docqa.retrieval.embeddings import EmbeddingService
    from docqa.retrieval.reranker import build_reranker

    return HybridSearcher(
        chunk_store=QdrantChunkStore(),
        document_store=QdrantDocumentStore(),
        embedding_service=EmbeddingService(),
        reranker=build_reranker(),
    )


async def close_searcher() -> None:
    """Close the default searcher if it was built, so the next call builds a fresh one."""
    if get_searcher.cache_info().currsize:
        await get_searcher().close()
        get_searcher.cache_clear()


async def hybrid_retrieve(
    tenant_id: str,
    query: str,
    k: int = 6,
    dense_limit: int = 200,
    bm25_limit: int = 20,
    searcher: HybridSearcher = None,
    **options
) -> List[RetrievedItem]:
    """
    Retrieve passages with the default searcher.

    Args:
        tenant_id: Tenant whose passages are searched
        query: Natural-language query
        k: Maximum number of passages to return
        dense_limit: Dense candidate pool size
        bm25_limit: Lexical candidate pool size
        searcher: Searcher to use instead of the default
        **options: max_per_doc and timeout, passed through

    Returns:
        At most k passages, best first
    """
    searcher = searcher or get_searcher()
    return await searcher.retrieve(
        tenant_id,
        query,
        k=k,
        dense_limit=dense_limit,
        bm25_limit=bm25_limit,
        **options
    )

"""
Chunk Store

Qdrant-backed, tenant-partitioned passage store. Serves the two candidate
fetches of hybrid retrieval:

- Dense: tenant passages that carry an embedding, returned with vectors
- Lexical: tenant passages sharing a term with the query, BM25-scored

Every read is filtered by tenant_id. Passages are stored under a named
"dense" vector that may be absent; the has_embedding payload flag mirrors
its presence so it can be filtered on.

Usage:
    store = QdrantChunkStore()
    await store.ensure_collection()
    dense = await store.fetch_dense_candidates("demo", limit=200)
    lexical = await store.fetch_lexical_candidates("demo", "support hours", limit=20)
"""

from typing import List, Optional, Dict, Any
import logging
import uuid

from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models as qdrant_models

from docqa.config import settings
from docqa.models import ChunkRecord, DenseCandidate, LexicalCandidate
from docqa.retrieval.bm25_index import BM25Index

logger = logging.getLogger(__name__)

DENSE_VECTOR_NAME = "dense"


def point_id_for(tenant_id: str, key: str) -> str:
    """Qdrant accepts only UUIDs or integers as point ids; derive one per tenant from any string id."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{tenant_id}/{key}"))


def build_async_client(api_key: Optional[str] = None) -> AsyncQdrantClient:
    """Create an async Qdrant client from settings (cloud URL or local host/port)."""
    if settings.QDRANT_URL:
        return AsyncQdrantClient(
            url=settings.QDRANT_URL,
            api_key=api_key or settings.QDRANT_API_KEY,
            timeout=settings.QDRANT_TIMEOUT
        )
    return AsyncQdrantClient(
        url=f"http://{settings.QDRANT_HOST}:{settings.QDRANT_PORT}",
        api_key=api_key or settings.QDRANT_API_KEY,
        https=False,
        timeout=settings.QDRANT_TIMEOUT
    )


class QdrantChunkStore:
    """
    Qdrant passage store.

    Features:
    - Tenant-scoped dense candidate fetch with vectors
    - Lexical search: full-text prefilter in Qdrant, BM25 scoring in process
    - Collection setup and upsert for seeding
    """

    def __init__(
        self,
        client: AsyncQdrantClient = None,
        collection_name: str = None,
        lexical_scan_limit: int = None
    ):
        """
        Initialize chunk store.

        Args:
            client: Async Qdrant client (built from settings if not provided)
            collection_name: Passage collection name
            lexical_scan_limit: Max term-matching passages scored per lexical search
        """
        self.collection_name = collection_name or settings.QDRANT_CHUNK_COLLECTION
        self.lexical_scan_limit = lexical_scan_limit or settings.LEXICAL_SCAN_LIMIT
        self._client = client

    def _get_client(self) -> AsyncQdrantClient:
        """Get or create async client."""
        if self._client is None:
            self._client = build_async_client()
        return self._client

    async def close(self) -> None:
        """Close the Qdrant client if one was opened."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def ensure_collection(self, vector_size: int = None) -> bool:
        """
        Create the passage collection and its payload indexes if missing.

        Args:
            vector_size: Dimension of the dense vector

        Returns:
            True once the collection exists
        """
        client = self._get_client()
        vector_size = vector_size or settings.EMBEDDING_DIMENSION

        try:
            await client.get_collection(self.collection_name)
            logger.info(f"Collection {self.collection_name} already exists")
            return True
        except Exception as e:
            logger.debug(f"Collection check failed (likely doesn't exist): {e}")

        await client.create_collection(
            collection_name=self.collection_name,
            vectors_config={
                DENSE_VECTOR_NAME: qdrant_models.VectorParams(
                    size=vector_size,
                    distance=qdrant_models.Distance.DOT
                )
            }
        )

        payload_indexes = {
            "tenant_id": qdrant_models.PayloadSchemaType.KEYWORD,
            "doc_id": qdrant_models.PayloadSchemaType.KEYWORD,
            "has_embedding": qdrant_models.PayloadSchemaType.BOOL,
            "text": qdrant_models.TextIndexParams(
                type=qdrant_models.TextIndexType.TEXT,
                tokenizer=qdrant_models.TokenizerType.WORD,
                lowercase=True
            ),
        }
        for field_name, field_schema in payload_indexes.items():
            await client.create_payload_index(
                collection_name=self.collection_name,
                field_name=field_name,
                field_schema=field_schema
            )

        logger.info(f"Created collection {self.collection_name} with vector size {vector_size}")
        return True

    async def upsert_chunks(self, chunks: List[ChunkRecord], batch_size: int = 100) -> int:
        """
        Upsert passages; those without an embedding are stored without a vector.

        Returns:
            Number of passages upserted
        """
        if not chunks:
            return 0

        client = self._get_client()

        total_upserted = 0
        for i in range(0, len(chunks), batch_size):
            batch = chunks[i:i + batch_size]
            await client.upsert(
                collection_name=self.collection_name,
                points=[self._chunk_to_point(chunk) for chunk in batch]
            )
            total_upserted += len(batch)

        logger.info(f"Upserted {total_upserted} chunks to {self.collection_name}")
        return total_upserted

    async def fetch_dense_candidates(self, tenant_id: str, limit: int) -> List[DenseCandidate]:
        """
        Fetch up to limit tenant passages that carry an embedding.

        Args:
            tenant_id: Tenant to read from
            limit: Candidate pool cap

        Returns:
            Passages with their stored vectors, in store order
        """
        scroll_filter = qdrant_models.Filter(must=[
            self._tenant_condition(tenant_id),
            qdrant_models.FieldCondition(
                key="has_embedding",
                match=qdrant_models.MatchValue(value=True)
            ),
        ])

        records = await self._scroll(scroll_filter, limit, with_vectors=[DENSE_VECTOR_NAME])

        candidates = []
        for record in records:
            vector = self._extract_vector(record)
            if vector is None:
                continue
            payload = record.payload or {}
            candidates.append(DenseCandidate(
                id=payload["chunk_id"],
                doc_id=payload["doc_id"],
                text=payload["text"],
                page=self._page(payload),
                vector=vector,
            ))

        logger.debug(f"Dense fetch for tenant {tenant_id}: {len(candidates)} candidates")
        return candidates

    async def fetch_lexical_candidates(
        self,
        tenant_id: str,
        query: str,
        limit: int
    ) -> List[LexicalCandidate]:
        """
        Lexical relevance search over tenant passages.

        Qdrant narrows the tenant to passages containing any query term;
        BM25 then scores that set.

        Args:
            tenant_id: Tenant to read from
            query: Free-text query
            limit: Number of hits to return

        Returns:
            Hits sorted by BM25 score descending
        """
        index = BM25Index()
        terms = list(dict.fromkeys(index.tokenize(query)))
        if not terms:
            return []

        scroll_filter = qdrant_models.Filter(
            must=[self._tenant_condition(tenant_id)],
            should=[
                qdrant_models.FieldCondition(
                    key="text",
                    match=qdrant_models.MatchText(text=term)
                )
                for term in terms
            ]
        )

        records = await self._scroll(scroll_filter, self.lexical_scan_limit, with_vectors=False)
        index.build_index([self._record_to_chunk(record, tenant_id) for record in records])

        hits = index.search(query, top_k=limit)
        logger.debug(f"Lexical search for tenant {tenant_id}: {len(records)} matched, {len(hits)} returned")
        return hits

    async def _scroll(
        self,
        scroll_filter: qdrant_models.Filter,
        limit: int,
        with_vectors: Any
    ) -> List[qdrant_models.Record]:
        """Page through matching points until limit records are collected."""
        client = self._get_client()
        records: List[qdrant_models.Record] = []
        offset = None

        while len(records) < limit:
            page, offset = await client.scroll(
                collection_name=self.collection_name,
                scroll_filter=scroll_filter,
                limit=limit - len(records),
                offset=offset,
                with_payload=True,
                with_vectors=with_vectors
            )
            records.extend(page)
            if offset is None or not page:
                break

        return records[:limit]

    def _tenant_condition(self, tenant_id: str) -> qdrant_models.FieldCondition:
        return qdrant_models.FieldCondition(
            key="tenant_id",
            match=qdrant_models.MatchValue(value=tenant_id)
        )

    def _chunk_to_point(self, chunk: ChunkRecord) -> qdrant_models.PointStruct:
        """
        Convert ChunkRecord to Qdrant point.

        Args:
            chunk: Passage

        Returns:
            Qdrant PointStruct
        """
        vector: Dict[str, List[float]] = {}
        if chunk.embedding:
            vector[DENSE_VECTOR_NAME] = chunk.embedding

        return qdrant_models.PointStruct(
            id=point_id_for(chunk.tenant_id, chunk.id),
            vector=vector,
            payload={
                "chunk_id": chunk.id,
                "tenant_id": chunk.tenant_id,
                "doc_id": chunk.doc_id,
                "text": chunk.text,
                "page": chunk.page,
                "has_embedding": bool(chunk.embedding),
            }
        )

    def _record_to_chunk(self, record, tenant_id: str) -> ChunkRecord:
        payload = record.payload or {}
        return ChunkRecord(
            id=payload["chunk_id"],
            tenant_id=payload.get("tenant_id", tenant_id),
            doc_id=payload["doc_id"],
            text=payload["text"],
            page=self._page(payload),
        )

    @staticmethod
    def _extract_vector(record) -> Optional[List[float]]:
        vector = getattr(record, "vector", None)
        if isinstance(vector, dict):
            vector = vector.get(DENSE_VECTOR_NAME)
        return list(vector) if vector else None

    @staticmethod
    def _page(payload: Dict[str, Any]) -> Optional[int]:
        page = payload.get("page")
        return page if isinstance(page, int) else None

"""
Document Store

Resolves document identifiers to display names. Documents live in a
payload-only Qdrant collection keyed by the same per-tenant uuid5 scheme as
passages, so two tenants may reuse a document id.
"""

from typing import Dict, List, Sequence
import logging

from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models as qdrant_models

from docqa.config import settings
from docqa.models import DocumentRecord
from docqa.retrieval.chunk_store import build_async_client, point_id_for

logger = logging.getLogger(__name__)


class QdrantDocumentStore:
    """Document name lookup backed by Qdrant."""

    def __init__(
        self,
        client: AsyncQdrantClient = None,
        collection_name: str = None
    ):
        self.collection_name = collection_name or settings.QDRANT_DOCUMENT_COLLECTION
        self._client = client

    def _get_client(self) -> AsyncQdrantClient:
        if self._client is None:
            self._client = build_async_client()
        return self._client

    async def close(self) -> None:
        """Close the Qdrant client if one was opened."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def ensure_collection(self) -> bool:
        """Create the document collection (no vectors) if missing."""
        client = self._get_client()
        try:
            await client.get_collection(self.collection_name)
            return True
        except Exception as e:
            logger.debug(f"Collection check failed (likely doesn't exist): {e}")

        await client.create_collection(collection_name=self.collection_name, vectors_config={})
        logger.info(f"Created collection {self.collection_name}")
        return True

    async def upsert_documents(self, documents: List[DocumentRecord]) -> int:
        """Store document records; returns the number written."""
        if not documents:
            return 0

        client = self._get_client()
        await client.upsert(
            collection_name=self.collection_name,
            points=[
                qdrant_models.PointStruct(
                    id=point_id_for(doc.tenant_id, doc.id),
                    vector={},
                    payload={"doc_id": doc.id, "tenant_id": doc.tenant_id, "name": doc.name}
                )
                for doc in documents
            ]
        )
        return len(documents)

    async def resolve_names(self, tenant_id: str, doc_ids: Sequence[str]) -> Dict[str, str]:
        """
        Look up display names for documents in one batched call.

        Args:
            tenant_id: Tenant that owns the documents
            doc_ids: Document identifiers

        Returns:
            Mapping of doc_id to name; unknown ids are absent
        """
        unique_ids = list(dict.fromkeys(doc_ids))
        if not unique_ids:
            return {}

        client = self._get_client()
        records = await client.retrieve(
            collection_name=self.collection_name,
            ids=[point_id_for(tenant_id, doc_id) for doc_id in unique_ids],
            with_payload=True,
            with_vectors=False
        )

        names = {}
        for record in records:
            payload = record.payload or {}
            if payload.get("tenant_id") != tenant_id:
                continue
            if payload.get("doc_id") and payload.get("name"):
                names[payload["doc_id"]] = payload["name"]
        return names

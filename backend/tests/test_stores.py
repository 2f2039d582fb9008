"""
Tests for Qdrant Chunk and Document Stores

The Qdrant client is mocked; tests check tenant filtering, vector and
payload handling, and BM25 scoring of lexical matches.
"""

import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock

from qdrant_client.http import models as qdrant_models

from docqa.models import ChunkRecord, DocumentRecord
from docqa.retrieval.chunk_store import DENSE_VECTOR_NAME, QdrantChunkStore, point_id_for
from docqa.retrieval.document_store import QdrantDocumentStore


def record(chunk_id, doc_id, text, vector=None, page=None, tenant_id="demo"):
    return SimpleNamespace(
        id=point_id_for(tenant_id, chunk_id),
        payload={
            "chunk_id": chunk_id,
            "tenant_id": tenant_id,
            "doc_id": doc_id,
            "text": text,
            "page": page,
            "has_embedding": vector is not None,
        },
        vector={DENSE_VECTOR_NAME: vector} if vector is not None else None,
    )


def field_keys(conditions):
    return [c.key for c in conditions]


class TestQdrantChunkStore:
    """Tests for the chunk store."""

    @pytest.fixture
    def client(self):
        return AsyncMock()

    @pytest.fixture
    def store(self, client):
        return QdrantChunkStore(client=client, collection_name="chunks", lexical_scan_limit=50)

    def test_point_id_is_stable_uuid(self):
        assert point_id_for("demo", "c1") == point_id_for("demo", "c1")
        assert point_id_for("demo", "c1") != point_id_for("demo", "c2")

    def test_point_id_is_per_tenant(self):
        assert point_id_for("acme", "c1") != point_id_for("globex", "c1")

    @pytest.mark.asyncio
    async def test_fetch_dense_candidates(self, store, client):
        client.scroll.return_value = (
            [record("c1", "d1", "alpha", vector=[0.1, 0.2], page=3), record("c2", "d2", "beta", vector=[0.3, 0.4])],
            None,
        )

        candidates = await store.fetch_dense_candidates("demo", limit=200)

        assert [c.id for c in candidates] == ["c1", "c2"]
        assert candidates[0].vector == [0.1, 0.2]
        assert candidates[0].page == 3
        assert candidates[1].page is None

        kwargs = client.scroll.call_args.kwargs
        assert kwargs["collection_name"] == "chunks"
        assert kwargs["limit"] == 200
        assert kwargs["with_vectors"] == [DENSE_VECTOR_NAME]
        must = kwargs["scroll_filter"].must
        assert field_keys(must) == ["tenant_id", "has_embedding"]
        assert must[0].match.value == "demo"

    @pytest.mark.asyncio
    async def test_fetch_dense_paginates_to_limit(self, store, client):
        client.scroll.side_effect = [
            ([record("c1", "d1", "a", vector=[1.0])], "next"),
            ([record("c2", "d1", "b", vector=[1.0])], None),
        ]

        candidates = await store.fetch_dense_candidates("demo", limit=2)

        assert [c.id for c in candidates] == ["c1", "c2"]
        assert client.scroll.await_count == 2
        assert client.scroll.call_args.kwargs["offset"] == "next"

    @pytest.mark.asyncio
    async def test_fetch_dense_skips_missing_vectors(self, store, client):
        client.scroll.return_value = ([record("c1", "d1", "a")], None)

        assert await store.fetch_dense_candidates("demo", limit=10) == []

    @pytest.mark.asyncio
    async def test_fetch_lexical_candidates(self, store, client):
        client.scroll.return_value = (
            [
                record("c1", "d1", "Office hours vary by region"),
                record("c2", "d2", "Support hours are nine to five, support by phone", page=1),
            ],
            None,
        )

        hits = await store.fetch_lexical_candidates("demo", "support hours", limit=20)

        assert [h.id for h in hits] == ["c2", "c1"]
        assert hits[0].relevance_score > hits[1].relevance_score
        assert hits[0].page == 1

        kwargs = client.scroll.call_args.kwargs
        assert kwargs["limit"] == 50
        assert kwargs["with_vectors"] is False
        scroll_filter = kwargs["scroll_filter"]
        assert field_keys(scroll_filter.must) == ["tenant_id"]
        assert [c.match.text for c in scroll_filter.should] == ["support", "hours"]

    @pytest.mark.asyncio
    async def test_fetch_lexical_respects_limit(self, store, client):
        client.scroll.return_value = ([record(f"c{i}", "d1", "hours") for i in range(5)], None)

        assert len(await store.fetch_lexical_candidates("demo", "hours", limit=3)) == 3

    @pytest.mark.asyncio
    async def test_fetch_lexical_stopwords_only(self, store, client):
        assert await store.fetch_lexical_candidates("demo", "the of", limit=5) == []
        client.scroll.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lexical_error_propagates(self, store, client):
        client.scroll.side_effect = ConnectionError("qdrant down")

        with pytest.raises(ConnectionError):
            await store.fetch_lexical_candidates("demo", "hours", limit=5)

    @pytest.mark.asyncio
    async def test_upsert_chunks(self, store, client):
        chunks = [
            ChunkRecord(id="c1", tenant_id="demo", doc_id="d1", text="a", embedding=[0.1]),
            ChunkRecord(id="c2", tenant_id="demo", doc_id="d1", text="b", page=2),
        ]

        assert await store.upsert_chunks(chunks) == 2

        points = client.upsert.call_args.kwargs["points"]
        assert points[0].vector == {DENSE_VECTOR_NAME: [0.1]}
        assert points[0].payload["has_embedding"] is True
        assert points[1].vector == {}
        assert points[1].payload["has_embedding"] is False
        assert points[1].payload["page"] == 2

    @pytest.mark.asyncio
    async def test_ensure_collection_creates_indexes(self, store, client):
        client.get_collection.side_effect = Exception("Not found")

        assert await store.ensure_collection(vector_size=8) is True

        vectors_config = client.create_collection.call_args.kwargs["vectors_config"]
        assert vectors_config[DENSE_VECTOR_NAME].size == 8
        assert vectors_config[DENSE_VECTOR_NAME].distance == qdrant_models.Distance.DOT
        indexed = [c.kwargs["field_name"] for c in client.create_payload_index.call_args_list]
        assert indexed == ["tenant_id", "doc_id", "has_embedding", "text"]

    @pytest.mark.asyncio
    async def test_ensure_collection_existing(self, store, client):
        assert await store.ensure_collection() is True
        client.create_collection.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close(self, store, client):
        await store.close()
        await store.close()

        client.close.assert_awaited_once()


class TestQdrantDocumentStore:
    """Tests for the document store."""

    @pytest.mark.asyncio
    async def test_resolve_names_batched(self):
        client = AsyncMock()
        client.retrieve.return_value = [
            SimpleNamespace(payload={"doc_id": "d1", "tenant_id": "demo", "name": "Handbook"}),
        ]
        store = QdrantDocumentStore(client=client, collection_name="docs")

        names = await store.resolve_names("demo", ["d1", "d2", "d1"])

        assert names == {"d1": "Handbook"}
        client.retrieve.assert_awaited_once()
        assert client.retrieve.call_args.kwargs["ids"] == [point_id_for("demo", "d1"), point_id_for("demo", "d2")]

    @pytest.mark.asyncio
    async def test_resolve_names_empty(self):
        client = AsyncMock()
        store = QdrantDocumentStore(client=client)

        assert await store.resolve_names("demo", []) == {}
        client.retrieve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_upsert_documents(self):
        client = AsyncMock()
        store = QdrantDocumentStore(client=client, collection_name="docs")

        count = await store.upsert_documents([DocumentRecord(id="d1", tenant_id="demo", name="Handbook")])

        assert count == 1
        point = client.upsert.call_args.kwargs["points"][0]
        assert point.id == point_id_for("demo", "d1")
        assert point.payload == {"doc_id": "d1", "tenant_id": "demo", "name": "Handbook"}

    @pytest.mark.asyncio
    async def test_resolve_names_ignores_other_tenants(self):
        client = AsyncMock()
        client.retrieve.return_value = [
            SimpleNamespace(payload={"doc_id": "d1", "tenant_id": "globex", "name": "Globex Handbook"}),
        ]
        store = QdrantDocumentStore(client=client, collection_name="docs")

        assert await store.resolve_names("acme", ["d1"]) == {}
        assert client.retrieve.call_args.kwargs["ids"] == [point_id_for("acme", "d1")]

    @pytest.mark.asyncio
    async def test_same_document_id_in_two_tenants_gets_two_points(self):
        client = AsyncMock()
        store = QdrantDocumentStore(client=client, collection_name="docs")

        await store.upsert_documents([
            DocumentRecord(id="d1", tenant_id="acme", name="Acme Handbook"),
            DocumentRecord(id="d1", tenant_id="globex", name="Globex Handbook"),
        ])

        points = client.upsert.call_args.kwargs["points"]
        assert points[0].id != points[1].id

    @pytest.mark.asyncio
    async def test_close(self):
        client = AsyncMock()
        store = QdrantDocumentStore(client=client)

        await store.close()

        client.close.assert_awaited_once()
        assert store._client is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

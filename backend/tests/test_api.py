"""
Tests for the HTTP surface

The searcher dependency is overridden with a mock so no store or provider
is contacted.
"""

import pytest
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient

from docqa.main import app, get_hybrid_searcher
from docqa.models import RetrievedItem
from docqa.retrieval.hybrid_search import RetrievalError


@pytest.fixture
def searcher():
    mock = AsyncMock()
    mock.retrieve.return_value = [
        RetrievedItem(
            id="c2", doc_id="d1", text="Support runs 9 to 5.", page=2,
            dense_score=0.8, bm25_score=5.0, fused_score=0.033, doc_name="Support Handbook",
        ),
        RetrievedItem(id="c7", doc_id="d4", text="Weekend coverage is limited.", fused_score=0.016),
    ]
    return mock


@pytest.fixture
def client(searcher):
    app.dependency_overrides[get_hybrid_searcher] = lambda: searcher
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestSearchEndpoint:
    """Tests for POST /search."""

    def test_search_returns_items(self, client, searcher):
        response = client.post("/search", json={"query": "support hours", "tenantId": "acme", "k": 3})

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["count"] == 2
        first = body["items"][0]
        assert first["id"] == "c2"
        assert first["docId"] == "d1"
        assert first["docName"] == "Support Handbook"
        assert first["bm25Score"] == 5.0
        assert first["fusedScore"] == 0.033
        searcher.retrieve.assert_awaited_once_with("acme", "support hours", k=3)

    def test_question_alias_and_default_tenant(self, client, searcher):
        response = client.post("/search", json={"question": "support hours"})

        assert response.status_code == 200
        searcher.retrieve.assert_awaited_once_with("demo", "support hours", k=6)

    def test_citations(self, client):
        response = client.post("/search", json={"query": "support hours", "citations": True})

        citations = response.json()["citations"]
        assert citations[0] == {"id": "c2", "name": "Support Handbook", "snippet": "Support runs 9 to 5.", "page": 2}
        assert citations[1]["name"] == "d4"

    def test_missing_query(self, client, searcher):
        response = client.post("/search", json={"query": "   "})

        assert response.status_code == 400
        assert response.json() == {"ok": False, "error": "Missing 'query' in JSON body"}
        searcher.retrieve.assert_not_awaited()

    def test_retrieval_failure(self, client, searcher):
        searcher.retrieve.side_effect = RetrievalError("embedding", ValueError("OPENAI_API_KEY is not configured"))

        response = client.post("/search", json={"query": "support hours"})

        assert response.status_code == 500
        body = response.json()
        assert body["ok"] is False
        assert "embedding" in body["error"]

    def test_invalid_k(self, client, searcher):
        searcher.retrieve.side_effect = ValueError("k must be at least 1, got 0")

        response = client.post("/search", json={"query": "support hours", "k": 0})

        assert response.status_code == 400


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestLifespan:
    def test_shutdown_closes_searcher(self):
        with patch("docqa.main.close_searcher", new_callable=AsyncMock) as close:
            with TestClient(app) as client:
                assert client.get("/health").status_code == 200
                close.assert_not_awaited()

        close.assert_awaited_once()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

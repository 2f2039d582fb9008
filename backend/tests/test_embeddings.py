"""
Tests for Embedding Service
"""

import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from docqa.retrieval.embeddings import EmbeddingService


class TestEmbeddingService:
    """Tests for embedding service."""

    @pytest.fixture
    def service(self):
        """Create service instance with mocked client."""
        with patch("docqa.retrieval.embeddings.AsyncOpenAI") as mock_openai:
            client = MagicMock()
            client.embeddings.create = AsyncMock(return_value=SimpleNamespace(
                data=[SimpleNamespace(embedding=[0.6, 0.8])]
            ))
            mock_openai.return_value = client
            service = EmbeddingService(model="text-embedding-3-small", api_key="test-key")
            service._get_client()
        return service

    def test_initialization(self, service):
        """Test service initializes correctly."""
        assert service.model == "text-embedding-3-small"
        assert service.dimension == 1536
        assert service.cache_enabled is True

    def test_unknown_model(self):
        with pytest.raises(ValueError):
            EmbeddingService(model="not-a-model", api_key="test-key")

    def test_get_cache_key(self, service):
        """Test cache key generation."""
        key1 = service._get_cache_key("test text")
        key2 = service._get_cache_key("test text")
        key3 = service._get_cache_key("different text")

        assert key1 == key2
        assert key1 != key3

    @pytest.mark.asyncio
    async def test_embed_query_uses_cache(self, service):
        first = await service.embed_query("support hours")
        second = await service.embed_query("support hours")

        assert first == [0.6, 0.8]
        assert second == first
        service._client.embeddings.create.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cache_stays_at_bound(self, service):
        """Test distinct queries never grow the cache past cache_size."""
        service.cache_size = 50

        for i in range(500):
            await service.embed_query(f"query {i}")

        assert len(service._cache) == 50
        assert service._check_cache("query 499") is not None
        assert service._check_cache("query 0") is None

    @pytest.mark.asyncio
    async def test_cache_evicts_least_recently_used(self, service):
        service.cache_size = 2

        await service.embed_query("first")
        await service.embed_query("second")
        await service.embed_query("first")
        await service.embed_query("third")

        assert service._check_cache("first") is not None
        assert service._check_cache("second") is None
        assert service._client.embeddings.create.await_count == 3

    def test_cache_size_defaults_to_settings(self, service):
        from docqa.config import settings

        assert service.cache_size == settings.EMBEDDING_CACHE_SIZE

    @pytest.mark.asyncio
    async def test_missing_key_raises(self):
        service = EmbeddingService(model="text-embedding-3-small", api_key="")

        with pytest.raises(ValueError, match="OPENAI_API_KEY"):
            await service.embed_query("support hours")

    @pytest.mark.asyncio
    async def test_embed_texts_empty(self, service):
        assert await service.embed_texts([]) == []

    def test_clear_cache(self, service):
        """Test cache clearing."""
        service._cache["key1"] = [0.1, 0.2]
        service._cache["key2"] = [0.3, 0.4]

        count = service.clear_cache()

        assert count == 2
        assert len(service._cache) == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

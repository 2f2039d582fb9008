"""
Embedding Service

Generates query embeddings using OpenAI's embedding models.
Handles batching, caching, and retry with backoff.

Supported models:
- text-embedding-3-small (1536 dims, recommended)
- text-embedding-3-large (3072 dims, higher quality)
- text-embedding-ada-002 (1536 dims, legacy)

OpenAI embeddings are unit length, so the dot product used by dense ranking
equals cosine similarity.

Usage:
    service = EmbeddingService()
    vector = await service.embed_query("support hours")
"""

import logging
from typing import List, Optional
import hashlib
from collections import OrderedDict
from tenacity import retry, stop_after_attempt, wait_exponential

from openai import AsyncOpenAI

from docqa.config import settings

logger = logging.getLogger(__name__)


class EmbeddingService:
    """
    Service for generating text embeddings via OpenAI API.

    Features:
    - Async batch processing
    - Automatic retry with exponential backoff
    - Optional bounded LRU cache keyed by model and text
    """

    # Model specifications
    MODEL_SPECS = {
        "text-embedding-3-small": {"dims": 1536, "max_tokens": 8191},
        "text-embedding-3-large": {"dims": 3072, "max_tokens": 8191},
        "text-embedding-ada-002": {"dims": 1536, "max_tokens": 8191}
    }

    # Batch size for API calls
    BATCH_SIZE = 100

    def __init__(
        self,
        model: str = None,
        api_key: str = None,
        cache_enabled: bool = True,
        cache_size: int = None
    ):
        """
        Initialize embedding service.

        Args:
            model: OpenAI embedding model name
            api_key: OpenAI API key (uses settings if not provided)
            cache_enabled: Enable embedding cache
            cache_size: Max cached embeddings; least recently used are evicted
        """
        self.model = model or settings.EMBEDDING_MODEL
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.cache_enabled = cache_enabled
        self.cache_size = cache_size if cache_size is not None else settings.EMBEDDING_CACHE_SIZE
        self._cache: OrderedDict = OrderedDict()
        self._client: Optional[AsyncOpenAI] = None

        if self.model not in self.MODEL_SPECS:
            raise ValueError(f"Unknown model: {self.model}")

        self.dimension = self.MODEL_SPECS[self.model]["dims"]

    def _get_client(self) -> AsyncOpenAI:
        """Get or create the OpenAI client; a missing key is a hard error."""
        if not self.api_key:
            raise ValueError("OPENAI_API_KEY is not configured; set it to enable query embeddings")
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def embed_text(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector as list of floats
        """
        embeddings = await self.embed_texts([text])
        return embeddings[0]

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, in input order
        """
        if not texts:
            return []

        embeddings: List[Optional[List[float]]] = [None] * len(texts)
        texts_to_embed = []
        indices_to_embed = []

        for i, text in enumerate(texts):
            cached = self._check_cache(text)
            if cached is not None:
                embeddings[i] = cached
            else:
                texts_to_embed.append(text)
                indices_to_embed.append(i)

        if texts_to_embed:
            logger.debug(f"Embedding {len(texts_to_embed)} texts (cache hit: {len(texts) - len(texts_to_embed)})")

            for i in range(0, len(texts_to_embed), self.BATCH_SIZE):
                batch = texts_to_embed[i:i + self.BATCH_SIZE]
                batch_indices = indices_to_embed[i:i + self.BATCH_SIZE]

                batch_embeddings = await self._embed_batch(batch)

                for j, (text, embedding) in enumerate(zip(batch, batch_embeddings)):
                    self._add_to_cache(text, embedding)
                    embeddings[batch_indices[j]] = embedding

        return embeddings

    async def embed_query(self, query: str) -> List[float]:
        """
        Generate embedding for a search query.

        Args:
            query: Search query text

        Returns:
            Query embedding vector
        """
        # For OpenAI models, query and document embeddings are the same
        return await self.embed_text(query)

    async def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed a batch of texts via API.

        Args:
            texts: Batch of texts (max BATCH_SIZE)

        Returns:
            List of embeddings
        """
        if len(texts) > self.BATCH_SIZE:
            raise ValueError(f"Batch size {len(texts)} exceeds maximum {self.BATCH_SIZE}")

        client = self._get_client()
        return await self._request_embeddings(client, texts)

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=2, max=10), reraise=True)
    async def _request_embeddings(self, client: AsyncOpenAI, texts: List[str]) -> List[List[float]]:
        try:
            response = await client.embeddings.create(
                model=self.model,
                input=texts,
                encoding_format="float"
            )
            return [item.embedding for item in response.data]

        except Exception as e:
            logger.error(f"Error embedding batch: {e}")
            raise

    def _get_cache_key(self, text: str) -> str:
        """
        Generate cache key for a text.

        Args:
            text: Text to hash

        Returns:
            Cache key string
        """
        return hashlib.md5(f"{self.model}:{text}".encode()).hexdigest()

    def _check_cache(self, text: str) -> Optional[List[float]]:
        if not self.cache_enabled:
            return None
        key = self._get_cache_key(text)
        embedding = self._cache.get(key)
        if embedding is not None:
            self._cache.move_to_end(key)
        return embedding

    def _add_to_cache(self, text: str, embedding: List[float]) -> None:
        if not self.cache_enabled or self.cache_size < 1:
            return
        key = self._get_cache_key(text)
        self._cache[key] = embedding
        self._cache.move_to_end(key)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    def clear_cache(self) -> int:
        """
        Clear the embedding cache.

        Returns:
            Number of entries cleared
        """
        count = len(self._cache)
        self._cache.clear()
        return count

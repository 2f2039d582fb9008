"""
Reranker Module

Cross-encoder reranking of the final candidate list. Cross-encoders see the
query and passage together, so they order the few surviving candidates more
precisely than the retrieval scores that produced them.

Providers:
- Jina (default): jina-reranker-v2-base-multilingual over HTTP
- Cohere: rerank-multilingual-v3.0 via the Cohere SDK

Provider responses differ in shape (results under `data` or `results`,
scores as `relevance_score` or `score`, sometimes without `index`).
normalize_rerank_rows folds them into RerankResult lists so callers never
see a wire format.

Rerankers raise on provider errors; the hybrid searcher decides to fall back.

Usage:
    reranker = build_reranker()
    if reranker:
        ranked = await reranker.rerank(query, texts, top_n=5)
"""

from typing import Any, List, Optional
import logging

import cohere
import httpx

from docqa.config import settings
from docqa.models import RerankResult

logger = logging.getLogger(__name__)


def _field(row: Any, name: str) -> Any:
    if isinstance(row, dict):
        return row.get(name)
    return getattr(row, name, None)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def normalize_rerank_rows(response: Any) -> List[RerankResult]:
    """
    Normalize a rerank response into results sorted by descending score.

    Accepts a mapping with a `data` or `results` list, an object with a
    `results` attribute, or a bare list. A row without a numeric index takes
    its position; a row without a numeric score scores 0.

    Args:
        response: Raw provider response

    Returns:
        RerankResult list, best first; empty when nothing usable was found
    """
    if isinstance(response, list):
        rows = response
    else:
        rows = _field(response, "data")
        if not isinstance(rows, list):
            rows = _field(response, "results")
        if not isinstance(rows, list):
            rows = []

    results = []
    for position, row in enumerate(rows):
        index = _field(row, "index")
        relevance = _field(row, "relevance_score")
        if not _is_number(relevance):
            relevance = _field(row, "score")
        results.append(RerankResult(
            index=index if isinstance(index, int) and not isinstance(index, bool) else position,
            score=float(relevance) if _is_number(relevance) else 0.0,
        ))

    results.sort(key=lambda r: r.score, reverse=True)
    return results


class JinaReranker:
    """
    Jina HTTP reranker.

    The endpoint rejects unknown fields with 422, so top_n is never sent;
    the result list is trimmed client-side.
    """

    def __init__(
        self,
        api_key: str = None,
        model: str = None,
        url: str = None,
        timeout: float = None,
        client: httpx.AsyncClient = None
    ):
        self.api_key = api_key if api_key is not None else settings.JINA_API_KEY
        self.model = model or settings.JINA_RERANK_MODEL
        self.url = url or settings.JINA_RERANK_URL
        self.timeout = timeout or settings.RERANK_TIMEOUT_SECONDS
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    async def rerank(
        self,
        query: str,
        texts: List[str],
        top_n: int
    ) -> Optional[List[RerankResult]]:
        """
        Rerank texts against the query.

        Returns:
            Up to min(top_n, len(texts)) results best first, or None when the
            reranker is unconfigured or returned nothing
        """
        if not self.api_key or not texts:
            return None

        logger.info(f"Reranking {len(texts)} passages with {self.model}")

        response = await self._get_client().post(
            self.url,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            json={"model": self.model, "query": query, "documents": texts},
        )
        if response.status_code >= 400:
            raise RuntimeError(f"Jina rerank {response.status_code}: {response.text}")

        ranked = normalize_rerank_rows(response.json())
        if not ranked:
            return None
        return ranked[:min(top_n, len(texts))]

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class CohereReranker:
    """Cohere SDK reranker."""

    def __init__(
        self,
        api_key: str = None,
        model: str = None,
        client: cohere.AsyncClient = None
    ):
        self.api_key = api_key if api_key is not None else settings.COHERE_API_KEY
        self.model = model or settings.COHERE_RERANK_MODEL
        self.client = client or (cohere.AsyncClient(api_key=self.api_key) if self.api_key else None)

    async def rerank(
        self,
        query: str,
        texts: List[str],
        top_n: int
    ) -> Optional[List[RerankResult]]:
        if not self.client or not texts:
            return None

        logger.info(f"Reranking {len(texts)} passages with {self.model}")

        top_n = min(top_n, len(texts))
        response = await self.client.rerank(
            model=self.model,
            query=query,
            documents=texts,
            top_n=top_n
        )

        ranked = normalize_rerank_rows(response)
        return ranked[:top_n] or None

    def is_available(self) -> bool:
        return self.client is not None


def build_reranker(provider: str = None):
    """
    Build the configured reranker.

    Args:
        provider: "jina", "cohere" or "none" (defaults to settings.RERANK_PROVIDER)

    Returns:
        A reranker, or None when disabled or its API key is missing
    """
    provider = (provider or settings.RERANK_PROVIDER).lower()

    if provider == "jina":
        reranker = JinaReranker()
    elif provider == "cohere":
        reranker = CohereReranker()
    elif provider == "none":
        return None
    else:
        raise ValueError(f"Unknown rerank provider: {provider}")

    if not reranker.is_available():
        logger.warning(f"{provider} API key not configured, reranking disabled")
        return None
    return reranker

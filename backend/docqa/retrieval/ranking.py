"""
Ranking and Fusion

Pure, in-memory stages of hybrid retrieval:

1. Dense ranking: dot-product similarity, top DENSE_TOP_N kept
2. Lexical ranking: native relevance score order
3. Reciprocal Rank Fusion: each path contributes 1 / (RRF_K + rank)
4. Diversification by document
5. Hard per-document cap
6. Applying a reranker permutation

RRF is used instead of score blending because cosine similarity and lexical
relevance scores live on unrelated scales; ranks are comparable, raw scores
are not.

Usage:
    dense = rank_dense(query_vector, dense_candidates)
    lexical = rank_lexical(lexical_candidates)
    fused = fuse(dense, lexical)
    items = cap_per_document(diversify(fused, k), k, max_per_doc=1)
"""

from collections import Counter
from functools import reduce
from itertools import chain
from typing import Dict, Iterable, List, Optional, Sequence
import logging

import numpy as np

from docqa.models import DenseCandidate, LexicalCandidate, RerankResult, RetrievedItem

logger = logging.getLogger(__name__)

# RRF constant (typically 60)
RRF_K = 60

# Dense candidates kept after similarity sort, independent of the pool size
DENSE_TOP_N = 12


def rrf_score(rank: int, rrf_k: int = RRF_K) -> float:
    """
    Partial Reciprocal Rank Fusion score for a 0-based rank.

    Args:
        rank: Position in a single path's ordering, starting at 0
        rrf_k: Smoothing constant

    Returns:
        1 / (rrf_k + rank)
    """
    return 1.0 / (rrf_k + rank)


def rank_dense(
    query_vector: Sequence[float],
    candidates: Iterable[DenseCandidate],
    top_n: int = DENSE_TOP_N
) -> List[RetrievedItem]:
    """
    Score dense candidates by raw dot product and keep the best top_n.

    Vectors are not normalized here; stored and query vectors must already
    be unit length for the score to equal cosine similarity.

    Args:
        query_vector: Query embedding
        candidates: Passages carrying stored vectors
        top_n: Number of candidates to keep

    Returns:
        RetrievedItems with dense_score and their partial RRF fused_score
    """
    query = np.asarray(query_vector, dtype=float)

    scored = []
    for candidate in candidates:
        vector = np.asarray(candidate.vector, dtype=float)
        if vector.shape != query.shape:
            logger.warning(
                f"Skipping chunk {candidate.id}: vector dim {vector.shape[0]} != query dim {query.shape[0]}"
            )
            continue
        scored.append((float(np.dot(query, vector)), candidate))

    scored.sort(key=lambda pair: pair[0], reverse=True)

    return [
        RetrievedItem(
            id=candidate.id,
            doc_id=candidate.doc_id,
            text=candidate.text,
            page=candidate.page,
            dense_score=score,
            fused_score=rrf_score(rank),
        )
        for rank, (score, candidate) in enumerate(scored[:top_n])
    ]


def rank_lexical(candidates: Iterable[LexicalCandidate]) -> List[RetrievedItem]:
    """
    Order lexical hits by relevance score and assign partial RRF scores.

    The sort is stable, so a store that already returns hits in relevance
    order keeps its order among equal scores.
    """
    ordered = sorted(candidates, key=lambda c: c.relevance_score, reverse=True)

    return [
        RetrievedItem(
            id=candidate.id,
            doc_id=candidate.doc_id,
            text=candidate.text,
            page=candidate.page,
            bm25_score=candidate.relevance_score,
            fused_score=rrf_score(rank),
        )
        for rank, candidate in enumerate(ordered)
    ]


def merge_items(previous: RetrievedItem, incoming: RetrievedItem) -> RetrievedItem:
    """
    Combine two partial records for the same passage.

    fused_score is summed. page keeps the first non-null value; each path
    score is filled in only where it was missing. Nothing is averaged.
    """
    return previous.model_copy(update={
        "page": previous.page if previous.page is not None else incoming.page,
        "dense_score": previous.dense_score if previous.dense_score is not None else incoming.dense_score,
        "bm25_score": previous.bm25_score if previous.bm25_score is not None else incoming.bm25_score,
        "fused_score": previous.fused_score + incoming.fused_score,
    })


def accumulate(
    table: Dict[str, RetrievedItem],
    item: RetrievedItem
) -> Dict[str, RetrievedItem]:
    """Fold step: insert item into the table keyed by id, merging on collision."""
    previous = table.get(item.id)
    merged = item if previous is None else merge_items(previous, item)
    return {**table, item.id: merged}


def fuse(
    dense_ranked: Sequence[RetrievedItem],
    lexical_ranked: Sequence[RetrievedItem]
) -> List[RetrievedItem]:
    """
    Fuse both ranked lists with Reciprocal Rank Fusion.

    RRF score = Σ 1 / (k + rank)

    Args:
        dense_ranked: Output of rank_dense
        lexical_ranked: Output of rank_lexical

    Returns:
        Unique items sorted by fused_score descending; ties keep first-seen order
    """
    table = reduce(accumulate, chain(dense_ranked, lexical_ranked), {})
    return sorted(table.values(), key=lambda item: item.fused_score, reverse=True)


def diversify(fused: Sequence[RetrievedItem], k: int) -> List[RetrievedItem]:
    """
    Spread the top k slots across documents.

    The first half of the slots (at least one) are filled in fused order even
    if documents repeat; after that a passage is admitted only if its
    document is new. When that leaves slots empty, the remaining passages are
    appended in fused order.

    Args:
        fused: Items in fused order
        k: Target result count

    Returns:
        At most k items
    """
    half = max(1, k // 2)
    seen_docs = set()
    diversified: List[RetrievedItem] = []

    for item in fused:
        if len(diversified) >= k:
            break
        if item.doc_id not in seen_docs or len(diversified) < half:
            diversified.append(item)
            seen_docs.add(item.doc_id)

    if len(diversified) < k:
        included = {item.id for item in diversified}
        for item in fused:
            if len(diversified) >= k:
                break
            if item.id not in included:
                diversified.append(item)
                included.add(item.id)

    return diversified


def cap_per_document(
    items: Sequence[RetrievedItem],
    k: int,
    max_per_doc: int = 1
) -> List[RetrievedItem]:
    """
    Keep at most max_per_doc passages from each document, in order.

    This is a hard cap: the result is shorter than k when too few distinct
    documents are available.

    Args:
        items: Diversified items
        k: Maximum number of items to keep
        max_per_doc: Passages allowed per document, clamped to at least 1

    Returns:
        Capped items
    """
    cap = max(1, max_per_doc)
    per_doc: Counter = Counter()
    capped: List[RetrievedItem] = []

    for item in items:
        if len(capped) >= k:
            break
        if per_doc[item.doc_id] < cap:
            capped.append(item)
            per_doc[item.doc_id] += 1

    return capped


def apply_rerank_order(
    items: Sequence[RetrievedItem],
    ranked: Sequence[RerankResult],
    top_n: Optional[int] = None
) -> List[RetrievedItem]:
    """
    Reorder items by a reranker permutation.

    Items keep all their fields. The response must name min(top_n, len(items))
    distinct positions; anything else is treated as malformed so the caller
    can keep its previous order.

    Raises:
        ValueError: If an index does not address an item, repeats, or too
            few positions are returned
    """
    expected = len(items) if top_n is None else min(top_n, len(items))
    reordered: List[RetrievedItem] = []
    used = set()

    for result in ranked:
        if not 0 <= result.index < len(items):
            raise ValueError(f"Rerank index {result.index} out of range for {len(items)} items")
        if result.index in used:
            raise ValueError(f"Rerank index {result.index} returned more than once")
        used.add(result.index)
        reordered.append(items[result.index])

    if len(reordered) < expected:
        raise ValueError(f"Reranker returned {len(reordered)} positions, expected {expected}")

    return reordered

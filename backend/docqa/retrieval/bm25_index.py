"""
BM25 Sparse Index

Implements BM25 (Best Matching 25) for keyword-based scoring of passages.
The chunk store narrows a tenant's passages to those sharing a term with the
query; this index turns that set into relevance-scored lexical candidates.

BM25 excels at:
- Exact product and policy names
- Rare words not well-represented in embeddings
- Short keyword queries

Usage:
    index = BM25Index()
    index.build_index(chunks)
    hits = index.search("support hours", top_k=20)
"""

import math
import logging
from typing import List, Dict, Any
from collections import Counter, defaultdict
import re

from docqa.models import ChunkRecord, LexicalCandidate

logger = logging.getLogger(__name__)


class BM25Index:
    """
    BM25 sparse retrieval index.

    Parameters:
    - k1: Term frequency saturation (default 1.5)
    - b: Length normalization (default 0.75)
    """

    # BM25 parameters
    DEFAULT_K1 = 1.5
    DEFAULT_B = 0.75

    STOPWORDS = {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
        "be", "have", "has", "had", "do", "does", "did", "will", "would",
        "could", "should", "may", "might", "must", "shall", "can", "this",
        "that", "these", "those", "it", "its", "we", "our", "they", "their",
        "what", "which", "who", "how", "when", "where"
    }

    TOKEN_PATTERN = re.compile(r"\b\w+(?:[.-]\w+)*\b")

    def __init__(
        self,
        k1: float = DEFAULT_K1,
        b: float = DEFAULT_B
    ):
        """
        Initialize BM25 index.

        Args:
            k1: Term frequency saturation parameter
            b: Length normalization parameter
        """
        self.k1 = k1
        self.b = b

        # Index structures
        self._documents: Dict[str, ChunkRecord] = {}  # chunk_id -> chunk
        self._doc_lengths: Dict[str, int] = {}  # chunk_id -> token count
        self._avg_doc_length: float = 0.0
        self._doc_freqs: Dict[str, int] = {}  # term -> document frequency
        self._inverted_index: Dict[str, Dict[str, int]] = {}  # term -> {chunk_id -> term_freq}
        self._total_docs: int = 0

    def build_index(self, chunks: List[ChunkRecord]) -> None:
        """
        Build BM25 index from passages, replacing any previous content.

        Args:
            chunks: Passages to index
        """
        self._documents = {}
        self._doc_lengths = {}
        self._inverted_index = defaultdict(lambda: defaultdict(int))
        self._doc_freqs = defaultdict(int)

        total_length = 0

        for chunk in chunks:
            self._documents[chunk.id] = chunk

            tokens = self.tokenize(chunk.text)
            self._doc_lengths[chunk.id] = len(tokens)
            total_length += len(tokens)

            for term, count in Counter(tokens).items():
                self._inverted_index[term][chunk.id] = count

            for term in set(tokens):
                self._doc_freqs[term] += 1

        self._total_docs = len(self._documents)
        self._avg_doc_length = total_length / self._total_docs if self._total_docs > 0 else 0

        logger.debug(f"BM25 index built: {self._total_docs} passages, {len(self._doc_freqs)} unique terms")

    def search(self, query: str, top_k: int = 20) -> List[LexicalCandidate]:
        """
        Search index using BM25 scoring.

        Args:
            query: Search query
            top_k: Number of results to return

        Returns:
            Lexical candidates with BM25 scores, best first
        """
        query_terms = self.tokenize(query)

        if not query_terms or self._total_docs == 0:
            return []

        scores = {}
        for chunk_id in self._documents:
            score = self._score_document(query_terms, chunk_id)
            if score > 0:
                scores[chunk_id] = score

        sorted_results = sorted(scores.items(), key=lambda x: x[1], reverse=True)[:top_k]

        return [
            LexicalCandidate(
                id=chunk_id,
                doc_id=self._documents[chunk_id].doc_id,
                text=self._documents[chunk_id].text,
                page=self._documents[chunk_id].page,
                relevance_score=score,
            )
            for chunk_id, score in sorted_results
        ]

    def _score_document(
        self,
        query_terms: List[str],
        chunk_id: str
    ) -> float:
        """
        Calculate BM25 score for a passage.

        BM25 formula:
        score = Σ IDF(qi) * (f(qi, D) * (k1 + 1)) / (f(qi, D) + k1 * (1 - b + b * |D|/avgdl))
        """
        score = 0.0
        doc_length = self._doc_lengths.get(chunk_id, 0)

        for term in query_terms:
            if term not in self._inverted_index:
                continue

            tf = self._inverted_index[term].get(chunk_id, 0)
            if tf == 0:
                continue

            df = self._doc_freqs.get(term, 0)
            idf = math.log((self._total_docs - df + 0.5) / (df + 0.5) + 1)

            numerator = tf * (self.k1 + 1)
            denominator = tf + self.k1 * (1 - self.b + self.b * doc_length / self._avg_doc_length)

            score += idf * (numerator / denominator)

        return score

    def tokenize(self, text: str) -> List[str]:
        """
        Tokenize text: lowercase, split on non-word characters, drop stopwords.

        Dotted and hyphenated terms ("v2.1", "follow-up") stay whole.
        """
        tokens = self.TOKEN_PATTERN.findall(text.lower())
        return [t for t in tokens if t not in self.STOPWORDS]

    def get_stats(self) -> Dict[str, Any]:
        """
        Get index statistics.

        Returns:
            Index statistics dictionary
        """
        return {
            "total_documents": self._total_docs,
            "vocabulary_size": len(self._doc_freqs),
            "avg_document_length": self._avg_doc_length,
            "k1": self.k1,
            "b": self.b
        }

"""
docqa - multi-tenant passage retrieval for question answering.

Dense and lexical candidates are fused with Reciprocal Rank Fusion,
diversified across documents and optionally reranked.
"""

__version__ = "0.1.0"

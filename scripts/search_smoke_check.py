#!/usr/bin/env python3
"""
Hybrid Retrieval Smoke Check

Runs queries through the full pipeline against the configured Qdrant
collections:
- Dense candidates scored against OpenAI query embeddings
- Lexical candidates scored with BM25
- RRF fusion (k=60), document diversification and per-document cap
- Reranking when a Jina or Cohere key is configured

With --seed, a small demo tenant is written first so the check works on an
empty instance.
"""

import sys
import json
import asyncio
import argparse
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from docqa.config import settings
from docqa.models import ChunkRecord, DocumentRecord
from docqa.retrieval.chunk_store import QdrantChunkStore
from docqa.retrieval.document_store import QdrantDocumentStore
from docqa.retrieval.embeddings import EmbeddingService
from docqa.retrieval.hybrid_search import HybridSearcher
from docqa.retrieval.reranker import build_reranker


DEMO_DOCUMENTS = [
    {"id": "handbook", "name": "Customer Support Handbook"},
    {"id": "pricing", "name": "Pricing and Plans"},
    {"id": "onboarding", "name": "Onboarding Guide"},
]

DEMO_PASSAGES = [
    ("handbook", 1, "Support hours are 9am to 6pm, Monday to Friday. Urgent tickets are answered on weekends."),
    ("handbook", 2, "Email support replies within one business day. Phone support is available on Pro plans."),
    ("pricing", 1, "The Pro plan includes phone support, priority tickets and a 99.9% uptime commitment."),
    ("pricing", 2, "Annual billing gives two months free. Plans can be cancelled at any time."),
    ("onboarding", 1, "New workspaces get a guided setup call with the support team during business hours."),
]

DEFAULT_QUERIES = [
    "support hours",
    "does the pro plan include phone support",
    "how do I cancel my plan",
]


async def seed(tenant_id: str, embedder: EmbeddingService) -> None:
    chunk_store = QdrantChunkStore()
    document_store = QdrantDocumentStore()
    await chunk_store.ensure_collection(vector_size=embedder.dimension)
    await document_store.ensure_collection()

    texts = [text for _, _, text in DEMO_PASSAGES]
    vectors = await embedder.embed_texts(texts)

    chunks = [
        ChunkRecord(
            id=f"{tenant_id}:{doc_id}:{page}",
            tenant_id=tenant_id,
            doc_id=doc_id,
            text=text,
            page=page,
            embedding=vector,
        )
        for (doc_id, page, text), vector in zip(DEMO_PASSAGES, vectors)
    ]
    await chunk_store.upsert_chunks(chunks)
    await document_store.upsert_documents([
        DocumentRecord(id=doc["id"], tenant_id=tenant_id, name=doc["name"])
        for doc in DEMO_DOCUMENTS
    ])
    print(f"Seeded {len(chunks)} passages for tenant {tenant_id}")


async def run(args) -> int:
    embedder = EmbeddingService()

    if args.seed:
        await seed(args.tenant, embedder)

    searcher = HybridSearcher(
        chunk_store=QdrantChunkStore(),
        document_store=QdrantDocumentStore(),
        embedding_service=embedder,
        reranker=build_reranker(),
    )

    for query in args.query or DEFAULT_QUERIES:
        items = await searcher.retrieve(args.tenant, query, k=args.k, max_per_doc=args.max_per_doc)
        print(json.dumps({
            "query": query,
            "count": len(items),
            "items": [
                {
                    "id": item.id,
                    "doc": item.doc_name or item.doc_id,
                    "page": item.page,
                    "fused": round(item.fused_score, 5),
                    "dense": item.dense_score,
                    "bm25": item.bm25_score,
                }
                for item in items
            ],
        }, indent=2))

    await searcher.close()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Smoke-check hybrid retrieval against Qdrant.")
    parser.add_argument("--tenant", default=settings.DEFAULT_TENANT, help="Tenant to search")
    parser.add_argument("--query", action="append", help="Query to run (repeatable)")
    parser.add_argument("--k", type=int, default=settings.RETRIEVAL_TOP_K, help="Results per query")
    parser.add_argument("--max-per-doc", type=int, default=settings.RETRIEVAL_MAX_PER_DOC)
    parser.add_argument("--seed", action="store_true", help="Write the demo tenant before searching")
    args = parser.parse_args()

    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())

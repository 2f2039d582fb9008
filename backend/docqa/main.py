"""
FastAPI Application Entry Point

Exposes the hybrid retrieval engine over HTTP:
- GET /health: liveness check
- POST /search: tenant-scoped passage retrieval

Usage:
    uvicorn docqa.main:app --reload --port 8010
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Optional
import logging
import time

from docqa.config import settings
from docqa.retrieval.hybrid_search import HybridSearcher, close_searcher, get_searcher

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


class SearchRequest(BaseModel):
    query: Optional[str] = None
    question: Optional[str] = None
    tenantId: Optional[str] = None
    k: int = 6
    citations: bool = False


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    """
    logger.info(f"{settings.APP_NAME} starting up ({settings.APP_ENV})")
    yield
    logger.info(f"{settings.APP_NAME} shutting down")
    await close_searcher()


app = FastAPI(
    title="docqa API",
    description="Hybrid passage retrieval over multi-tenant document collections",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_hybrid_searcher() -> HybridSearcher:
    return get_searcher()


@app.get("/health", tags=["Health"])
async def health():
    """Simple liveness endpoint."""
    return {"status": "ok", "timestamp": time.time()}


@app.post("/search", tags=["Search"])
async def search(
    request: SearchRequest,
    searcher: HybridSearcher = Depends(get_hybrid_searcher)
):
    """
    Retrieve passages for a query.

    `question` is accepted in place of `query`; the tenant defaults to
    DEFAULT_TENANT.
    """
    query = (request.query or request.question or "").strip()
    tenant_id = request.tenantId or settings.DEFAULT_TENANT

    if not query:
        return JSONResponse(
            status_code=400,
            content={"ok": False, "error": "Missing 'query' in JSON body"}
        )

    try:
        items = await searcher.retrieve(tenant_id, query, k=request.k)
    except ValueError as e:
        return JSONResponse(status_code=400, content={"ok": False, "error": str(e)})
    except Exception as e:
        logger.error(f"Search failed for tenant {tenant_id}: {e}")
        return JSONResponse(status_code=500, content={"ok": False, "error": str(e)})

    body = {
        "ok": True,
        "count": len(items),
        "items": [item.model_dump(by_alias=True) for item in items],
    }
    if request.citations:
        body["citations"] = [item.to_citation().model_dump() for item in items]
    return body


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("docqa.main:app", host=settings.APP_HOST, port=settings.APP_PORT)

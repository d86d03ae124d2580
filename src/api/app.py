from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.search import SearchService
from .routers.search import router as search_router


# Configure logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One Milvus client for the whole process, shared by every request
    service = SearchService.create()
    app.state.search_service = service
    logger.info("Search service ready (collection=%s)", service.config.collection_name)
    try:
        yield
    finally:
        app.state.search_service = None
        service.close()
        logger.info("Search service closed")


# Optional base path for deployments under a subpath behind a reverse proxy.
_env_base_path = os.getenv("API_BASE_PATH", "").strip().rstrip("/")
if _env_base_path and not _env_base_path.startswith("/"):
    _env_base_path = "/" + _env_base_path

app = FastAPI(
    title="Multi-query vector search",
    lifespan=lifespan,
    root_path=_env_base_path,
)


# CORS: allow browser apps hosted on other origins to call this API.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Mount routers
app.include_router(search_router)


@app.get("/health", tags=["ops"], summary="Health check")
async def health():
    return {"status": "ok"}


def run() -> None:  # pragma: no cover
    import uvicorn

    uvicorn.run(
        "src.api.app:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
    )

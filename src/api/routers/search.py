from __future__ import annotations

import json
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, field_validator

from src.search import (
    InvalidQueryError,
    SearchBackendError,
    SearchService,
    StreamedItem,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["search"])

NDJSON_MEDIA_TYPE = "application/x-ndjson"


class SearchOptions(BaseModel):
    top_k: Optional[int] = Field(
        None,
        ge=1,
        description="Number of results to return per query; defaults to the configured limit.",
    )


class QuerySearchRequest(BaseModel):
    query: str = Field(..., min_length=1, description="Natural-language search query.")
    options: SearchOptions = Field(
        default_factory=SearchOptions, description="Search options."
    )

    @field_validator("query")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must not be blank")
        return value.strip()


class MultiQuerySearchRequest(BaseModel):
    queries: List[str] = Field(
        ...,
        min_length=1,
        description="Natural-language queries; each one is searched independently.",
    )
    options: SearchOptions = Field(
        default_factory=SearchOptions, description="Search options (applied to every query)."
    )

    @field_validator("queries")
    @classmethod
    def _drop_blank(cls, value: List[str]) -> List[str]:
        cleaned = [q.strip() for q in value if q and q.strip()]
        if not cleaned:
            raise ValueError("at least one non-blank query is required")
        return cleaned


class SearchResultItem(BaseModel):
    id: str = Field(..., description="Primary key of the matched asset in the vectorstore.")
    label: str = Field("", description="Asset label.")
    image: Optional[str] = Field(None, description="Base64-encoded asset image.")
    distance: Optional[float] = Field(None, description="Backend similarity score.")
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Metadata stored alongside the vector.",
    )

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_or_empty(cls, value: Any) -> Any:
        return value or {}


class MultiSearchResultItem(SearchResultItem):
    query_index: int = Field(..., description="Position of the originating query in the request.")
    query: str = Field(..., description="The originating query.")
    rank: int = Field(..., description="1-based position within that query's results.")


class QueryFailure(BaseModel):
    query_index: int
    query: str
    error_type: str = Field(..., description="backend_unavailable, backend_timeout or malformed_response.")
    message: str


class MultiSearchResponse(BaseModel):
    success: bool = Field(..., description="True when every query succeeded.")
    results: List[MultiSearchResultItem] = Field(default_factory=list)
    failures: List[QueryFailure] = Field(default_factory=list)


def get_search_service(request: Request) -> SearchService:
    service = getattr(request.app.state, "search_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Search service is not initialised")
    return service


@router.post(
    "",
    summary="Semantic search by query",
    response_model=List[SearchResultItem],
)
async def search_by_query(
    request: QuerySearchRequest,
    service: SearchService = Depends(get_search_service),
) -> List[SearchResultItem]:
    """Search by a single natural-language query."""
    try:
        candidates = await service.search_by_query(request.query, top_k=request.options.top_k)
    except InvalidQueryError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except SearchBackendError as exc:
        raise HTTPException(
            status_code=502, detail=f"Search failed ({exc.error_type}): {exc}"
        ) from exc

    return [
        SearchResultItem(
            id=c.id,
            label=c.label,
            image=c.image,
            distance=c.distance,
            metadata=c.metadata or {},
        )
        for c in candidates
    ]


@router.post(
    "/batch",
    summary="Semantic search for many queries, returned together",
    response_model=MultiSearchResponse,
)
async def search_batch(
    request: MultiQuerySearchRequest,
    service: SearchService = Depends(get_search_service),
) -> MultiSearchResponse:
    """Run every query concurrently and return once all have finished.

    Failed queries do not fail the request: they are listed under
    ``failures`` and ``success`` is false.
    """
    try:
        result = await service.search_many(request.queries, top_k=request.options.top_k)
    except InvalidQueryError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return MultiSearchResponse.model_validate(result.to_payload())


async def _ndjson_lines(items: AsyncIterator[StreamedItem]) -> AsyncIterator[str]:
    sent = 0
    async with aclosing(items):
        async for item in items:
            sent += 1
            logger.debug(
                "Sending item %d (query #%d, %s)",
                sent,
                item.query_index,
                "error" if item.is_error else f"rank {item.rank}",
            )
            yield json.dumps(item.to_record(), ensure_ascii=False) + "\n"
    logger.info("Stream complete: %d items sent", sent)


@router.post(
    "/stream",
    summary="Semantic search for many queries, streamed as each finishes",
    response_class=StreamingResponse,
)
async def search_stream(
    request: MultiQuerySearchRequest,
    service: SearchService = Depends(get_search_service),
) -> StreamingResponse:
    """Stream newline-delimited JSON records in completion order.

    Each line is one self-contained object, either
    ``{"type": "candidate", ...}`` or, for a failed query,
    ``{"type": "error", ...}``. Disconnecting cancels the queries still in
    flight.
    """
    try:
        items = service.stream_many(request.queries, top_k=request.options.top_k)
    except InvalidQueryError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return StreamingResponse(
        _ndjson_lines(items),
        media_type=NDJSON_MEDIA_TYPE,
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )

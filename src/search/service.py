from __future__ import annotations

import logging
import os
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple

from src.utils.config import env_float, env_int, get_config
from src.vectorstore.schemas import Candidate

from .aggregator import AggregateResult, StreamedItem, collect_all, stream_items
from .backend import SearchBackend
from .dispatcher import QueryDispatcher
from .errors import InvalidQueryError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchServiceConfig:
    collection_name: str = "assets"
    anns_field: str = "embedding"
    output_fields: Tuple[str, ...] = ("id", "label", "image", "metadata")
    default_limit: int = 10
    max_limit: int = 100
    # 0 = no cap (one concurrent call per query)
    max_concurrency: int = 16
    # Per backend call; 0 = no deadline
    timeout_seconds: float = 10.0

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]] = None) -> "SearchServiceConfig":
        """Build from the ``search`` section of config.yaml plus env overrides."""
        section = dict((cfg if cfg is not None else get_config()).get("search") or {})
        defaults = cls()
        output_fields = section.get("output_fields") or defaults.output_fields
        return cls(
            collection_name=_env_str("MILVUS_COLLECTION")
            or section.get("collection_name", defaults.collection_name),
            anns_field=section.get("anns_field", defaults.anns_field),
            output_fields=tuple(output_fields),
            default_limit=env_int(
                "SEARCH_DEFAULT_LIMIT", section.get("default_limit", defaults.default_limit)
            ),
            max_limit=section.get("max_limit", defaults.max_limit),
            max_concurrency=env_int(
                "SEARCH_MAX_CONCURRENCY",
                section.get("max_concurrency", defaults.max_concurrency),
            ),
            timeout_seconds=env_float(
                "SEARCH_TIMEOUT_SECONDS",
                section.get("timeout_seconds", defaults.timeout_seconds),
            ),
        )


def _env_str(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


class SearchService:
    """Application-layer search service.

    Implements:
      1) Search by one query text
      2) Search by many query texts at once, either collected into a single
         result (batch) or delivered query by query as each finishes (stream)

    Every query becomes an independent backend call; a failed query is
    reported next to the others' results and never aborts the request.
    """

    def __init__(
        self,
        backend: SearchBackend,
        config: SearchServiceConfig | None = None,
        *,
        on_close: Optional[Callable[[], None]] = None,
    ):
        self.config = config or SearchServiceConfig()
        self.backend = backend
        self.dispatcher = QueryDispatcher(
            backend,
            max_concurrency=self.config.max_concurrency,
            timeout=self.config.timeout_seconds,
        )
        self._on_close = on_close

    @classmethod
    def create(cls, config: SearchServiceConfig | None = None) -> "SearchService":
        """Wire the Milvus-backed retriever: one shared client for the process."""
        # Imported here: the vectorstore layer depends on src.search.errors
        from src.vectorstore.data_store import DataVectorStore
        from src.vectorstore.embeddings import Embedder
        from src.vectorstore.retriever import Retriever

        config = config or SearchServiceConfig.from_config()
        store = DataVectorStore(
            collection=config.collection_name,
            anns_field=config.anns_field,
            output_fields=config.output_fields,
        )
        try:
            store.ensure_ready()
        except Exception:
            store.close()
            raise
        retriever = Retriever(
            store=store,
            embedder=Embedder(),
            # Bounds the worker-thread gRPC call too; cancelling the task cannot stop it
            call_timeout=config.timeout_seconds or None,
        )
        return cls(retriever, config, on_close=store.close)

    def close(self) -> None:
        if self._on_close is not None:
            self._on_close()
            self._on_close = None

    def validate_queries(self, queries: Sequence[str]) -> List[str]:
        """Strip each query and drop blank ones; reject if nothing is left."""
        if isinstance(queries, str):
            raise InvalidQueryError("queries must be a list of strings, not a single string")
        cleaned = [q.strip() for q in queries if isinstance(q, str) and q.strip()]
        if not cleaned:
            raise InvalidQueryError("at least one non-blank query is required")
        return cleaned

    def validate_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.config.default_limit
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise InvalidQueryError(f"limit must be an integer, got {limit!r}")
        if not 1 <= limit <= self.config.max_limit:
            raise InvalidQueryError(f"limit must be between 1 and {self.config.max_limit}")
        return limit

    async def search_many(
        self, queries: Sequence[str], *, top_k: Optional[int] = None
    ) -> AggregateResult:
        """Run all queries concurrently and return once every one has finished."""
        cleaned = self.validate_queries(queries)
        limit = self.validate_limit(top_k)
        return await collect_all(self.dispatcher.dispatch(cleaned, limit))

    def stream_many(
        self, queries: Sequence[str], *, top_k: Optional[int] = None
    ) -> AsyncIterator[StreamedItem]:
        """Validate now, then return a live stream of items in completion order.

        Queries are dispatched when the stream is first read; closing the
        stream early cancels whatever is still running.
        """
        cleaned = self.validate_queries(queries)
        limit = self.validate_limit(top_k)
        return self._stream(cleaned, limit)

    async def _stream(self, queries: List[str], limit: int) -> AsyncIterator[StreamedItem]:
        tasks = self.dispatcher.dispatch(queries, limit)
        async with aclosing(stream_items(tasks)) as items:
            async for item in items:
                yield item

    async def search_by_query(self, query: str, *, top_k: Optional[int] = None) -> List[Candidate]:
        """Search by a single natural-language query string.

        Unlike the multi-query calls, a failure here is raised: with one query
        there are no sibling results to return.
        """
        result = await self.search_many([query], top_k=top_k)
        if result.failures:
            raise result.failures[0].error
        return result.candidates

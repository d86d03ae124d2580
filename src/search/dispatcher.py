from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from src.vectorstore.schemas import Candidate

from .backend import SearchBackend
from .errors import (
    BackendTimeout,
    BackendUnavailable,
    MalformedBackendResponse,
    SearchBackendError,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryOutcome:
    """Result of resolving one query: its candidates, or the reason it failed."""

    index: int
    query: str
    candidates: Tuple[Candidate, ...] = ()
    error: Optional[SearchBackendError] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class QueryDispatcher:
    """Start one independent backend search per query.

    ``max_concurrency`` caps how many backend calls run at once for a single
    dispatch; ``None`` or ``0`` lifts the cap (ceiling = number of queries).
    ``timeout`` is a per-call deadline in seconds; ``None`` or ``0`` waits
    forever.
    """

    def __init__(
        self,
        backend: SearchBackend,
        *,
        max_concurrency: Optional[int] = 16,
        timeout: Optional[float] = 10.0,
    ) -> None:
        if max_concurrency is not None and max_concurrency < 0:
            raise ValueError("max_concurrency must be >= 0")
        self.backend = backend
        self.max_concurrency = max_concurrency or None
        self.timeout = timeout or None

    def ceiling_for(self, n_queries: int) -> int:
        if self.max_concurrency is None:
            return max(1, n_queries)
        return max(1, min(self.max_concurrency, n_queries))

    def dispatch(
        self, queries: Sequence[str], limit: int
    ) -> List["asyncio.Task[QueryOutcome]"]:
        """Schedule every query on the running loop and return the tasks.

        Tasks are returned in submission order; they complete in whatever
        order the backend answers.
        """
        sem = asyncio.Semaphore(self.ceiling_for(len(queries)))
        logger.info(
            "Dispatching %d queries (limit=%d, concurrency=%d, timeout=%s)",
            len(queries),
            limit,
            self.ceiling_for(len(queries)),
            self.timeout,
        )
        return [
            asyncio.create_task(
                self._run_unit(i, q, limit, sem), name=f"search-query-{i}"
            )
            for i, q in enumerate(queries)
        ]

    async def _call_backend(self, query: str, limit: int):
        # Keeps the backend's own TimeoutError apart from our deadline below
        try:
            return await self.backend.aretrieve(query, limit)
        except (asyncio.TimeoutError, TimeoutError) as exc:
            raise BackendTimeout(
                f"backend timed out on its own: {str(exc) or type(exc).__name__}"
            ) from exc

    async def _run_unit(
        self, index: int, query: str, limit: int, sem: asyncio.Semaphore
    ) -> QueryOutcome:
        started = time.perf_counter()
        error: Optional[SearchBackendError] = None
        candidates: Tuple[Candidate, ...] = ()
        try:
            async with sem:
                result = await asyncio.wait_for(
                    self._call_backend(query, limit), timeout=self.timeout
                )
            candidates = _as_candidates(result)
        except asyncio.TimeoutError:
            error = BackendTimeout(
                f"search for query #{index} exceeded {self.timeout}s deadline"
            )
        except SearchBackendError as exc:
            error = exc
        except Exception as exc:
            error = BackendUnavailable(f"{type(exc).__name__}: {exc}")

        elapsed = time.perf_counter() - started
        if error is not None:
            logger.warning(
                "Query #%d %r failed after %.3fs: [%s] %s",
                index,
                query,
                elapsed,
                error.error_type,
                error,
            )
        else:
            logger.debug(
                "Query #%d %r returned %d candidates in %.3fs",
                index,
                query,
                len(candidates),
                elapsed,
            )
        return QueryOutcome(
            index=index,
            query=query,
            candidates=candidates,
            error=error,
            elapsed=elapsed,
        )


def _as_candidates(result) -> Tuple[Candidate, ...]:
    if result is None:
        return ()
    if isinstance(result, (str, bytes, dict)) or not isinstance(result, Sequence):
        raise MalformedBackendResponse(
            f"expected a list of candidates, got {type(result).__name__}"
        )
    for item in result:
        if not isinstance(item, Candidate):
            raise MalformedBackendResponse(
                f"expected Candidate items, got {type(item).__name__}"
            )
    return tuple(result)

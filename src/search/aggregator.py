"""Fan-in of dispatched query tasks.

Two ways to consume the same set of tasks:

- ``collect_all`` waits for every task and returns one ``AggregateResult``.
- ``stream_items`` yields each query's candidates the moment that query
  finishes, so a fast query never waits behind a slow one.

Both consume tasks in completion order and cancel whatever is still running
if the consumer goes away early.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from src.vectorstore.schemas import Candidate

from .dispatcher import QueryOutcome
from .errors import SearchBackendError


logger = logging.getLogger(__name__)


@dataclass
class AggregateResult:
    """Outcomes of a batch, in the order the queries finished."""

    outcomes: List[QueryOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def candidates(self) -> List[Candidate]:
        return [c for o in self.outcomes if o.ok for c in o.candidates]

    @property
    def failures(self) -> List[QueryOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def to_payload(self) -> Dict[str, Any]:
        results = []
        for outcome in self.outcomes:
            if not outcome.ok:
                continue
            for rank, candidate in enumerate(outcome.candidates, start=1):
                results.append(
                    {
                        **candidate.to_dict(),
                        "query_index": outcome.index,
                        "query": outcome.query,
                        "rank": rank,
                    }
                )
        return {
            "success": self.ok,
            "results": results,
            "failures": [
                {"query_index": o.index, "query": o.query, **o.error.to_dict()}
                for o in self.failures
            ],
        }


@dataclass(frozen=True)
class StreamedItem:
    """One record of the live stream: a candidate, or a failed query's marker."""

    query_index: int
    query: str
    rank: Optional[int] = None
    candidate: Optional[Candidate] = None
    error: Optional[SearchBackendError] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_record(self) -> Dict[str, Any]:
        if self.error is not None:
            return {
                "type": "error",
                "query_index": self.query_index,
                "query": self.query,
                **self.error.to_dict(),
            }
        return {
            "type": "candidate",
            "query_index": self.query_index,
            "query": self.query,
            "rank": self.rank,
            "candidate": self.candidate.to_dict() if self.candidate else None,
        }


async def cancel_pending(tasks: Sequence["asyncio.Task[Any]"]) -> int:
    """Cancel unfinished tasks and wait until they have actually stopped."""
    pending = [t for t in tasks if not t.done()]
    if not pending:
        return 0
    logger.info("Cancelling %d outstanding queries", len(pending))
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    return len(pending)


async def stream_outcomes(
    tasks: Sequence["asyncio.Task[QueryOutcome]"],
) -> AsyncIterator[QueryOutcome]:
    """Yield each task's outcome as soon as it completes."""
    try:
        for next_done in asyncio.as_completed(tasks):
            yield await next_done
    finally:
        await cancel_pending(tasks)


async def collect_all(tasks: Sequence["asyncio.Task[QueryOutcome]"]) -> AggregateResult:
    """Wait for every task; failed queries are kept as failures, never raised."""
    result = AggregateResult()
    async with aclosing(stream_outcomes(tasks)) as outcomes:
        async for outcome in outcomes:
            result.outcomes.append(outcome)
    logger.info(
        "Batch finished: %d queries, %d failed, %d candidates",
        len(result.outcomes),
        len(result.failures),
        len(result.candidates),
    )
    return result


async def stream_items(
    tasks: Sequence["asyncio.Task[QueryOutcome]"],
) -> AsyncIterator[StreamedItem]:
    """Yield candidates per query in completion order.

    A failed query yields a single error item and the stream carries on.
    Closing the iterator early cancels the queries still in flight.
    """
    finished = 0
    try:
        async with aclosing(stream_outcomes(tasks)) as outcomes:
            async for outcome in outcomes:
                finished += 1
                if outcome.error is not None:
                    yield StreamedItem(
                        query_index=outcome.index,
                        query=outcome.query,
                        error=outcome.error,
                    )
                    continue
                for rank, candidate in enumerate(outcome.candidates, start=1):
                    yield StreamedItem(
                        query_index=outcome.index,
                        query=outcome.query,
                        rank=rank,
                        candidate=candidate,
                    )
    finally:
        if finished < len(tasks):
            logger.info(
                "Stream closed early after %d of %d queries", finished, len(tasks)
            )

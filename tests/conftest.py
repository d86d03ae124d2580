import asyncio
from typing import Dict, List, Optional, Set

import pytest

from src.search import SearchService, SearchServiceConfig
from src.vectorstore.schemas import Candidate


class StubBackend:
    """Deterministic in-memory backend.

    Each query returns ``limit`` candidates named ``<query>-<n>`` after its
    configured delay; queries listed in ``failing`` raise instead.
    """

    def __init__(
        self,
        delays: Optional[Dict[str, float]] = None,
        failing: Optional[Set[str]] = None,
        default_delay: float = 0.0,
    ):
        self.delays = delays or {}
        self.failing = failing or set()
        self.default_delay = default_delay
        self.calls: List[str] = []
        self.cancelled: List[str] = []
        self.completed: List[str] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    async def aretrieve(self, query: str, limit: int) -> List[Candidate]:
        self.calls.append(query)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(query, self.default_delay))
            if query in self.failing:
                raise RuntimeError(f"backend exploded on {query!r}")
            self.completed.append(query)
            return [
                Candidate(id=f"{query}-{n}", label=query, distance=float(n))
                for n in range(limit)
            ]
        except asyncio.CancelledError:
            self.cancelled.append(query)
            raise
        finally:
            self.in_flight -= 1


@pytest.fixture
def backend():
    return StubBackend()


@pytest.fixture
def make_service():
    def _make(backend, **overrides):
        return SearchService(backend, SearchServiceConfig(**overrides))

    return _make

from __future__ import annotations

from typing import List, Protocol, runtime_checkable

from src.vectorstore.schemas import Candidate


@runtime_checkable
class SearchBackend(Protocol):
    """Anything that can turn one query string into an ordered candidate list.

    ``aretrieve`` may raise; the dispatcher turns the failure into that
    query's outcome. It must be safe to call many times concurrently.
    """

    async def aretrieve(self, query: str, limit: int) -> List[Candidate]: ...

"""Search application layer.

Turns a list of free-text queries into one concurrent backend search per
query and gathers the answers back, either all at once or as a live stream
in completion order. The vector backend itself lives in ``src.vectorstore``.
"""

from .aggregator import AggregateResult, StreamedItem, collect_all, stream_items
from .backend import SearchBackend
from .dispatcher import QueryDispatcher, QueryOutcome
from .errors import (
    BackendTimeout,
    BackendUnavailable,
    InvalidQueryError,
    MalformedBackendResponse,
    SearchBackendError,
    SearchError,
)
from .service import SearchService, SearchServiceConfig

__all__ = [
    "AggregateResult",
    "BackendTimeout",
    "BackendUnavailable",
    "InvalidQueryError",
    "MalformedBackendResponse",
    "QueryDispatcher",
    "QueryOutcome",
    "SearchBackend",
    "SearchBackendError",
    "SearchError",
    "SearchService",
    "SearchServiceConfig",
    "StreamedItem",
    "collect_all",
    "stream_items",
]

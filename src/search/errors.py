from __future__ import annotations


class SearchError(Exception):
    """Base class for every error raised by the search layer."""


class InvalidQueryError(SearchError, ValueError):
    """The request carried no usable query text (or an out-of-range limit).

    Raised before any backend call is made.
    """


class SearchBackendError(SearchError):
    """A single query's backend call failed.

    These never escape the aggregator: they are captured in the query's
    outcome and reported alongside the successful results.
    """

    error_type = "backend_error"

    def to_dict(self) -> dict:
        return {"error_type": self.error_type, "message": str(self)}


class BackendUnavailable(SearchBackendError):
    error_type = "backend_unavailable"


class BackendTimeout(SearchBackendError):
    error_type = "backend_timeout"


class MalformedBackendResponse(SearchBackendError):
    error_type = "malformed_response"

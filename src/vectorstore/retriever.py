from __future__ import annotations

import asyncio
import base64
import json
from typing import Any, Dict, List, Optional

from src.search.errors import MalformedBackendResponse
from src.vectorstore.data_store import DataVectorStore
from src.vectorstore.embeddings import Embedder

from .schemas import Candidate


def _field(hit: Any, name: str) -> Any:
    if isinstance(hit, dict):
        return hit.get(name)
    return getattr(hit, name, None)


class Retriever:
    """Text query -> embedding -> Milvus ANN search -> ordered Candidates.

    This is the backend search capability the dispatcher fans out over: it
    satisfies ``src.search.backend.SearchBackend``.
    """

    def __init__(
        self,
        store: DataVectorStore | None = None,
        embedder: Embedder | None = None,
        *,
        call_timeout: Optional[float] = None,
    ):
        self.embedder = embedder or Embedder()
        self.store = store or DataVectorStore()
        self.call_timeout = call_timeout

    def _hit_to_candidate(self, hit: Any) -> Candidate:
        if not isinstance(hit, dict) and not hasattr(hit, "get"):
            raise MalformedBackendResponse(f"unexpected hit type {type(hit).__name__}")
        # MilvusClient.search nests output fields under "entity"
        entity = _field(hit, "entity") or {}
        if not isinstance(entity, dict):
            entity = {}

        cid = _field(hit, "id")
        if cid is None:
            cid = entity.get("id")
        if cid is None:
            raise MalformedBackendResponse("search hit has no id")

        distance = _field(hit, "distance")
        try:
            dist = float(distance) if distance is not None else None
        except (TypeError, ValueError) as e:
            raise MalformedBackendResponse(f"non-numeric distance {distance!r}") from e

        metadata = entity.get("metadata")
        if isinstance(metadata, str):
            # Older collections stored metadata as a JSON string
            try:
                metadata = json.loads(metadata)
            except ValueError:
                metadata = None
        meta_dict: Optional[Dict[str, Any]] = metadata if isinstance(metadata, dict) else None

        image = entity.get("image")
        if isinstance(image, bytes):
            image = base64.b64encode(image).decode("ascii")

        return Candidate(
            id=str(cid),
            label=str(entity.get("label") or ""),
            image=image,
            distance=dist,
            metadata=meta_dict,
        )

    def _results_to_candidates(self, results: Any) -> List[Candidate]:
        """Convert a single-vector MilvusClient.search result into Candidates."""
        if not results:
            return []
        try:
            hits = results[0]
            iter(hits)
        except (TypeError, IndexError, KeyError) as e:
            raise MalformedBackendResponse(
                f"unexpected search result shape: {type(results).__name__}"
            ) from e
        return [self._hit_to_candidate(hit) for hit in hits]

    async def aretrieve(self, query: str, limit: int = 10) -> List[Candidate]:
        """Asynchronous retrieval using async embeddings.

        The pymilvus call blocks, so it runs in a worker thread; many queries
        can be in flight at once against the shared client.
        """
        if not isinstance(query, str):
            raise ValueError("Input must be a string")
        qv = await self.embedder.aembed_query(query)
        results = await asyncio.to_thread(
            self.store.search, [qv], limit, timeout=self.call_timeout
        )
        return self._results_to_candidates(results)

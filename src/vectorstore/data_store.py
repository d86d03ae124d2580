import logging
from typing import Any, List, Optional, Sequence

from pymilvus import MilvusClient

from .milvus_client import get_milvus_client


logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_FIELDS = ("id", "label", "image", "metadata")


class DataVectorStore:
    """Nearest-neighbour search over one Milvus collection.

    The collection's schema, index and contents are owned by the ingestion
    side; this class only reads. Calls are blocking (pymilvus), so async
    callers should run them in a worker thread.
    """

    def __init__(
        self,
        client: Optional[MilvusClient] = None,
        collection: str = "assets",
        *,
        anns_field: str = "embedding",
        output_fields: Optional[Sequence[str]] = None,
        search_params: Optional[dict] = None,
    ) -> None:
        self.client = client or get_milvus_client()
        self.collection = collection
        self.anns_field = anns_field
        self.output_fields = list(output_fields or DEFAULT_OUTPUT_FIELDS)
        self.search_params = search_params

    def ensure_ready(self) -> None:
        """Fail fast if the collection is missing; load it into memory otherwise."""
        if not self.client.has_collection(self.collection):
            raise RuntimeError(
                f"Milvus collection '{self.collection}' does not exist; ingest assets first"
            )
        self.client.load_collection(collection_name=self.collection)
        logger.info("Collection '%s' loaded and ready for search", self.collection)

    def search(
        self,
        query_vectors: List[List[float]],
        limit: int = 10,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        """Return one ranked hit list per query vector, as pymilvus yields them."""
        if not query_vectors:
            return []
        if limit < 1:
            raise ValueError("limit must be a positive integer")

        return self.client.search(
            collection_name=self.collection,
            data=query_vectors,
            limit=limit,
            output_fields=self.output_fields,
            search_params=self.search_params,
            anns_field=self.anns_field,
            timeout=timeout,
        )

    def close(self) -> None:
        logger.info("Closing Milvus client for collection '%s'", self.collection)
        self.client.close()

import logging
import os
import time
from typing import Optional

from dotenv import load_dotenv
from pymilvus import MilvusClient

load_dotenv(override=True)

logger = logging.getLogger(__name__)


def get_milvus_client(
    uri: Optional[str] = None,
    token: Optional[str] = None,
    wait_ready: bool = True,
    retries: int = 10,
    backoff_sec: float = 1.0,
) -> MilvusClient:
    """Create a Milvus client using env defaults if not provided and optionally wait for readiness.

    One client is created per process and shared by every in-flight query;
    MilvusClient keeps its own connection pool, so concurrent searches do not
    queue behind each other.

    Env overrides:
      - MILVUS_URI (default http://localhost:19530)
      - MILVUS_TOKEN (default root:Milvus)
    """
    uri = uri or os.environ.get("MILVUS_URI", "http://localhost:19530")
    token = token or os.environ.get("MILVUS_TOKEN", "root:Milvus")
    client = MilvusClient(uri=uri, token=token)

    if wait_ready:
        attempts = max(1, retries)
        for i in range(attempts):
            try:
                # A light call to verify connectivity
                client.list_collections()
                logger.info("Connected to Milvus at %s", uri)
                break
            except Exception as e:  # pragma: no cover - needs a live server
                if i == attempts - 1:
                    raise
                logger.warning(
                    "Milvus at %s not ready (attempt %d/%d): %s", uri, i + 1, attempts, e
                )
                time.sleep(backoff_sec)
    return client

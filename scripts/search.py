"""Multi-query streaming search script using SearchService.

Configuration via constants below (no CLI args). Run:
	uv run python scripts/search.py

Each query is searched concurrently; results are logged the moment their
query finishes, so fast queries show up before slow ones.

Environment:
	OPENAI_API_KEY  (embedding; or whichever provider config.yaml names)
	MILVUS_URI      (default http://localhost:19530)
	MILVUS_TOKEN    (default root:Milvus)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import List

# Ensure project root on path
CURRENT_DIR = Path(__file__).resolve().parent
ROOT_DIR = CURRENT_DIR.parent
if str(ROOT_DIR) not in sys.path:
	sys.path.insert(0, str(ROOT_DIR))

from src.search import SearchService, StreamedItem  # noqa: E402
from src.vectorstore.schemas import format_candidate  # noqa: E402


# ---------------------------------------------------------------------------
# Configuration Constants
# ---------------------------------------------------------------------------
QUERIES: List[str] = [
	"a red bicycle leaning on a wall",
	"mountain lake at sunset",
	"cat sleeping on a keyboard",
]
TOP_K: int = 5
LOG_LEVEL: str = "INFO"


async def search(queries: List[str], top_k: int = TOP_K) -> List[StreamedItem]:
	"""Stream results for all queries and log each item as it arrives."""
	logger = logging.getLogger(__name__)

	service = SearchService.create()
	received: List[StreamedItem] = []
	started = time.perf_counter()
	try:
		async for item in service.stream_many(queries, top_k=top_k):
			received.append(item)
			elapsed = time.perf_counter() - started
			if item.is_error:
				logger.warning(
					"[+%.3fs] query #%d %r failed: %s",
					elapsed, item.query_index, item.query, json.dumps(item.error.to_dict()),
				)
				continue
			logger.info(
				"[+%.3fs] query #%d %r %d. %s",
				elapsed, item.query_index, item.query, item.rank, format_candidate(item.candidate),
			)
	finally:
		service.close()

	n_errors = sum(1 for i in received if i.is_error)
	logger.info(
		"Received %d items (%d failed queries) for %d queries in %.3fs",
		len(received), n_errors, len(queries), time.perf_counter() - started,
	)
	return received


def main() -> int:
	logging.basicConfig(
		level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
		format="%(asctime)s %(levelname)s %(name)s - %(message)s",
	)
	try:
		asyncio.run(search(QUERIES, TOP_K))
		return 0
	except Exception as e:  # pragma: no cover
		logging.exception("Search failed: %s", e)
		return 1

if __name__ == "__main__":  # pragma: no cover
	raise SystemExit(main())

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

from langchain.embeddings import init_embeddings
from langchain_community.embeddings.spacy_embeddings import SpacyEmbeddings

from src.utils.config import get_config


logger = logging.getLogger(__name__)


class Embedder:
    """Query embedding wrapper backed by LangChain's init_embeddings.

    Only query-side embedding is needed here; assets are embedded when they
    are ingested into the collection, outside this service.

    Credentials are read from environment as required by the chosen provider
    (e.g., COHERE_API_KEY, OPENAI_API_KEY, etc.).
    """

    def __init__(
        self,
        model: Optional[str] = None,
        *,
        provider: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> None:
        cfg: Dict[str, Any] = dict(config) if config is not None else dict(get_config())
        embedding_cfg = dict(cfg.get("embedding_model") or {})

        # Explicit args win over env, env wins over config.yaml
        provider = provider or os.getenv("EMBEDDING_PROVIDER")
        model = model or os.getenv("EMBEDDING_MODEL")
        if provider:
            embedding_cfg["provider"] = provider
        if model:
            embedding_cfg["model"] = model

        if not embedding_cfg.get("provider") or not embedding_cfg.get("model"):
            raise ValueError(
                "Embedding configuration missing 'provider' and/or 'model'. "
                "Set them in src/vectorstore/config.yaml under 'embedding_model', "
                "via EMBEDDING_PROVIDER/EMBEDDING_MODEL, or pass them to Embedder()."
            )
        if embedding_cfg["provider"].lower() == "spacy":
            logger.info("Initializing spaCy embeddings with model '%s'", embedding_cfg["model"])
            self._emb = SpacyEmbeddings(model_name=embedding_cfg["model"])
        else:
            logger.info(
                "Initializing embeddings via init_embeddings provider=%s model=%s",
                embedding_cfg["provider"],
                embedding_cfg["model"],
            )
            self._emb = init_embeddings(**embedding_cfg)

    async def aembed_query(self, text: str) -> List[float]:
        """Async single-text embedding.

        Uses the provider's native async call when it has one, otherwise runs
        the sync call in a worker thread so the event loop stays free for the
        other in-flight queries.
        """
        if hasattr(self._emb, "aembed_query"):
            return await self._emb.aembed_query(text)
        logger.debug("Using sync embed_query in aembed_query()")
        return await asyncio.to_thread(self._emb.embed_query, text)

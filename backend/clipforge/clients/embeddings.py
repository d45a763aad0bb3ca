"""Text-embedding client (OpenAI-compatible ``/embeddings``)."""
import hashlib
import logging
from typing import List, Optional

from clipforge.clients.http import ServiceClient
from clipforge.errors import ErrorCode, RetryableError
from clipforge.services.cache import TTLCache

logger = logging.getLogger(__name__)

BATCH_SIZE = 96
MAX_INPUT_CHARS = 8000


class EmbeddingsClient(ServiceClient):
    """Returns one fixed-length vector per input text.

    When a cache is injected, vectors are memoized by (model, text).
    """

    service_name = "embeddings"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        model: str = "text-embedding-3-small",
        timeout: float = 120.0,
        cache: Optional[TTLCache] = None,
    ):
        super().__init__(base_url, api_key=api_key, timeout=timeout)
        self.model = model
        self.cache = cache

    @classmethod
    def from_settings(cls, settings, cache: Optional[TTLCache] = None) -> "EmbeddingsClient":
        return cls(
            base_url=settings.openai_base_url,
            api_key=settings.openai_api_key,
            model=settings.embeddings_model,
            timeout=settings.http_timeout_seconds,
            cache=cache,
        )

    def _cache_key(self, text: str) -> str:
        digest = hashlib.sha1(text.encode("utf-8")).hexdigest()
        return f"emb:{self.model}:{digest}"

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """Embed texts, preserving input order."""
        # The API rejects empty strings
        inputs = [(text or " ")[:MAX_INPUT_CHARS] for text in texts]
        vectors: List[Optional[List[float]]] = [None] * len(inputs)

        missing = []
        for idx, text in enumerate(inputs):
            cached = self.cache.get(self._cache_key(text)) if self.cache is not None else None
            if cached is not None:
                vectors[idx] = cached
            else:
                missing.append(idx)

        for batch_start in range(0, len(missing), BATCH_SIZE):
            batch = missing[batch_start:batch_start + BATCH_SIZE]
            payload = await self.request_json(
                "POST",
                "embeddings",
                json={"model": self.model, "input": [inputs[i] for i in batch]},
            )
            data = sorted(payload.get("data") or [], key=lambda item: item.get("index", 0))
            if len(data) != len(batch):
                raise RetryableError(
                    ErrorCode.UPSTREAM_BAD_RESPONSE,
                    f"Expected {len(batch)} embeddings, got {len(data)}",
                )
            for idx, item in zip(batch, data):
                vector = [float(x) for x in item["embedding"]]
                vectors[idx] = vector
                if self.cache is not None:
                    self.cache.set(self._cache_key(inputs[idx]), vector)

        logger.debug(f"Embedded {len(inputs)} texts ({len(missing)} uncached)")
        return vectors

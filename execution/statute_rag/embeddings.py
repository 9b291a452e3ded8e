"""
Embedding Service for Statute RAG

Turns a query string into a float32 vector through an OpenAI-compatible
`POST {base}/embeddings` endpoint.

Two response layouts are accepted:
    {"data": [{"embedding": [...]}]}   -- OpenAI / vLLM / LM Studio
    {"embedding": [...]}               -- Ollama native shape

Decoding is lossy-tolerant: non-numeric vector elements become 0.0 instead
of failing the whole call.
"""

import hashlib
import logging
from typing import Optional

import numpy as np
import requests

from .config import Settings
from .errors import EmbeddingError, DecodeError, StatuteRAGError
from .http_client import BaseEndpointClient, EndpointConfig

logger = logging.getLogger(__name__)


def _coerce_float(value) -> float:
    # bool is an int subclass but is not a vector component
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def decode_embedding(payload: dict) -> np.ndarray:
    """
    Extract the embedding vector from either supported response layout.

    Raises:
        DecodeError: neither layout present, or the vector is not an array
    """
    raw = None
    data = payload.get("data")
    if isinstance(data, list) and data and isinstance(data[0], dict) and "embedding" in data[0]:
        raw = data[0]["embedding"]
    elif "embedding" in payload:
        raw = payload["embedding"]
    else:
        raise DecodeError("Could not find embedding in response")

    if not isinstance(raw, list):
        raise DecodeError("Invalid embedding format")

    return np.asarray([_coerce_float(v) for v in raw], dtype=np.float32)


class EmbeddingService(BaseEndpointClient):
    """
    Query embedding client with an in-memory cache.

    Embedding models are sensitive to literal newlines, so they are
    replaced by spaces before the request is sent.
    """

    _service_name = "Embedding"

    def __init__(
        self,
        endpoint: EndpointConfig,
        session: Optional[requests.Session] = None,
        use_cache: bool = True,
    ):
        super().__init__(endpoint, session)
        self.use_cache = use_cache
        self._cache: dict[str, np.ndarray] = {}

    @classmethod
    def from_settings(cls, settings: Settings, session: Optional[requests.Session] = None) -> "EmbeddingService":
        endpoint = EndpointConfig(
            base_url=settings.embedding_base_url,
            api_key=settings.embedding_api_key,
            model=settings.embedding_model,
            timeout=settings.request_timeout,
        )
        return cls(endpoint, session=session)

    def embed_query(self, text: str) -> np.ndarray:
        """
        Embed a search query.

        Args:
            text: Query string

        Returns:
            float32 vector; length is defined by the model

        Raises:
            EmbeddingError: transport failure, non-success status, or
                unrecognised response shape (cause is chained)
        """
        prompt = text.replace("\n", " ")

        cache_key = self._get_cache_key(prompt)
        if self.use_cache and cache_key in self._cache:
            return self._cache[cache_key]

        try:
            resp = self._post("embeddings", {"model": self.endpoint.model, "input": prompt})
            vector = decode_embedding(self._decode_json(resp))
        except StatuteRAGError as e:
            logger.error(f"Embedding failed ({self.endpoint.model}): {e}")
            raise EmbeddingError(str(e)) from e

        logger.debug(f"Embedded query ({len(prompt)} chars) -> {vector.shape[0]} dims")

        if self.use_cache:
            self._cache[cache_key] = vector
        return vector

    def _get_cache_key(self, text: str) -> str:
        content = f"{self.endpoint.base_url}:{self.endpoint.model}:{text}"
        return hashlib.sha256(content.encode()).hexdigest()[:32]

    def clear_cache(self) -> None:
        self._cache.clear()


# CLI for testing
if __name__ == "__main__":
    import sys
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    service = EmbeddingService.from_settings(Settings.from_env())
    query = " ".join(sys.argv[1:]) or "民事诉讼时效期间"

    print(f"Query: {query}")
    embedding = service.embed_query(query)
    print(f"Embedding dimensions: {len(embedding)}")
    print(f"First 10 values: {embedding[:10]}")

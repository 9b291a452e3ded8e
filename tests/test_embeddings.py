"""
Tests for execution/statute_rag/embeddings.py

Covers: decode_embedding() for both response layouts, EmbeddingService
        request shape, caching, and error wrapping.

All HTTP calls go through a mocked requests.Session.
"""

from unittest.mock import MagicMock

import numpy as np
import pytest
import requests


def _response(status=200, json_data=None, json_error=None):
    resp = MagicMock()
    resp.status_code = status
    if json_error is not None:
        resp.json.side_effect = json_error
    else:
        resp.json.return_value = json_data
    return resp


def _service(session, use_cache=True):
    from execution.statute_rag.embeddings import EmbeddingService
    from execution.statute_rag.http_client import EndpointConfig
    endpoint = EndpointConfig(
        base_url="http://localhost:11434/v1/",
        api_key="ollama",
        model="embeddinggemma:300m",
        timeout=30.0,
    )
    return EmbeddingService(endpoint, session=session, use_cache=use_cache)


# ---------------------------------------------------------------------------
# decode_embedding
# ---------------------------------------------------------------------------

class TestDecodeEmbedding:

    def test_openai_layout(self):
        from execution.statute_rag.embeddings import decode_embedding
        vec = decode_embedding({"data": [{"embedding": [0.1, 0.2, 0.3], "index": 0}]})
        assert vec.dtype == np.float32
        assert vec.shape == (3,)
        assert vec[1] == pytest.approx(0.2)

    def test_ollama_layout(self):
        from execution.statute_rag.embeddings import decode_embedding
        vec = decode_embedding({"embedding": [1, 2]})
        assert vec.tolist() == [1.0, 2.0]

    def test_data_layout_takes_precedence(self):
        from execution.statute_rag.embeddings import decode_embedding
        vec = decode_embedding({"data": [{"embedding": [0.5]}], "embedding": [9.0]})
        assert vec.tolist() == [0.5]

    def test_non_numeric_elements_become_zero(self):
        from execution.statute_rag.embeddings import decode_embedding
        vec = decode_embedding({"embedding": [0.25, "x", None, True, 0.75]})
        assert vec.tolist() == [0.25, 0.0, 0.0, 0.0, 0.75]

    def test_missing_embedding(self):
        from execution.statute_rag.embeddings import decode_embedding
        from execution.statute_rag.errors import DecodeError
        with pytest.raises(DecodeError, match="Could not find embedding"):
            decode_embedding({"object": "list", "data": []})

    def test_non_array_embedding(self):
        from execution.statute_rag.embeddings import decode_embedding
        from execution.statute_rag.errors import DecodeError
        with pytest.raises(DecodeError, match="Invalid embedding format"):
            decode_embedding({"embedding": "0.1,0.2"})


# ---------------------------------------------------------------------------
# EmbeddingService
# ---------------------------------------------------------------------------

class TestEmbeddingService:

    def test_request_shape(self):
        session = MagicMock()
        session.post.return_value = _response(json_data={"embedding": [0.1, 0.2]})
        svc = _service(session)

        svc.embed_query("诉讼时效\n期间")

        args, kwargs = session.post.call_args
        assert args[0] == "http://localhost:11434/v1/embeddings"
        assert kwargs["json"] == {"model": "embeddinggemma:300m", "input": "诉讼时效 期间"}
        assert kwargs["headers"]["Authorization"] == "Bearer ollama"
        assert kwargs["timeout"] == 30.0

    def test_cache_hit_skips_request(self):
        session = MagicMock()
        session.post.return_value = _response(json_data={"embedding": [0.1, 0.2]})
        svc = _service(session)

        first = svc.embed_query("劳动合同解除")
        second = svc.embed_query("劳动合同解除")

        assert session.post.call_count == 1
        assert np.array_equal(first, second)

    def test_cache_disabled(self):
        session = MagicMock()
        session.post.return_value = _response(json_data={"embedding": [0.1]})
        svc = _service(session, use_cache=False)

        svc.embed_query("a")
        svc.embed_query("a")
        assert session.post.call_count == 2

    def test_clear_cache(self):
        session = MagicMock()
        session.post.return_value = _response(json_data={"embedding": [0.1]})
        svc = _service(session)

        svc.embed_query("a")
        svc.clear_cache()
        svc.embed_query("a")
        assert session.post.call_count == 2

    def test_transport_failure_wrapped(self):
        from execution.statute_rag.errors import EmbeddingError, TransportError
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("connection refused")
        svc = _service(session)

        with pytest.raises(EmbeddingError) as exc_info:
            svc.embed_query("a")
        assert isinstance(exc_info.value.__cause__, TransportError)

    def test_status_failure_wrapped(self):
        from execution.statute_rag.errors import EmbeddingError, UpstreamStatusError
        session = MagicMock()
        session.post.return_value = _response(status=500)
        svc = _service(session)

        with pytest.raises(EmbeddingError, match="HTTP 500") as exc_info:
            svc.embed_query("a")
        assert isinstance(exc_info.value.__cause__, UpstreamStatusError)
        assert exc_info.value.__cause__.status_code == 500

    def test_non_json_body_wrapped(self):
        from execution.statute_rag.errors import EmbeddingError, DecodeError
        session = MagicMock()
        session.post.return_value = _response(json_error=ValueError("Expecting value"))
        svc = _service(session)

        with pytest.raises(EmbeddingError) as exc_info:
            svc.embed_query("a")
        assert isinstance(exc_info.value.__cause__, DecodeError)

    def test_failures_not_cached(self):
        from execution.statute_rag.errors import EmbeddingError
        session = MagicMock()
        session.post.side_effect = [
            _response(status=503),
            _response(json_data={"embedding": [0.3]}),
        ]
        svc = _service(session)

        with pytest.raises(EmbeddingError):
            svc.embed_query("a")
        assert svc.embed_query("a").tolist() == pytest.approx([0.3])

    def test_from_settings(self):
        from execution.statute_rag.config import Settings
        from execution.statute_rag.embeddings import EmbeddingService
        svc = EmbeddingService.from_settings(
            Settings(embedding_base_url="http://gpu:8000/v1", embedding_model="bge-m3", request_timeout=5.0),
            session=MagicMock(),
        )
        assert svc.endpoint.url("embeddings") == "http://gpu:8000/v1/embeddings"
        assert svc.endpoint.model == "bge-m3"
        assert svc.endpoint.timeout == 5.0

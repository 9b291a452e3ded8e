"""
HTTP plumbing shared by the embedding and chat-completion clients.

Both services speak the OpenAI-compatible REST dialect (bearer auth, JSON
bodies, `{base}/embeddings` and `{base}/chat/completions`). Ollama, vLLM,
LM Studio and hosted OpenAI-compatible gateways all work unchanged.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import TransportError, UpstreamStatusError, DecodeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EndpointConfig:
    """Connection details for one OpenAI-compatible endpoint."""
    base_url: str
    api_key: str
    model: str
    timeout: float = 120.0

    def url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"


def make_session(retries: int = 2) -> requests.Session:
    """Create a session with retry backoff on connection errors and gateway failures."""
    s = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=0.5,
        status_forcelist=[502, 503, 504],
        allowed_methods=["GET", "POST"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    return s


class BaseEndpointClient:
    """
    Base class for clients of an OpenAI-compatible endpoint.

    Translates requests failures into the package error taxonomy:
    - TransportError: connection refused, DNS, timeout, broken stream
    - UpstreamStatusError: any non-2xx status
    - DecodeError: body is not JSON
    """

    _service_name: str = "Endpoint"

    def __init__(self, endpoint: EndpointConfig, session: Optional[requests.Session] = None):
        self.endpoint = endpoint
        self._session = session or make_session()

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.endpoint.api_key}",
            "Content-Type": "application/json",
        }

    def _post(self, path: str, body: dict, stream: bool = False) -> requests.Response:
        url = self.endpoint.url(path)
        try:
            resp = self._session.post(
                url,
                json=body,
                headers=self._headers(),
                timeout=self.endpoint.timeout,
                stream=stream,
            )
        except requests.RequestException as e:
            raise TransportError(f"{self._service_name} request to {url} failed: {e}") from e

        self._check_status(resp)
        return resp

    def _check_status(self, resp: requests.Response) -> None:
        if 200 <= resp.status_code < 300:
            return
        resp.close()
        raise UpstreamStatusError(
            f"{self._service_name} API error: HTTP {resp.status_code}",
            status_code=resp.status_code,
        )

    def _decode_json(self, resp: requests.Response) -> dict:
        try:
            payload = resp.json()
        except ValueError as e:
            raise DecodeError(f"{self._service_name} returned a non-JSON body: {e}") from e
        if not isinstance(payload, dict):
            raise DecodeError(
                f"{self._service_name} returned {type(payload).__name__}, expected an object"
            )
        return payload

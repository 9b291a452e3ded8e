"""
Chat-completion client for the agent loop.

complete() is the blocking call used by the planner and reviewer; it goes
through the OpenAI SDK. complete_streaming() reads the raw event stream so
that non-standard chunk layouts still decode, yields tokens lazily and never
raises: a transport or status failure becomes one terminal error event.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, Optional

import requests
from openai import APIConnectionError, APIError, APIStatusError, APITimeoutError, OpenAI

from .config import Settings
from .errors import DecodeError, StatuteRAGError, TransportError, UpstreamStatusError
from .http_client import BaseEndpointClient, EndpointConfig
from .sse import SSEDecoder

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.1


def _translate_openai_error(e: APIError, service: str) -> StatuteRAGError:
    """Map an OpenAI SDK exception onto the package error taxonomy."""
    if isinstance(e, APITimeoutError):
        return TransportError(f"{service} request timed out: {e}")
    if isinstance(e, APIConnectionError):
        return TransportError(f"{service} request failed: {e}")
    if isinstance(e, APIStatusError):
        return UpstreamStatusError(f"{service} API error: HTTP {e.status_code}", status_code=e.status_code)
    return DecodeError(f"{service} returned an unreadable response: {e}")


@dataclass(frozen=True)
class StreamEvent:
    """One element of a streaming completion: a token or the terminal error."""
    kind: str  # "token" or "error"
    text: str

    @property
    def is_error(self) -> bool:
        return self.kind == "error"


class CompletionClient(BaseEndpointClient):
    """OpenAI-compatible `/chat/completions` client."""

    _service_name = "LLM"

    def __init__(
        self,
        endpoint: EndpointConfig,
        session: Optional[requests.Session] = None,
        openai_client: Optional[OpenAI] = None,
    ):
        super().__init__(endpoint, session=session)
        self._openai_client = openai_client

    @classmethod
    def from_settings(cls, settings: Settings, session: Optional[requests.Session] = None) -> "CompletionClient":
        endpoint = EndpointConfig(
            base_url=settings.chat_base_url,
            api_key=settings.chat_api_key,
            model=settings.chat_model,
            timeout=settings.request_timeout,
        )
        return cls(endpoint, session=session)

    def get_openai_client(self) -> OpenAI:
        """Get or create the cached OpenAI client for this endpoint."""
        if self._openai_client is None:
            self._openai_client = OpenAI(
                base_url=self.endpoint.base_url,
                api_key=self.endpoint.api_key,
                timeout=self.endpoint.timeout,
            )
        return self._openai_client

    def complete(
        self,
        prompt: str,
        model: Optional[str] = None,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> str:
        """
        Send a single user message and return the full response text.

        Raises:
            TransportError, UpstreamStatusError, DecodeError
        """
        try:
            response = self.get_openai_client().chat.completions.create(
                model=model or self.endpoint.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
            )
        except APIError as e:
            raise _translate_openai_error(e, self._service_name) from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError):
            raise DecodeError("No content in response")
        if not isinstance(content, str):
            raise DecodeError("No content in response")

        logger.debug(f"LLM response: {len(content)} characters")
        return content

    def complete_streaming(
        self,
        system_prompt: str,
        user_prompt: str,
        model: Optional[str] = None,
        temperature: float = 0.3,
    ) -> Iterator[StreamEvent]:
        """
        Stream a completion as token events.

        The sequence is finite and not restartable. Malformed data lines are
        skipped. Any transport or status failure is yielded as a single
        StreamEvent(kind="error") after which the sequence ends.
        """
        body = {
            "model": model or self.endpoint.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "stream": True,
            "temperature": temperature,
        }
        try:
            resp = self._post("chat/completions", body, stream=True)
        except StatuteRAGError as e:
            logger.warning(f"Streaming completion failed to start: {e}")
            yield StreamEvent("error", f"[Error: {e}]")
            return

        decoder = SSEDecoder()
        try:
            for chunk in resp.iter_content(chunk_size=None):
                for token in decoder.feed(chunk):
                    yield StreamEvent("token", token)
                if decoder.done:
                    break
            else:
                for token in decoder.flush():
                    yield StreamEvent("token", token)
        except requests.RequestException as e:
            logger.warning(f"Streaming completion interrupted: {e}")
            yield StreamEvent("error", f"[Error: {e}]")
        finally:
            resp.close()

        if decoder.skipped_lines:
            logger.debug(f"Skipped {decoder.skipped_lines} malformed stream lines")


def check_ai_connection(
    base_url: str,
    api_key: str,
    model: str,
    timeout: float = 15.0,
    client: Optional[OpenAI] = None,
) -> str:
    """
    Verify an endpoint is reachable by listing its models.

    Returns a human-readable status message. Raises TransportError or
    UpstreamStatusError when unreachable, DecodeError on an unreadable body.
    """
    client = client or OpenAI(base_url=base_url, api_key=api_key, timeout=timeout, max_retries=0)
    try:
        page = client.models.list()
    except APIError as e:
        raise _translate_openai_error(e, "AI") from e

    data = getattr(page, "data", None)
    if isinstance(data, list):
        found = any(getattr(m, "id", None) == model for m in data)
        if found:
            return f"连接成功！发现模型: {model}"
        return f"连接通畅，但在列表中未找到模型 '{model}' (可能仍可用)"

    return "连接成功！(未能验证模型名称)"

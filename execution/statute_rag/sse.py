"""
Incremental decoder for chat-completion server-sent event streams.

Bytes arrive in arbitrary chunks: a line, or a multi-byte UTF-8 character,
can be split across two network reads. The decoder buffers partial lines
and yields content tokens only from complete `data:` lines.
"""

import codecs
import json
import logging
from typing import Optional

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"


def extract_token(payload: dict) -> Optional[str]:
    """
    Return the content token carried by one stream payload, if any.

    Supports the OpenAI delta shape `choices[0].delta.content` and the
    Ollama-style `message.content`.
    """
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        delta = choices[0].get("delta")
        if isinstance(delta, dict) and isinstance(delta.get("content"), str):
            return delta["content"]

    message = payload.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]

    return None


class SSEDecoder:
    """Line-buffering transformer from raw SSE bytes to content tokens."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False
        self.skipped_lines = 0

    def feed(self, chunk: bytes) -> list[str]:
        """Consume a byte chunk and return the tokens from every completed line."""
        if self.done:
            return []

        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return self._consume(lines)

    def flush(self) -> list[str]:
        """Process whatever remains once the byte stream has ended."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        return self._consume([remainder])

    def _consume(self, lines: list[str]) -> list[str]:
        tokens = []
        for line in lines:
            token = self._parse_line(line.rstrip("\r"))
            if self.done:
                break
            if token:
                tokens.append(token)
        return tokens

    def _parse_line(self, line: str) -> Optional[str]:
        if not line.startswith(DATA_PREFIX):
            return None

        data = line[len(DATA_PREFIX):].strip()
        if data == DONE_MARKER:
            self.done = True
            return None
        if not data:
            return None

        try:
            payload = json.loads(data)
        except ValueError:
            self.skipped_lines += 1
            logger.debug(f"Skipping malformed stream line: {data[:80]}")
            return None

        if not isinstance(payload, dict):
            self.skipped_lines += 1
            return None
        return extract_token(payload)

"""Streaming LLM client — SSE connection to the narrator proxy.

The dialogue session consumes any object matching the protocol:

    def stream(self, payload: ChatPayload) -> AsyncIterator[str]: ...

Each yielded item is one opaque content delta. The iterator ends when the
server sends its terminating sentinel or closes the connection.

Two implementations are provided:

    HttpStreamingLLM — real HTTP client. POSTs the chat payload to
                       {api_url}/stream and decodes the server-sent events.
    EchoLLM          — streams the latest user message back word by word.
                       Useful for exercising the engine without a model.

The proxy in front of the model provider owns credentials and CORS; this
client never sends a provider key.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Protocol

import httpx

from .models import ChatPayload

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


# ---------------------------------------------------------------------------
# Protocol — every streaming implementation must match this signature
# ---------------------------------------------------------------------------

class StreamingLLM(Protocol):
    def stream(self, payload: ChatPayload) -> AsyncIterator[str]: ...


# ---------------------------------------------------------------------------
# HttpStreamingLLM — connects to the proxy
# ---------------------------------------------------------------------------

class HttpStreamingLLM:
    """Async SSE client for an OpenAI-compatible chat completion stream.

    Wire format, one event per line:
        data: {"choices": [{"delta": {"content": "..."}}]}
        data: [DONE]
    An `event: error` line followed by `data: {"error": "..."}` reports a
    failure mid-stream.

    Args:
        api_url: Chat endpoint of the proxy, e.g. "http://localhost:3001/api/chat".
                 Deltas are requested from {api_url}/stream.
        connect_timeout: Seconds allowed to establish the connection. Read
                 deadlines are enforced by the dialogue session, not here.
    """

    def __init__(self, api_url: str, connect_timeout: float = 10.0) -> None:
        self._url = f"{api_url.rstrip('/')}/stream"
        self._timeout = httpx.Timeout(None, connect=connect_timeout)

    async def stream(self, payload: ChatPayload) -> AsyncIterator[str]:
        body = payload.model_dump()
        logger.debug(
            "llm stream url=%s messages=%d", self._url, len(payload.messages)
        )
        chunks = 0
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                async with client.stream(
                    "POST", self._url, json=body,
                    headers={"Content-Type": "application/json"},
                ) as resp:
                    resp.raise_for_status()
                    error_event = False
                    async for line in resp.aiter_lines():
                        line = line.strip()
                        if line.startswith("event:"):
                            error_event = line[len("event:"):].strip() == "error"
                            continue
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if error_event:
                            raise LLMError(f"Stream error from narrator: {_error_text(data)}")
                        if data == DONE_SENTINEL:
                            break
                        delta = _decode_delta(data)
                        if delta:
                            chunks += 1
                            yield delta
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to narrator at {self._url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"Narrator returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError("Narrator connection timed out") from e
        except httpx.TransportError as e:
            raise LLMError(f"Narrator stream broke off: {e}") from e
        logger.debug("llm stream finished chunks=%d", chunks)


def _decode_delta(data: str) -> str:
    """Extract choices[0].delta.content from one event, or "" if absent/partial."""
    try:
        event = json.loads(data)
        return event["choices"][0]["delta"].get("content") or ""
    except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError):
        logger.debug("Skipping undecodable stream line: %r", data)
        return ""


def _error_text(data: str) -> str:
    try:
        return str(json.loads(data).get("error", data))
    except (json.JSONDecodeError, AttributeError):
        return data


# ---------------------------------------------------------------------------
# EchoLLM — no network; streams the user's words back
# ---------------------------------------------------------------------------

class EchoLLM:
    """Streams the last user message back one word at a time, no directive.

    Lets you drive the whole dialogue loop (admission, streaming, history,
    settling) without a running model.
    """

    async def stream(self, payload: ChatPayload) -> AsyncIterator[str]:
        user_text = next(
            (m.content for m in reversed(payload.messages) if m.role == "user"), ""
        )
        logger.debug("EchoLLM echoing %d chars", len(user_text))
        for i, word in enumerate(user_text.split()):
            yield word if i == 0 else f" {word}"


# ---------------------------------------------------------------------------
# LLMError — raised for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the narrator endpoint cannot be reached or fails mid-stream."""

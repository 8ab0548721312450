"""Chat-completion client for an Ollama server."""
from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence

import httpx

from ragchat.errors import ChatModelFailure
from ragchat.providers import ChatCompletion, ChatModel

LOGGER = logging.getLogger(__name__)


class OllamaChatModel(ChatModel):
    """Send the whole conversation to ``/api/chat`` and return the reply text."""

    def __init__(
        self,
        model_name: str,
        *,
        endpoint: str,
        timeout_seconds: float = 60.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.model_name = model_name
        self._client = client or httpx.Client(base_url=endpoint, timeout=timeout_seconds)

    def complete(self, messages: Sequence[Dict[str, str]], *, model: Optional[str] = None) -> ChatCompletion:
        model_id = model or self.model_name
        body = {"model": model_id, "messages": list(messages), "stream": False}
        try:
            response = self._client.post("/api/chat", json=body)
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as exc:
            raise ChatModelFailure(f"Chat model {model_id} timed out", cause=exc) from exc
        except httpx.HTTPError as exc:
            raise ChatModelFailure(f"Chat request to {model_id} failed: {exc}", cause=exc) from exc
        except ValueError as exc:
            raise ChatModelFailure("Chat service returned invalid JSON", cause=exc) from exc

        try:
            content = payload["message"]["content"]
        except (KeyError, TypeError) as exc:
            raise ChatModelFailure("Chat service response has no message content", cause=exc) from exc
        if not isinstance(content, str):
            raise ChatModelFailure("Chat service returned non-text content")
        LOGGER.debug("Received %s characters from %s", len(content), model_id)
        return ChatCompletion(text=content, model=str(payload.get("model") or model_id))

    def close(self) -> None:
        self._client.close()

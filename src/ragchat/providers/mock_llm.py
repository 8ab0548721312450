"""Mock chat model that echoes the latest user turn for deterministic testing."""
from __future__ import annotations

from typing import Dict, Optional, Sequence

from .base import ChatCompletion, ChatModel


class MockChatModel(ChatModel):
    """Return a deterministic response for any conversation."""

    def __init__(self, model_name: str = "mock") -> None:
        self.model_name = model_name

    def complete(self, messages: Sequence[Dict[str, str]], *, model: Optional[str] = None) -> ChatCompletion:
        """Generate a canned response with a predictable prefix."""

        last_user = next(
            (message["content"] for message in reversed(messages) if message.get("role") == "user"),
            "",
        )
        return ChatCompletion(text=f"MOCK_ANSWER: {last_user[:100]}", model=model or self.model_name)

"""Conversation history, trailing-window views and per-session bookkeeping."""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Sequence

from ragchat.errors import SessionBusy, SessionNotFound

LOGGER = logging.getLogger(__name__)

USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
SYSTEM_ROLE = "system"

_OUTBOUND_ROLES = frozenset({USER_ROLE, ASSISTANT_ROLE})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class ConversationMessage:
    """A single chat turn. The role is stored exactly as received."""

    role: str
    content: str
    timestamp: datetime = field(default_factory=_utcnow)

    @classmethod
    def user(cls, content: str) -> "ConversationMessage":
        return cls(role=USER_ROLE, content=content)

    @classmethod
    def assistant(cls, content: str) -> "ConversationMessage":
        return cls(role=ASSISTANT_ROLE, content=content)


@dataclass(slots=True)
class ConversationContext:
    """State of one active chat session."""

    session_id: str
    user_id: str
    messages: List[ConversationMessage] = field(default_factory=list)
    variables: Dict[str, Any] = field(default_factory=dict)


class ConversationManager:
    """Append-only history with read-time trailing windows."""

    def append(self, context: ConversationContext, message: ConversationMessage) -> ConversationContext:
        context.messages.append(message)
        return context

    def windowed(self, context: ConversationContext, max_turns: int) -> List[ConversationMessage]:
        """Return the last *max_turns* messages in chronological order."""

        if max_turns <= 0:
            raise ValueError(f"max_turns must be a positive integer (got {max_turns})")
        return list(context.messages[-max_turns:])

    @staticmethod
    def outbound_role(role: str) -> str:
        """Map a stored role onto the roles accepted by the chat model.

        Anything other than ``user`` or ``assistant`` (including ``system``) is
        sent as ``user``; the stored history keeps the original label.
        """

        return role if role in _OUTBOUND_ROLES else USER_ROLE

    def to_model_messages(self, messages: Sequence[ConversationMessage]) -> List[Dict[str, str]]:
        return [{"role": self.outbound_role(message.role), "content": message.content} for message in messages]


@dataclass(slots=True)
class _SessionEntry:
    context: ConversationContext
    in_flight: threading.Lock = field(default_factory=threading.Lock)


class SessionRegistry:
    """Own the active conversation contexts, one generation in flight per session."""

    def __init__(self) -> None:
        self._sessions: Dict[str, _SessionEntry] = {}
        self._lock = threading.Lock()

    def open(self, session_id: str, user_id: str = "anonymous") -> ConversationContext:
        """Return the context for *session_id*, creating it on first use."""

        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                entry = _SessionEntry(context=ConversationContext(session_id=session_id, user_id=user_id))
                self._sessions[session_id] = entry
                LOGGER.info("Opened session %s for user %s", session_id, user_id)
            return entry.context

    def get(self, session_id: str) -> ConversationContext:
        return self._entry(session_id).context

    def close(self, session_id: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(session_id, None)
        if removed is not None:
            LOGGER.info("Closed session %s", session_id)
        return removed is not None

    def is_busy(self, session_id: str) -> bool:
        with self._lock:
            entry = self._sessions.get(session_id)
        return entry is not None and entry.in_flight.locked()

    @contextmanager
    def turn(self, session_id: str) -> Iterator[ConversationContext]:
        """Hold the session for one generation; a concurrent turn raises :class:`SessionBusy`."""

        entry = self._entry(session_id)
        if not entry.in_flight.acquire(blocking=False):
            raise SessionBusy(f"Session {session_id} already has a response in progress")
        try:
            yield entry.context
        finally:
            entry.in_flight.release()

    def _entry(self, session_id: str) -> _SessionEntry:
        with self._lock:
            entry = self._sessions.get(session_id)
        if entry is None:
            raise SessionNotFound(f"Session {session_id} does not exist")
        return entry

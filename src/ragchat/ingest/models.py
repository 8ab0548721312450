"""Data models used by the ingestion pipeline."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Final, Tuple

CHUNK_ID_SEPARATOR: Final[str] = "_"
_FILENAME_SAFE_CHARS_RE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9._-]+")


def document_id_for(file_name: str) -> str:
    """Return the stable document identifier derived from *file_name*."""
    sanitized = Path(file_name or "").name
    sanitized = _FILENAME_SAFE_CHARS_RE.sub("_", sanitized)
    return sanitized.strip("._") or "upload"


def chunk_id_for(document_id: str, index: int) -> str:
    return f"{document_id}{CHUNK_ID_SEPARATOR}{index}"


@dataclass(frozen=True, slots=True)
class DocumentMetadata:
    """Descriptive metadata shared by every chunk of one source file."""

    file_name: str
    file_type: str
    department: str = ""
    tags: Tuple[str, ...] = ()
    uploaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, object]:
        return {
            "file_name": self.file_name,
            "file_type": self.file_type,
            "department": self.department,
            "tags": list(self.tags),
            "uploaded_at": self.uploaded_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, object]) -> "DocumentMetadata":
        uploaded_raw = payload.get("uploaded_at")
        uploaded_at = (
            datetime.fromisoformat(str(uploaded_raw)) if uploaded_raw else datetime.now(timezone.utc)
        )
        tags = payload.get("tags") or ()
        if isinstance(tags, str):
            tags = tuple(tag for tag in tags.split(",") if tag)
        return cls(
            file_name=str(payload.get("file_name", "")),
            file_type=str(payload.get("file_type", "")),
            department=str(payload.get("department", "")),
            tags=tuple(str(tag) for tag in tags),  # type: ignore[union-attr]
            uploaded_at=uploaded_at,
        )


@dataclass(frozen=True, slots=True)
class DocumentChunk:
    """A window of document text paired with its embedding and metadata."""

    id: str
    content: str
    title: str
    embedding: Tuple[float, ...]
    metadata: DocumentMetadata

    @property
    def document_id(self) -> str:
        return self.id.rsplit(CHUNK_ID_SEPARATOR, 1)[0]

"""Utilities for detecting the format of uploaded documents."""
from __future__ import annotations

from enum import Enum
from pathlib import Path

from ragchat.errors import UnsupportedFileType


class DocumentFormat(str, Enum):
    """Supported document formats."""

    PDF = "pdf"
    XLSX = "xlsx"
    XLS = "xls"
    DOCX = "docx"
    TXT = "txt"


class DocumentFormatDetector:
    """Detects the document format from the file extension."""

    @classmethod
    def detect(cls, file_name: str) -> DocumentFormat:
        """Return the format for *file_name* or raise :class:`UnsupportedFileType`."""

        suffix = Path(file_name or "").suffix.lower().lstrip(".")
        try:
            return DocumentFormat(suffix)
        except ValueError as exc:
            label = f"'.{suffix}'" if suffix else "without extension"
            raise UnsupportedFileType(f"File type {label} is not supported: {file_name}", cause=exc) from exc

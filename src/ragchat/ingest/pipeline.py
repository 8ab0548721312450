"""High level ingestion pipeline entry point."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from ragchat.errors import DocumentExtractionFailure
from ragchat.telemetry import traced_duration

from .chunking import ChunkingConfig, SlidingWindowChunker
from .extractors import TextExtractor, default_extractors
from .format_detection import DocumentFormat, DocumentFormatDetector

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestPipelineConfig:
    chunk_chars: int = 1000
    overlap_chars: int = 200


@dataclass(slots=True)
class IngestStatistics:
    """Details about the most recent pipeline run."""

    file_name: str
    document_format: DocumentFormat
    block_count: int
    chunk_count: int
    duration_seconds: float


@dataclass(slots=True)
class PreparedDocument:
    """Chunk texts of one file, ready to be embedded."""

    file_name: str
    document_format: DocumentFormat
    chunks: List[str] = field(default_factory=list)


class IngestPipeline:
    """Pipeline orchestrating format detection, extraction and chunking."""

    def __init__(
        self,
        config: Optional[IngestPipelineConfig] = None,
        *,
        extractors: Optional[Mapping[DocumentFormat, TextExtractor]] = None,
    ) -> None:
        self.config = config or IngestPipelineConfig()
        self.chunker = SlidingWindowChunker(
            ChunkingConfig(chunk_chars=self.config.chunk_chars, overlap_chars=self.config.overlap_chars)
        )
        self.extractors = dict(extractors or default_extractors())
        self.last_statistics: Optional[IngestStatistics] = None

    def prepare(self, file_bytes: bytes, file_name: str) -> PreparedDocument:
        """Detect the format of *file_name*, extract its text and chunk it."""

        started = time.perf_counter()
        document_format = DocumentFormatDetector.detect(file_name)
        LOGGER.info("Processing file %s (%s)", file_name, document_format.value)

        with traced_duration("ingest.extract", logger=LOGGER, file=file_name, format=document_format.value):
            try:
                blocks = self.extractors[document_format].extract(file_bytes)
            except Exception as exc:
                raise DocumentExtractionFailure(f"Could not read {file_name}: {exc}", cause=exc) from exc
        chunks = self.chunker.chunk(blocks)
        LOGGER.info("Generated %s chunks from %s blocks for file %s", len(chunks), len(blocks), file_name)

        self.last_statistics = IngestStatistics(
            file_name=file_name,
            document_format=document_format,
            block_count=len(blocks),
            chunk_count=len(chunks),
            duration_seconds=time.perf_counter() - started,
        )
        return PreparedDocument(file_name=file_name, document_format=document_format, chunks=chunks)

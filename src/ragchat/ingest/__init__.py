"""Document ingestion: format detection, text extraction and chunking."""

from .chunking import ChunkingConfig, SlidingWindowChunker, chunk_text
from .format_detection import DocumentFormat, DocumentFormatDetector
from .models import DocumentChunk, DocumentMetadata, chunk_id_for, document_id_for
from .pipeline import IngestPipeline, IngestPipelineConfig, PreparedDocument

__all__ = [
    "ChunkingConfig",
    "DocumentChunk",
    "DocumentFormat",
    "DocumentFormatDetector",
    "DocumentMetadata",
    "IngestPipeline",
    "IngestPipelineConfig",
    "PreparedDocument",
    "SlidingWindowChunker",
    "chunk_id_for",
    "chunk_text",
    "document_id_for",
]

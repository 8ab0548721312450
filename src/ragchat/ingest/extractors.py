"""Extractors turning uploaded files into ordered text blocks."""
from __future__ import annotations

import io
import logging
from typing import Iterable, List, Protocol

import xlrd
from docx import Document as DocxDocument
from openpyxl import load_workbook
from PyPDF2 import PdfReader

from .format_detection import DocumentFormat

LOGGER = logging.getLogger(__name__)

EXCEL_CELL_SEPARATOR = " | "


class TextExtractor(Protocol):
    def extract(self, data: bytes) -> List[str]:
        ...


class PDFExtractor:
    """Extract one text block per PDF page."""

    def extract(self, data: bytes) -> List[str]:
        reader = PdfReader(io.BytesIO(data))
        blocks: List[str] = []
        for index, page in enumerate(reader.pages, start=1):
            text = page.extract_text() or ""
            LOGGER.debug("Extracted %s characters from PDF page %s", len(text), index)
            blocks.append(text)
        return blocks


class ExcelExtractor:
    """Extract one text block per non-empty worksheet of an ``.xlsx`` workbook."""

    def extract(self, data: bytes) -> List[str]:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        try:
            blocks = []
            for worksheet in workbook.worksheets:
                text = _render_rows(worksheet.iter_rows(values_only=True))
                if text.strip():
                    blocks.append(text)
            return blocks
        finally:
            workbook.close()


class LegacyExcelExtractor:
    """Extract worksheets from legacy ``.xls`` workbooks."""

    def extract(self, data: bytes) -> List[str]:
        workbook = xlrd.open_workbook(file_contents=data)
        blocks = []
        for sheet in workbook.sheets():
            rows = (sheet.row_values(row_index) for row_index in range(sheet.nrows))
            text = _render_rows(rows)
            if text.strip():
                blocks.append(text)
        return blocks


class DocxExtractor:
    """Extract the paragraphs of a Word document as a single block."""

    def extract(self, data: bytes) -> List[str]:
        document = DocxDocument(io.BytesIO(data))
        text_parts = [paragraph.text for paragraph in document.paragraphs if paragraph.text.strip()]
        return ["\n\n".join(text_parts)] if text_parts else []


class PlainTextExtractor:
    """Extract text from plaintext documents."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding

    def extract(self, data: bytes) -> List[str]:
        text = data.decode(self.encoding)
        return [text] if text else []


def _render_rows(rows: Iterable[Iterable[object]]) -> str:
    lines = []
    for row in rows:
        cells = [str(value).strip() for value in row if value is not None and str(value).strip()]
        if cells:
            lines.append(EXCEL_CELL_SEPARATOR.join(cells))
    return "\n".join(lines)


def default_extractors() -> dict[DocumentFormat, TextExtractor]:
    return {
        DocumentFormat.PDF: PDFExtractor(),
        DocumentFormat.XLSX: ExcelExtractor(),
        DocumentFormat.XLS: LegacyExcelExtractor(),
        DocumentFormat.DOCX: DocxExtractor(),
        DocumentFormat.TXT: PlainTextExtractor(),
    }

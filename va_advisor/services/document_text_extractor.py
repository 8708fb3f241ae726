"""
Document text extraction for uploaded SOP files.

Works on the uploaded bytes with Python-native libraries. Handles PDF,
DOCX, XLSX, CSV, TXT and Markdown.
"""

import csv
import io
import logging
import os
import re
import zipfile
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ExtractionFailure(str, Enum):
    UNSUPPORTED_TYPE = "unsupported_type"
    CORRUPT = "corrupt"
    PASSWORD_PROTECTED = "password_protected"
    EMPTY = "empty"


class DocumentExtractionError(Exception):
    """Raised when a document yields no usable text."""

    def __init__(self, reason: ExtractionFailure, message: str) -> None:
        self.reason = reason
        super().__init__(message)


@dataclass
class ExtractionResult:
    """Result of text extraction from a document."""

    text: str
    page_count: int = 0
    word_count: int = 0
    format: str = "unknown"
    title: Optional[str] = None
    metadata: dict = field(default_factory=dict)


_MIME_FORMATS = {
    "application/pdf": "pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "text/csv": "csv",
    "text/plain": "txt",
    "text/markdown": "txt",
}

_EXTENSION_FORMATS = {
    ".pdf": "pdf",
    ".docx": "docx",
    ".xlsx": "xlsx",
    ".csv": "csv",
    ".txt": "txt",
    ".md": "txt",
    ".markdown": "txt",
}


def _normalize_whitespace(text: str) -> str:
    text = re.sub(r"[ \t]+", " ", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


class DocumentTextExtractor:
    """
    Pure Python document text extractor.

    Dispatches on the file extension first and the content type second.
    """

    SUPPORTED_EXTENSIONS = set(_EXTENSION_FORMATS)

    def detect_format(self, filename: str, content_type: Optional[str] = None) -> Optional[str]:
        ext = os.path.splitext(filename or "")[1].lower()
        if ext in _EXTENSION_FORMATS:
            return _EXTENSION_FORMATS[ext]
        if content_type:
            return _MIME_FORMATS.get(content_type.split(";")[0].strip().lower())
        return None

    def extract_text(
        self, content: bytes, filename: str, content_type: Optional[str] = None
    ) -> ExtractionResult:
        """
        Extract text from an uploaded document.

        Args:
            content: Raw file bytes
            filename: Original filename (used for extension detection)
            content_type: Upload MIME type, used when the extension is unknown

        Returns:
            ExtractionResult with extracted text and metadata

        Raises:
            DocumentExtractionError: Unsupported, unreadable or empty documents
        """
        fmt = self.detect_format(filename, content_type)
        if fmt is None:
            raise DocumentExtractionError(
                ExtractionFailure.UNSUPPORTED_TYPE,
                "Unsupported file type. Allowed types: PDF, DOCX, XLSX, CSV, TXT, MD.",
            )
        if not content:
            raise DocumentExtractionError(ExtractionFailure.EMPTY, f"{filename} is empty")

        title = os.path.splitext(filename or "")[0] or None
        if fmt == "pdf":
            result = self._extract_pdf(content, title)
        elif fmt == "docx":
            result = self._extract_docx(content, title)
        elif fmt == "xlsx":
            result = self._extract_xlsx(content, title)
        elif fmt == "csv":
            result = self._extract_csv(content, title)
        else:
            result = self._extract_txt(content, title)

        if not result.text.strip():
            raise DocumentExtractionError(
                ExtractionFailure.EMPTY, f"{fmt.upper()} parsing returned no text content"
            )
        logger.info(f"Extracted {result.word_count} words from {filename} ({fmt})")
        return result

    def _extract_pdf(self, content: bytes, title: Optional[str]) -> ExtractionResult:
        """Extract text from PDF using pypdf."""
        from pypdf import PdfReader
        from pypdf.errors import PdfReadError

        try:
            reader = PdfReader(io.BytesIO(content))
            if reader.is_encrypted and not reader.decrypt(""):
                raise DocumentExtractionError(
                    ExtractionFailure.PASSWORD_PROTECTED,
                    "PDF is password-protected and cannot be parsed",
                )
            pages = []
            for page in reader.pages:
                text = page.extract_text()
                if text:
                    pages.append(text)
        except PdfReadError as e:
            raise DocumentExtractionError(
                ExtractionFailure.CORRUPT, f"Invalid or corrupted PDF file: {e}"
            ) from e

        full_text = "\n".join(pages).strip()
        meta = reader.metadata

        return ExtractionResult(
            text=full_text,
            page_count=len(reader.pages),
            word_count=len(full_text.split()),
            format="pdf",
            title=(meta.title if meta else None) or title,
            metadata={
                "author": meta.author if meta else None,
                "subject": meta.subject if meta else None,
            },
        )

    def _extract_docx(self, content: bytes, title: Optional[str]) -> ExtractionResult:
        """Extract text from DOCX using python-docx."""
        from docx import Document
        from docx.opc.exceptions import PackageNotFoundError

        try:
            doc = Document(io.BytesIO(content))
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError) as e:
            raise DocumentExtractionError(
                ExtractionFailure.CORRUPT, f"Invalid or corrupted DOCX file: {e}"
            ) from e

        paragraphs = [para.text for para in doc.paragraphs if para.text.strip()]

        # Tables carry most of the structure in SOP templates
        for table in doc.tables:
            for row in table.rows:
                row_text = " | ".join(
                    cell.text.strip() for cell in row.cells if cell.text.strip()
                )
                if row_text:
                    paragraphs.append(row_text)

        full_text = _normalize_whitespace("\n\n".join(paragraphs))
        props = doc.core_properties

        return ExtractionResult(
            text=full_text,
            page_count=1,  # DOCX doesn't expose page count natively
            word_count=len(full_text.split()),
            format="docx",
            title=(props.title if props else None) or title,
            metadata={"author": props.author if props else None},
        )

    def _extract_xlsx(self, content: bytes, title: Optional[str]) -> ExtractionResult:
        """Extract text from XLSX using openpyxl."""
        from openpyxl import load_workbook
        from openpyxl.utils.exceptions import InvalidFileException

        try:
            wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError) as e:
            raise DocumentExtractionError(
                ExtractionFailure.CORRUPT, f"Invalid or corrupted XLSX file: {e}"
            ) from e

        sheets_text = []
        sheet_names = list(wb.sheetnames)
        for sheet_name in sheet_names:
            ws = wb[sheet_name]
            rows = []
            for row in ws.iter_rows(values_only=True):
                row_vals = [str(v) for v in row if v is not None]
                if row_vals:
                    rows.append(" | ".join(row_vals))
            if rows:
                sheets_text.append(f"--- Sheet: {sheet_name} ---\n" + "\n".join(rows))
        wb.close()

        full_text = "\n\n".join(sheets_text)

        return ExtractionResult(
            text=full_text,
            page_count=len(sheet_names),
            word_count=len(full_text.split()),
            format="xlsx",
            title=title,
        )

    def _extract_csv(self, content: bytes, title: Optional[str]) -> ExtractionResult:
        """Extract text from CSV."""
        reader = csv.reader(io.StringIO(content.decode("utf-8", errors="replace")))
        rows = []
        for row in reader:
            row_text = " | ".join(cell.strip() for cell in row if cell.strip())
            if row_text:
                rows.append(row_text)

        full_text = "\n".join(rows)

        return ExtractionResult(
            text=full_text,
            page_count=1,
            word_count=len(full_text.split()),
            format="csv",
            title=title,
        )

    def _extract_txt(self, content: bytes, title: Optional[str]) -> ExtractionResult:
        """Extract text from plain text or Markdown."""
        full_text = _normalize_whitespace(content.decode("utf-8", errors="replace"))

        return ExtractionResult(
            text=full_text,
            page_count=1,
            word_count=len(full_text.split()),
            format="txt",
            title=title,
        )


def extract_text(
    content: bytes, filename: str, content_type: Optional[str] = None
) -> ExtractionResult:
    """Module-level shortcut for :meth:`DocumentTextExtractor.extract_text`."""
    return DocumentTextExtractor().extract_text(content, filename, content_type)

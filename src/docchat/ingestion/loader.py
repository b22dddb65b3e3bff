"""PDF text extraction."""

from __future__ import annotations

import asyncio
import io
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from pypdf import PdfReader

from docchat.errors import ExtractionError, ExtractionFailureKind

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"

_WHITESPACE = re.compile(r"\s+")
_SENTENCE_BREAK = re.compile(r"([.!?])\s*([A-Z])")


@dataclass
class ExtractedText:
    """Normalised document text.

    Attributes
    ----------
    text:
        Full text, pages separated by blank lines.
    page_count:
        Number of pages in the source document.
    page_offsets:
        ``(start offset in text, 1-based page number)`` for every page
        that contributed text, in ascending order.
    """

    text: str
    page_count: int
    page_offsets: list[tuple[int, int]] = field(default_factory=list)

    def page_for_offset(self, offset: int) -> int | None:
        """Return the page containing *offset*, or ``None`` if unknown."""
        if not self.page_offsets:
            return None
        page = self.page_offsets[0][1]
        for start, number in self.page_offsets:
            if start > offset:
                break
            page = number
        return page


def normalize_text(raw: str) -> str:
    """Collapse whitespace and start a new paragraph after each sentence."""
    text = _WHITESPACE.sub(" ", raw).strip()
    return _SENTENCE_BREAK.sub(r"\1\n\n\2", text)


def is_pdf(data: bytes) -> bool:
    return data[:1024].lstrip().startswith(PDF_MAGIC)


class TextExtractor(ABC):
    """Turns uploaded file bytes into plain text."""

    @abstractmethod
    async def extract(self, data: bytes) -> ExtractedText:
        """Raise :class:`ExtractionError` when no usable text can be produced."""
        ...


class PdfTextExtractor(TextExtractor):
    """``pypdf``-based extractor.

    Parsing is CPU-bound and runs in a worker thread.
    """

    async def extract(self, data: bytes) -> ExtractedText:
        if not is_pdf(data):
            raise ExtractionError(
                "File is not a PDF document", ExtractionFailureKind.UNSUPPORTED_FORMAT
            )
        try:
            return await asyncio.to_thread(self._extract_sync, data)
        except ExtractionError:
            raise
        except Exception as exc:
            logger.warning("PDF parsing failed: %s", exc)
            raise ExtractionError(f"PDF parsing failed: {exc}") from exc

    def _extract_sync(self, data: bytes) -> ExtractedText:
        reader = PdfReader(io.BytesIO(data))
        if reader.is_encrypted and not reader.decrypt(""):
            raise ExtractionError(
                "PDF is password-protected", ExtractionFailureKind.PASSWORD_PROTECTED
            )

        page_count = len(reader.pages)
        if page_count == 0:
            raise ExtractionError("No pages found in PDF", ExtractionFailureKind.NO_TEXT)

        parts: list[str] = []
        offsets: list[tuple[int, int]] = []
        cursor = 0
        for number, page in enumerate(reader.pages, 1):
            page_text = normalize_text(page.extract_text() or "")
            if not page_text:
                continue
            if parts:
                cursor += 2  # "\n\n" separator
            offsets.append((cursor, number))
            parts.append(page_text)
            cursor += len(page_text)

        text = "\n\n".join(parts)
        logger.info("Extracted %d characters from %d pages", len(text), page_count)
        return ExtractedText(text=text, page_count=page_count, page_offsets=offsets)

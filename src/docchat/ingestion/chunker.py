"""Text chunking strategies."""

from __future__ import annotations

import logging
from typing import Any

from langchain_text_splitters import TextSplitter

from docchat.config import settings

logger = logging.getLogger(__name__)


class SentenceBoundarySplitter(TextSplitter):
    """Fixed-window splitter that snaps chunk ends to sentence or line breaks.

    Each window is ``chunk_size`` characters.  If a ``.`` or newline
    falls in the second half of the window the chunk ends just after it,
    so chunks stay coherent and the last fragment is never tiny.
    Consecutive chunks share ``chunk_overlap`` characters and the cursor
    always moves forward by at least one character.

    Parameters
    ----------
    chunk_size:
        Maximum number of characters per chunk.
    chunk_overlap:
        Number of characters repeated at the start of the next chunk.
    max_iterations:
        Safety ceiling on windows scanned.  Reaching it logs a warning and
        returns the chunks produced so far.
    """

    def __init__(
        self,
        chunk_size: int = settings.chunk_size,
        chunk_overlap: int = settings.chunk_overlap,
        *,
        max_iterations: int = settings.chunk_max_iterations,
        **kwargs: Any,
    ) -> None:
        super().__init__(chunk_size=chunk_size, chunk_overlap=chunk_overlap, **kwargs)
        self.max_iterations = max_iterations

    def split_text(self, text: str) -> list[str]:
        size = self._chunk_size
        overlap = self._chunk_overlap
        length = len(text)

        chunks: list[str] = []
        cursor = 0
        iterations = 0
        while cursor < length:
            if iterations >= self.max_iterations:
                logger.warning(
                    "Splitter hit max iterations (%d) at offset %d/%d; keeping %d chunks",
                    self.max_iterations,
                    cursor,
                    length,
                    len(chunks),
                )
                break
            iterations += 1

            end = min(cursor + size, length)
            if end < length:
                # Search [cursor, end) only: a break at index end would make the chunk size + 1.
                breakpoint_ = max(text.rfind(".", cursor, end), text.rfind("\n", cursor, end))
                if breakpoint_ > cursor + size * 0.5:
                    end = breakpoint_ + 1

            piece = text[cursor:end].strip()
            if piece:
                chunks.append(piece)

            if end >= length:
                break
            cursor = max(end - overlap, cursor + 1)

        logger.debug("Split %d characters into %d chunks", length, len(chunks))
        return chunks


def split_text(
    text: str,
    chunk_size: int = settings.chunk_size,
    chunk_overlap: int = settings.chunk_overlap,
) -> list[str]:
    """Split *text* into overlapping, boundary-aware chunks.

    Returns an empty list for empty or whitespace-only input.
    """
    return SentenceBoundarySplitter(chunk_size=chunk_size, chunk_overlap=chunk_overlap).split_text(text)

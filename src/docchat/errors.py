"""Error taxonomy for ingestion and retrieval.

Only :class:`ExtractionError` is fatal to an ingestion run.  Embedding
and vector-index errors are tolerated per chunk / per stage during
ingestion; on the query path an :class:`EmbeddingServiceError`
propagates to the caller while a :class:`VectorIndexError` triggers the
local fallback scan.
"""

from __future__ import annotations

from enum import Enum


class DocChatError(Exception):
    """Base class for all errors raised by the ingestion/retrieval core."""


class ExtractionFailureKind(str, Enum):
    CORRUPTED = "corrupted"
    PASSWORD_PROTECTED = "password_protected"
    NO_TEXT = "no_text"
    UNSUPPORTED_FORMAT = "unsupported_format"
    UNKNOWN = "unknown"


_FRIENDLY_EXTRACTION_MESSAGES: dict[ExtractionFailureKind, str] = {
    ExtractionFailureKind.CORRUPTED: (
        "The PDF file appears to be corrupted or incomplete. Please re-export it and upload again."
    ),
    ExtractionFailureKind.PASSWORD_PROTECTED: (
        "The PDF is password-protected. Remove the password and upload it again."
    ),
    ExtractionFailureKind.NO_TEXT: (
        "No readable text was found in the PDF. It may contain only scanned images."
    ),
    ExtractionFailureKind.UNSUPPORTED_FORMAT: "Only PDF documents are supported.",
}

# Checked in order; the first matching substring wins.
_EXTRACTION_MARKERS: list[tuple[tuple[str, ...], ExtractionFailureKind]] = [
    (("password", "encrypt", "decrypt"), ExtractionFailureKind.PASSWORD_PROTECTED),
    (("not a pdf", "unsupported", "only pdf"), ExtractionFailureKind.UNSUPPORTED_FORMAT),
    (
        ("too short", "no text", "empty", "no pages", "image"),
        ExtractionFailureKind.NO_TEXT,
    ),
    (
        ("invalid pdf", "corrupt", "eof marker", "startxref", "xref", "stream ended", "damaged"),
        ExtractionFailureKind.CORRUPTED,
    ),
]


def classify_extraction_error(message: str) -> ExtractionFailureKind:
    """Infer a user-facing failure category from an extractor's error message."""
    lowered = message.lower()
    for markers, kind in _EXTRACTION_MARKERS:
        if any(marker in lowered for marker in markers):
            return kind
    return ExtractionFailureKind.UNKNOWN


class ExtractionError(DocChatError):
    """The document text is unusable: unreadable, encrypted, empty or too short.

    Attributes
    ----------
    kind:
        Classified failure category.
    user_message:
        Sanitized text suitable for ``Document.error_message``.
    """

    def __init__(self, message: str, kind: ExtractionFailureKind | None = None) -> None:
        super().__init__(message)
        self.kind = kind or classify_extraction_error(message)
        self.user_message = _FRIENDLY_EXTRACTION_MESSAGES.get(
            self.kind, f"PDF processing failed: {message}"
        )


class EmbeddingServiceError(DocChatError):
    """The embedding backend failed (quota, network, auth, model load)."""


class VectorIndexError(DocChatError):
    """A vector-index operation failed or the index could not be initialised."""


class NotFoundError(DocChatError):
    """A requested document does not exist or is not visible to the caller."""


class ConfigurationError(DocChatError):
    """Static configuration is inconsistent, e.g. embedding dimension mismatch."""


_FRIENDLY_RUNTIME_MESSAGES: list[tuple[str, str]] = [
    ("embedding", "The embedding service is unavailable. Please try again later."),
    ("timed out", "Processing timed out. Please try again."),
    ("timeout", "Processing timed out. Please try again."),
    ("quota", "The AI service quota was exceeded. Please try again later."),
]


def sanitize_error_message(exc: BaseException) -> str:
    """Map an exception to the message stored on a failed Document.

    Extraction errors carry their own classified message.  Other errors
    are matched against known substrings; unmatched messages are
    returned verbatim.
    """
    if isinstance(exc, ExtractionError):
        return exc.user_message
    raw = str(exc) or type(exc).__name__
    lowered = raw.lower()
    for marker, friendly in _FRIENDLY_RUNTIME_MESSAGES:
        if marker in lowered:
            return friendly
    return raw

"""Error types raised by the extraction and lyrics services."""
from __future__ import annotations

from typing import Optional

YTDLP_HINT = "Make sure yt-dlp is installed: pip install yt-dlp"


class JazzPlayerError(Exception):
    """Base exception for the backend."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInput(JazzPlayerError):
    """Malformed or missing request field."""


class ProcessError(JazzPlayerError):
    """An external process could not be run to completion."""


class ToolNotFound(ProcessError):
    """The executable is not installed or not on PATH."""


class ProcessTimeout(ProcessError):
    """The child process exceeded its time limit and was killed."""


class ExtractionError(JazzPlayerError):
    """Base for failures of the audio extraction pipeline."""

    def __init__(self, message: str, details: Optional[str] = YTDLP_HINT) -> None:
        super().__init__(message)
        self.details = details


class MetadataFetchFailed(ExtractionError):
    pass


class MetadataParseFailed(ExtractionError):
    pass


class ExtractionFailed(ExtractionError):
    pass


class OutputMissing(ExtractionError):
    pass


class LyricsQueryFailed(JazzPlayerError):
    """Unexpected fault while building a lyrics request or decoding its response."""

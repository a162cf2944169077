"""Error taxonomy for profilestream.

Every failure the analysis pipeline can surface is a :class:`ProfileStreamError`
carrying a machine-readable ``code``, a ``category``, a ``retriable`` flag,
and a ``user_message`` that is always safe to display. The raw cause is kept
on ``original_error`` for logging and is never shown to users.

Example:
    >>> try:
    ...     await source.extract_chunked(path, ...)
    ... except FrameExtractionError as e:
    ...     if e.retriable:
    ...         ...  # offer a retry
    ...     print(e.user_message)
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any


GENERIC_USER_MESSAGE = "An unexpected error occurred. Please try again."


class ErrorCategory(str, Enum):
    MEDIA = "media"
    ANALYSIS = "analysis"
    STORAGE = "storage"
    SYNC = "sync"
    NETWORK = "network"
    UNKNOWN = "unknown"


# =============================================================================
# Base Error
# =============================================================================


class ProfileStreamError(Exception):
    """Base exception for all profilestream errors.

    Attributes:
        message: Developer-facing description (safe to log).
        code: Stable error code, e.g. ``"FRAME_EXTRACTION_TIMEOUT"``.
        category: Broad failure area.
        retriable: Whether repeating the operation may succeed.
        context: Extra diagnostic values (never shown to users).
        original_error: The underlying exception, if any.
        timestamp: When the error was created (UTC).
    """

    default_code = "UNKNOWN_ERROR"
    default_category = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        code: str | None = None,
        category: ErrorCategory | None = None,
        retriable: bool = False,
        context: dict[str, Any] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.category = category or self.default_category
        self.retriable = retriable
        self.context = context or {}
        self.original_error = original_error
        self.timestamp = datetime.now(tz=timezone.utc)

    def __str__(self) -> str:
        return self.message

    @property
    def user_message(self) -> str:
        """Message safe to show to end users."""
        return GENERIC_USER_MESSAGE

    @property
    def hint(self) -> str | None:
        """Optional suggestion for what the user can do next."""
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logs and diagnostics exports."""
        return {
            "name": type(self).__name__,
            "code": self.code,
            "category": self.category.value,
            "message": self.message,
            "retriable": self.retriable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": repr(self.original_error) if self.original_error else None,
        }

    @classmethod
    def from_exception(
        cls,
        error: BaseException,
        code: str = "UNKNOWN_ERROR",
        category: ErrorCategory = ErrorCategory.UNKNOWN,
    ) -> "ProfileStreamError":
        """Return ``error`` if already typed, else wrap it with a fallback code."""
        if isinstance(error, ProfileStreamError):
            return error
        return ProfileStreamError(
            str(error) or type(error).__name__,
            code=code,
            category=category,
            original_error=error,
        )


class OperationCancelledError(ProfileStreamError):
    """A cancellable operation observed its cancellation token.

    Cancellation is not a failure; callers treat it as a silent stop.
    """

    default_code = "OPERATION_CANCELLED"

    def __init__(self, message: str = "Operation was cancelled") -> None:
        super().__init__(message, retriable=False)

    @property
    def user_message(self) -> str:
        return "The analysis was cancelled."


# =============================================================================
# Media Errors
# =============================================================================


class FrameExtractionReason(str, Enum):
    LOAD_FAILED = "load_failed"
    DECODE_FAILED = "decode_failed"
    CANVAS_FAILED = "canvas_failed"
    TIMEOUT = "timeout"
    ABORTED = "aborted"


_FRAME_USER_MESSAGES = {
    FrameExtractionReason.LOAD_FAILED: "We couldn't open that video. Please try a different file.",
    FrameExtractionReason.DECODE_FAILED: "This video format isn't supported. Try an MP4 or MOV file.",
    FrameExtractionReason.CANVAS_FAILED: "We had trouble reading frames from this video.",
    FrameExtractionReason.TIMEOUT: "Processing the video took too long. Try a shorter recording.",
    FrameExtractionReason.ABORTED: "Frame extraction was cancelled.",
}


class FrameExtractionError(ProfileStreamError):
    """Frames could not be captured or scored.

    Retriable for every reason except a user-initiated abort.

    Attributes:
        reason: Which stage failed.
        frame_index: Frame being processed when the failure happened, if known.
    """

    default_category = ErrorCategory.MEDIA

    def __init__(
        self,
        reason: FrameExtractionReason,
        message: str | None = None,
        frame_index: int | None = None,
        context: dict[str, Any] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        self.reason = FrameExtractionReason(reason)
        self.frame_index = frame_index
        super().__init__(
            message or f"Frame extraction failed: {self.reason.value}",
            code=f"FRAME_EXTRACTION_{self.reason.value.upper()}",
            retriable=self.reason != FrameExtractionReason.ABORTED,
            context={**(context or {}), "frame_index": frame_index},
            original_error=original_error,
        )

    @property
    def is_cancellation(self) -> bool:
        return self.reason == FrameExtractionReason.ABORTED

    @property
    def user_message(self) -> str:
        return _FRAME_USER_MESSAGES[self.reason]

    @property
    def hint(self) -> str | None:
        if self.reason == FrameExtractionReason.TIMEOUT:
            return "Recordings under a minute work best."
        return None


# =============================================================================
# Analysis Errors
# =============================================================================


class ChunkAnalysisError(ProfileStreamError):
    """Inference failed for a single chunk; the run continues without it."""

    default_code = "CHUNK_ANALYSIS_FAILED"
    default_category = ErrorCategory.ANALYSIS

    def __init__(
        self,
        chunk_index: int,
        total_chunks: int,
        message: str | None = None,
        retriable: bool = True,
        context: dict[str, Any] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        self.chunk_index = chunk_index
        self.total_chunks = total_chunks
        super().__init__(
            message or f"Chunk {chunk_index + 1}/{total_chunks} analysis failed",
            retriable=retriable,
            context={**(context or {}), "chunk_index": chunk_index, "total_chunks": total_chunks},
            original_error=original_error,
        )

    @property
    def user_message(self) -> str:
        return "Part of the analysis failed. We'll use what we could extract."


# =============================================================================
# Storage and Sync Errors
# =============================================================================


class StorageError(ProfileStreamError):
    """A read or write against the local record store failed."""

    default_code = "STORAGE_ERROR"
    default_category = ErrorCategory.STORAGE

    def __init__(
        self,
        message: str,
        location: str = "local",
        context: dict[str, Any] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        self.location = location
        super().__init__(
            message,
            retriable=True,
            context={**(context or {}), "location": location},
            original_error=original_error,
        )

    @property
    def user_message(self) -> str:
        return "We couldn't save your results. Please check available disk space."


class SyncError(ProfileStreamError):
    """Replicating a record to the remote store failed."""

    default_code = "SYNC_ERROR"
    default_category = ErrorCategory.SYNC

    def __init__(
        self,
        message: str,
        operation: str = "push",
        context: dict[str, Any] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        self.operation = operation
        super().__init__(
            message,
            retriable=True,
            context={**(context or {}), "operation": operation},
            original_error=original_error,
        )

    @property
    def user_message(self) -> str:
        return "Your results are saved on this device and will sync later."


def is_cancellation(error: BaseException) -> bool:
    """True when ``error`` signals cancellation rather than failure."""
    if isinstance(error, OperationCancelledError):
        return True
    return isinstance(error, FrameExtractionError) and error.is_cancellation

"""Tests for the error taxonomy."""

from __future__ import annotations

import pytest

from profilestream.errors import (
    GENERIC_USER_MESSAGE,
    ChunkAnalysisError,
    ErrorCategory,
    FrameExtractionError,
    FrameExtractionReason,
    OperationCancelledError,
    ProfileStreamError,
    StorageError,
    SyncError,
    is_cancellation,
)


class TestFrameExtractionError:
    """Codes, retriability and messages per failure reason."""

    @pytest.mark.parametrize(
        "reason,code,retriable",
        [
            (FrameExtractionReason.LOAD_FAILED, "FRAME_EXTRACTION_LOAD_FAILED", True),
            (FrameExtractionReason.DECODE_FAILED, "FRAME_EXTRACTION_DECODE_FAILED", True),
            (FrameExtractionReason.CANVAS_FAILED, "FRAME_EXTRACTION_CANVAS_FAILED", True),
            (FrameExtractionReason.TIMEOUT, "FRAME_EXTRACTION_TIMEOUT", True),
            (FrameExtractionReason.ABORTED, "FRAME_EXTRACTION_ABORTED", False),
        ],
    )
    def test_code_and_retriable(self, reason: FrameExtractionReason, code: str, retriable: bool) -> None:
        error = FrameExtractionError(reason)

        assert error.code == code
        assert error.retriable is retriable
        assert error.category == ErrorCategory.MEDIA

    def test_accepts_reason_string(self) -> None:
        error = FrameExtractionError("timeout", frame_index=6)

        assert error.reason == FrameExtractionReason.TIMEOUT
        assert error.context["frame_index"] == 6
        assert error.hint == "Recordings under a minute work best."

    def test_user_message_hides_details(self) -> None:
        error = FrameExtractionError(
            FrameExtractionReason.DECODE_FAILED, message="ffmpeg exited with status 1: moov atom not found"
        )

        assert error.user_message == "This video format isn't supported. Try an MP4 or MOV file."
        assert "moov" not in error.user_message
        assert str(error) == "ffmpeg exited with status 1: moov atom not found"


class TestOtherErrors:
    def test_chunk_error_defaults(self) -> None:
        error = ChunkAnalysisError(1, 4)

        assert error.message == "Chunk 2/4 analysis failed"
        assert error.code == "CHUNK_ANALYSIS_FAILED"
        assert error.retriable
        assert error.context == {"chunk_index": 1, "total_chunks": 4}

    def test_storage_error(self) -> None:
        error = StorageError("disk full", context={"record_id": 3})

        assert error.category == ErrorCategory.STORAGE
        assert error.context == {"record_id": 3, "location": "local"}
        assert "disk space" in error.user_message

    def test_sync_error(self) -> None:
        error = SyncError("push failed", operation="pull")

        assert error.context["operation"] == "pull"
        assert error.user_message == "Your results are saved on this device and will sync later."

    def test_base_error_uses_generic_message(self) -> None:
        assert ProfileStreamError("boom").user_message == GENERIC_USER_MESSAGE


class TestHelpers:
    def test_from_exception_wraps_untyped(self) -> None:
        cause = ValueError("bad value")

        error = ProfileStreamError.from_exception(cause, code="X", category=ErrorCategory.NETWORK)

        assert error.message == "bad value"
        assert error.code == "X"
        assert error.original_error is cause

    def test_from_exception_keeps_typed(self) -> None:
        original = StorageError("disk full")

        assert ProfileStreamError.from_exception(original) is original

    def test_from_exception_without_message_uses_type_name(self) -> None:
        assert ProfileStreamError.from_exception(KeyError()).message == "KeyError"

    def test_to_dict(self) -> None:
        data = StorageError("disk full", original_error=OSError("ENOSPC")).to_dict()

        assert data["name"] == "StorageError"
        assert data["code"] == "STORAGE_ERROR"
        assert data["category"] == "storage"
        assert data["cause"] == "OSError('ENOSPC')"

    @pytest.mark.parametrize(
        "error,expected",
        [
            (OperationCancelledError(), True),
            (FrameExtractionError(FrameExtractionReason.ABORTED), True),
            (FrameExtractionError(FrameExtractionReason.TIMEOUT), False),
            (RuntimeError("boom"), False),
        ],
    )
    def test_is_cancellation(self, error: BaseException, expected: bool) -> None:
        assert is_cancellation(error) is expected

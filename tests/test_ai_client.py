"""Tests for the Gemini client wrapper.

The SDK client is replaced by a MagicMock whose ``aio.models.generate_content``
is an AsyncMock, so no network access happens.
"""

from __future__ import annotations

import asyncio
import base64
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from google.genai import errors as genai_errors
from google.genai import types

from profilestream.ai.client import (
    JSON_INSTRUCTION,
    AIAuthenticationError,
    AIBadRequestError,
    AIClient,
    AIClientError,
    AIRateLimitError,
    AIServerError,
    AITimeoutError,
    APIKeyMissingError,
    ContentBlockedError,
    ModelNotAvailableError,
    TokenLimitExceededError,
    frame_to_part,
    parse_json_text,
)
from profilestream.config import AISettings, APIKeyNotFoundError

# =============================================================================
# Helper Functions
# =============================================================================


def sdk_response(text: str = '{"name": "Sam"}', block_reason: str | None = None) -> MagicMock:
    return MagicMock(
        text=text,
        prompt_feedback=MagicMock(block_reason=block_reason) if block_reason else None,
        usage_metadata=MagicMock(total_token_count=42),
        candidates=[MagicMock(finish_reason=types.FinishReason.STOP)],
    )


def api_error(code: int, message: str = "failure") -> genai_errors.APIError:
    body = {"error": {"code": code, "message": message, "status": "ERROR"}}
    if code >= 500:
        return genai_errors.ServerError(code, body)
    return genai_errors.ClientError(code, body)


def make_client(side_effect: Any = None, max_retries: int = 2) -> tuple[AIClient, AsyncMock]:
    generate = AsyncMock(side_effect=side_effect, return_value=sdk_response())
    sdk = MagicMock()
    sdk.aio.models.generate_content = generate
    settings = AISettings(max_retries=max_retries, retry_base_delay=0.0)
    return AIClient(settings=settings, client=sdk), generate


def generate(client: AIClient, **kwargs: Any):
    kwargs.setdefault("max_output_tokens", 500)
    kwargs.setdefault("timeout_seconds", 30)
    return asyncio.run(client.generate_json("Describe the profile", **kwargs))


@pytest.fixture(autouse=True)
def no_jitter():
    with patch("profilestream.ai.client.random.uniform", return_value=0.0):
        yield


# =============================================================================
# Construction
# =============================================================================


class TestConstruction:
    def test_missing_key_raises(self) -> None:
        with patch(
            "profilestream.ai.client.get_api_key",
            side_effect=APIKeyNotFoundError("no key"),
        ):
            with pytest.raises(APIKeyMissingError, match="config set-key"):
                AIClient()

    def test_explicit_key_builds_sdk_client(self) -> None:
        with patch("profilestream.ai.client.genai.Client") as client_cls:
            client = AIClient(api_key="test-key-1234567890")

        client_cls.assert_called_once_with(api_key="test-key-1234567890")
        assert client.model_name == AISettings().model_name


# =============================================================================
# Generation
# =============================================================================


class TestGenerateJson:
    """Request shape and response parsing."""

    def test_parses_json_response(self) -> None:
        client, _ = make_client()

        response = generate(client)

        assert response.parse_success
        assert response.data == {"name": "Sam"}
        assert response.tokens_used == 42
        assert response.finish_reason == "STOP"
        assert response.model == client.model_name

    def test_request_contents_and_config(self) -> None:
        client, sdk_call = make_client()

        generate(client, images=[b"\xff\xd8one", b"\xff\xd8two"], system_instruction="Be kind.")

        kwargs = sdk_call.await_args.kwargs
        contents = kwargs["contents"]
        assert len(contents) == 3
        assert isinstance(contents[0], types.Part)
        assert contents[-1] == "Describe the profile"
        assert kwargs["config"].max_output_tokens == 500
        assert kwargs["config"].response_mime_type == "application/json"
        assert kwargs["config"].system_instruction == f"Be kind.\n\n{JSON_INSTRUCTION}"

    def test_unparseable_text_is_reported_not_raised(self) -> None:
        client, sdk_call = make_client()
        sdk_call.return_value = sdk_response(text="Sorry, I can't help with that.")

        response = generate(client)

        assert not response.parse_success
        assert response.parse_error.startswith("JSON parse error")
        assert response.raw_text == "Sorry, I can't help with that."

    def test_blocked_prompt_raises(self) -> None:
        client, sdk_call = make_client()
        sdk_call.return_value = sdk_response(block_reason="SAFETY")

        with pytest.raises(ContentBlockedError) as exc_info:
            generate(client)

        assert exc_info.value.blocked_reason == "SAFETY"


# =============================================================================
# Retry and Error Mapping
# =============================================================================


class TestRetry:
    def test_transient_errors_are_retried(self) -> None:
        client, sdk_call = make_client(
            side_effect=[api_error(503), api_error(429), sdk_response()]
        )

        response = generate(client)

        assert response.data == {"name": "Sam"}
        assert sdk_call.await_count == 3

    def test_gives_up_after_max_retries(self) -> None:
        client, sdk_call = make_client(side_effect=api_error(500), max_retries=2)

        with pytest.raises(AIServerError):
            generate(client)

        assert sdk_call.await_count == 3

    def test_permanent_errors_are_not_retried(self) -> None:
        client, sdk_call = make_client(side_effect=api_error(401))

        with pytest.raises(AIAuthenticationError):
            generate(client)

        assert sdk_call.await_count == 1

    def test_timeout_maps_to_timeout_error(self) -> None:
        client, _ = make_client(side_effect=asyncio.TimeoutError(), max_retries=0)

        with pytest.raises(AITimeoutError) as exc_info:
            generate(client, timeout_seconds=45)

        assert exc_info.value.timeout_seconds == 45


class TestMapException:
    @pytest.mark.parametrize(
        "error,expected",
        [
            (api_error(400, "Image could not be processed"), AIBadRequestError),
            (api_error(400, "Input token count exceeds the maximum"), TokenLimitExceededError),
            (api_error(403), AIAuthenticationError),
            (api_error(404), ModelNotAvailableError),
            (api_error(429), AIRateLimitError),
            (api_error(504), AITimeoutError),
            (api_error(502), AIServerError),
            (RuntimeError("Response blocked by safety settings"), ContentBlockedError),
            (RuntimeError("rate limit reached"), AIRateLimitError),
            (RuntimeError("503 Service Unavailable"), AIServerError),
            (RuntimeError("deadline expired"), AITimeoutError),
            (RuntimeError("model xyz not found"), ModelNotAvailableError),
        ],
    )
    def test_mapping(self, error: Exception, expected: type[AIClientError]) -> None:
        client, _ = make_client()

        mapped = client._map_exception(error)

        assert isinstance(mapped, expected)
        assert mapped.original_error is error

    def test_unknown_error_is_not_retriable(self) -> None:
        client, _ = make_client()

        mapped = client._map_exception(RuntimeError("something odd"))

        assert type(mapped) is AIClientError
        assert not mapped.retriable


# =============================================================================
# Helpers
# =============================================================================


class TestParseJsonText:
    def test_plain_json(self) -> None:
        assert parse_json_text('  {"a": 1}  ') == ({"a": 1}, None)

    def test_fenced_code_block(self) -> None:
        data, error = parse_json_text('Here you go:\n```json\n{"a": [1, 2]}\n```')

        assert data == {"a": [1, 2]}
        assert error is None

    def test_embedded_object(self) -> None:
        assert parse_json_text('Result: {"name": "Sam"} hope that helps') == ({"name": "Sam"}, None)

    def test_broken_code_block(self) -> None:
        data, error = parse_json_text("```json\n{broken\n```")

        assert data == {}
        assert "code block" in error

    def test_no_json_at_all(self) -> None:
        data, error = parse_json_text("no json here")

        assert data == {}
        assert error.startswith("JSON parse error:")


class TestFrameToPart:
    def test_bytes(self) -> None:
        part = frame_to_part(b"\xff\xd8jpeg")

        assert part.inline_data.data == b"\xff\xd8jpeg"
        assert part.inline_data.mime_type == "image/jpeg"

    def test_data_url_keeps_mime_type(self) -> None:
        url = "data:image/png;base64," + base64.b64encode(b"png-bytes").decode()

        part = frame_to_part(url)

        assert part.inline_data.data == b"png-bytes"
        assert part.inline_data.mime_type == "image/png"

    def test_invalid_base64(self) -> None:
        with pytest.raises(AIBadRequestError, match="not valid base64"):
            frame_to_part("data:image/jpeg;base64,***")

"""Gemini API client for profilestream.

This module is the only place that talks to the Gemini API. It sends frames
plus a prompt, asks for JSON output, and returns parsed data. Transient
failures are retried with exponential backoff; everything the SDK can raise
is mapped onto the typed :class:`AIClientError` hierarchy so callers can
decide what to do without knowing SDK internals.

Example:
    >>> client = AIClient(api_key=key)
    >>> response = await client.generate_json(
    ...     prompt, images=frames, max_output_tokens=500, timeout_seconds=30
    ... )
    >>> if response.parse_success:
    ...     print(response.data["name"])

Security rules:
- Never log API keys
- Never log prompts or responses (they describe real people)
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import random
import re
import time
from typing import Any, Literal, Sequence

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import BaseModel, Field

from profilestream.config import AISettings, APIKeyNotFoundError, get_api_key
from profilestream.models import Frame

logger = logging.getLogger(__name__)

MAX_RETRY_DELAY = 30.0

JSON_INSTRUCTION = (
    "You must respond with valid JSON only. No markdown, no explanations, "
    "no code blocks - just pure JSON that can be parsed directly."
)


# =============================================================================
# Exception Hierarchy
# =============================================================================


class AIClientError(Exception):
    """Base exception for all AI client errors.

    Attributes:
        message: Human-readable error description (safe to log).
        retriable: Whether the operation can be retried.
        details: Additional error context (don't log).
        original_error: The underlying exception that caused this error.
    """

    def __init__(
        self,
        message: str,
        retriable: bool = False,
        details: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.retriable = retriable
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        return self.message


class APIKeyMissingError(AIClientError):
    """No API key configured."""

    def __init__(
        self,
        message: str | None = None,
        suggestion: str = "Configure your Gemini API key using 'profilestream config set-key'",
    ) -> None:
        self.suggestion = suggestion
        super().__init__(message or f"No API key configured. {suggestion}", retriable=False)


class AIAuthenticationError(AIClientError):
    """API key is invalid or expired. Never retriable."""

    def __init__(
        self,
        message: str = "API authentication failed. Please check your API key.",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, retriable=False, original_error=original_error)


class AIRateLimitError(AIClientError):
    """Rate limit exceeded. Retriable after waiting.

    Attributes:
        retry_after_seconds: Suggested wait time before retry (may be None).
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please wait before retrying.",
        retry_after_seconds: float | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, retriable=True, original_error=original_error)
        self.retry_after_seconds = retry_after_seconds


class AIServerError(AIClientError):
    """Server-side error (5xx). Retriable."""

    def __init__(
        self,
        message: str = "AI server error. The service may be temporarily unavailable.",
        status_code: int | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, retriable=True, original_error=original_error)
        self.status_code = status_code


class AIBadRequestError(AIClientError):
    """Invalid request (bad image, bad parameters). Not retriable."""

    def __init__(
        self,
        message: str = "Invalid request to AI service.",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, retriable=False, original_error=original_error)


class AITimeoutError(AIClientError):
    """Request timed out. Retriable.

    Attributes:
        timeout_seconds: The timeout duration that was exceeded.
    """

    def __init__(
        self,
        timeout_seconds: float,
        message: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        msg = message or f"Request timed out after {timeout_seconds} seconds"
        super().__init__(msg, retriable=True, original_error=original_error)
        self.timeout_seconds = timeout_seconds


class TokenLimitExceededError(AIClientError):
    """Input or output exceeded token limits. Not retriable with the same input."""

    def __init__(
        self,
        message: str = "Token limit exceeded. Please reduce input size.",
        limit_type: Literal["input", "output", "total"] = "total",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, retriable=False, original_error=original_error)
        self.limit_type = limit_type


class ModelNotAvailableError(AIClientError):
    """Requested model doesn't exist or isn't available."""

    def __init__(
        self,
        model_name: str,
        message: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        msg = message or f"Model '{model_name}' not found. Check model name in configuration."
        super().__init__(msg, retriable=False, original_error=original_error)
        self.model_name = model_name


class ContentBlockedError(AIClientError):
    """Content was blocked by safety filters.

    Attributes:
        blocked_reason: The reason for blocking if available.
    """

    def __init__(
        self,
        message: str = "Content blocked by safety filters.",
        blocked_reason: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, retriable=False, original_error=original_error)
        self.blocked_reason = blocked_reason


# =============================================================================
# Response Models
# =============================================================================


class StructuredAIResponse(BaseModel):
    """Parsed JSON output of one generation request.

    If JSON parsing fails, ``parse_success`` is False and ``parse_error``
    says why; ``raw_text`` is always kept.
    """

    data: dict[str, Any] | list[Any] = Field(default_factory=dict)
    raw_text: str
    model: str
    tokens_used: int | None = None
    finish_reason: str | None = None
    latency_ms: float | None = None
    parse_success: bool = True
    parse_error: str | None = None


def parse_json_text(text: str) -> tuple[dict[str, Any] | list[Any], str | None]:
    """Parse model text as JSON.

    Tries the whole text, then the first fenced code block, then the first
    ``{...}`` or ``[...]`` span.

    Returns:
        ``(data, None)`` on success, ``({}, error)`` on failure.
    """
    text = text.strip()
    try:
        return json.loads(text), None
    except json.JSONDecodeError as e:
        first_error = e.msg

    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
    embedded = re.search(r"(\{[\s\S]*\}|\[[\s\S]*\])", text)
    for match, label in ((fenced, "code block"), (embedded, "extracted content")):
        if match:
            try:
                return json.loads(match.group(1)), None
            except json.JSONDecodeError:
                return {}, f"JSON parse error in {label}: {first_error}"

    return {}, f"JSON parse error: {first_error}"


def frame_to_part(frame: Frame) -> types.Part:
    """Build an inline image part from JPEG bytes or a base64 data URL."""
    mime_type = "image/jpeg"
    if isinstance(frame, str):
        payload = frame
        if frame.startswith("data:"):
            header, _, payload = frame.partition(",")
            mime_type = header[len("data:"):].split(";", 1)[0] or mime_type
        try:
            frame = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise AIBadRequestError(f"Frame is not valid base64: {e}") from e
    return types.Part.from_bytes(data=frame, mime_type=mime_type)


# =============================================================================
# AI Client
# =============================================================================


class AIClient:
    """Async Gemini client with retry and typed errors.

    Attributes:
        settings: AI configuration settings.
    """

    def __init__(
        self,
        api_key: str | None = None,
        settings: AISettings | None = None,
        client: Any = None,
    ) -> None:
        """Initialize the AI client.

        Args:
            api_key: Gemini API key. If None, the configured key is used.
            settings: AI settings. Uses defaults if None.
            client: Pre-built ``genai.Client`` (tests inject a mock here).

        Raises:
            APIKeyMissingError: If no API key is available.
        """
        self.settings = settings or AISettings()

        if client is None:
            if api_key is None:
                try:
                    api_key = get_api_key()
                except APIKeyNotFoundError as e:
                    raise APIKeyMissingError() from e
            client = genai.Client(api_key=api_key)

        self._client = client
        logger.debug(f"AI client initialized with model: {self.settings.model_name}")

    @property
    def model_name(self) -> str:
        return self.settings.model_name

    async def generate_json(
        self,
        prompt: str,
        images: Sequence[Frame] = (),
        *,
        max_output_tokens: int,
        timeout_seconds: float,
        system_instruction: str | None = None,
    ) -> StructuredAIResponse:
        """Send images and a prompt, and parse the JSON reply.

        Args:
            prompt: Text prompt, placed after the images.
            images: Frames to include, in order.
            max_output_tokens: Output budget for this request.
            timeout_seconds: Limit for each attempt.
            system_instruction: Extra instruction prepended to the JSON rule.

        Returns:
            StructuredAIResponse; check ``parse_success``.

        Raises:
            AIClientError: On failure after retries are exhausted.
        """
        contents: list[Any] = [frame_to_part(image) for image in images]
        contents.append(prompt)

        instruction = f"{system_instruction}\n\n{JSON_INSTRUCTION}" if system_instruction else JSON_INSTRUCTION
        config = types.GenerateContentConfig(
            system_instruction=instruction,
            temperature=self.settings.temperature,
            max_output_tokens=max_output_tokens,
            response_mime_type="application/json",
        )
        timeout = timeout_seconds * self.settings.timeout_multiplier

        start_time = time.monotonic()
        raw_response = await self._execute_with_retry(contents, config, timeout)
        latency_ms = (time.monotonic() - start_time) * 1000

        text = self._response_text(raw_response)
        data, parse_error = parse_json_text(text)
        usage = getattr(raw_response, "usage_metadata", None)
        tokens = getattr(usage, "total_token_count", None) if usage else None

        logger.info(
            f"Generation finished: {tokens or '?'} tokens in {latency_ms:.0f}ms"
            + ("" if parse_error is None else " (unparseable JSON)")
        )

        return StructuredAIResponse(
            data=data,
            raw_text=text,
            model=self.model_name,
            tokens_used=tokens,
            finish_reason=self._finish_reason(raw_response),
            latency_ms=latency_ms,
            parse_success=parse_error is None,
            parse_error=parse_error,
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _execute_with_retry(
        self, contents: list[Any], config: types.GenerateContentConfig, timeout: float
    ) -> Any:
        retries = self.settings.max_retries
        for attempt in range(retries + 1):
            try:
                return await asyncio.wait_for(
                    self._client.aio.models.generate_content(
                        model=self.model_name, contents=contents, config=config
                    ),
                    timeout=timeout,
                )
            except asyncio.TimeoutError as e:
                mapped: AIClientError = AITimeoutError(timeout, original_error=e)
            except Exception as e:
                mapped = self._map_exception(e)

            if not mapped.retriable:
                raise mapped
            if attempt >= retries:
                logger.error(f"Max retries ({retries}) exhausted: {type(mapped).__name__}")
                raise mapped

            delay = min(self.settings.retry_base_delay * (2**attempt), MAX_RETRY_DELAY)
            delay += random.uniform(0, 1)
            if isinstance(mapped, AIRateLimitError) and mapped.retry_after_seconds:
                delay = max(delay, mapped.retry_after_seconds)

            logger.warning(
                f"Retry {attempt + 1}/{retries} after {delay:.1f}s: {type(mapped).__name__}"
            )
            await asyncio.sleep(delay)

        raise AIClientError("Unknown error during retry")

    def _response_text(self, response: Any) -> str:
        feedback = getattr(response, "prompt_feedback", None)
        block_reason = getattr(feedback, "block_reason", None) if feedback else None
        if block_reason:
            raise ContentBlockedError(blocked_reason=str(block_reason))
        return response.text or ""

    @staticmethod
    def _finish_reason(response: Any) -> str | None:
        candidates = getattr(response, "candidates", None)
        if not candidates:
            return None
        reason = getattr(candidates[0], "finish_reason", None)
        return getattr(reason, "name", None) or (str(reason) if reason else None)

    def _map_exception(self, error: Exception) -> AIClientError:
        """Map SDK exceptions to our exception hierarchy."""
        if isinstance(error, AIClientError):
            return error

        error_str = str(error).lower()

        if isinstance(error, genai_errors.APIError):
            code = error.code
            if code == 400:
                if "token" in error_str:
                    return TokenLimitExceededError(original_error=error)
                return AIBadRequestError(str(error.message or error), original_error=error)
            if code in (401, 403):
                return AIAuthenticationError(original_error=error)
            if code == 404:
                return ModelNotAvailableError(self.model_name, original_error=error)
            if code == 429:
                return AIRateLimitError(original_error=error)
            if code in (408, 504):
                return AITimeoutError(0, message="Request deadline exceeded", original_error=error)
            if isinstance(error, genai_errors.ServerError) or (code and code >= 500):
                return AIServerError(status_code=code, original_error=error)

        if "blocked" in error_str or "safety" in error_str:
            return ContentBlockedError(original_error=error)
        if "401" in error_str or "403" in error_str or "unauthorized" in error_str:
            return AIAuthenticationError(original_error=error)
        if "429" in error_str or "rate limit" in error_str or "resource exhausted" in error_str:
            return AIRateLimitError(original_error=error)
        if "timeout" in error_str or "deadline" in error_str:
            return AITimeoutError(0, message="Request deadline exceeded", original_error=error)
        if "500" in error_str or "502" in error_str or "503" in error_str:
            return AIServerError(original_error=error)
        if "model" in error_str and "not found" in error_str:
            return ModelNotAvailableError(self.model_name, original_error=error)

        return AIClientError(str(error), retriable=False, original_error=error)

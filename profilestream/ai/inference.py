"""Chunk-by-chunk inference for progressive profile analysis.

:class:`StreamingProfileAnalyzer` is the inference collaborator the
controller drives. It walks the frame chunks strictly in order, sends each
one to Gemini with a prompt built from the accumulator so far, validates the
reply into the chunk-result model for that position, and hands it back
through ``on_chunk_complete``. A failing chunk is reported through
``on_error`` and skipped; the run carries on with the next one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

from pydantic import ValidationError

from profilestream.ai.client import AIClient, AIClientError
from profilestream.ai.prompts import build_chunk_prompt, system_prompt
from profilestream.cancellation import CancellationToken
from profilestream.errors import ChunkAnalysisError, OperationCancelledError
from profilestream.models import (
    TOTAL_CHUNKS,
    AccumulatedProfile,
    ChunkResult,
    Frame,
    ProfileKind,
    chunk_result_type,
)
from profilestream.utils.logging import LogContext

if TYPE_CHECKING:
    from profilestream.controller import ChunkAnalysisOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkBudget:
    """Output token budget and timeout for one chunk request."""

    max_output_tokens: int
    timeout_seconds: float


# Basics are short; later chunks carry more context and ask for more
MATCH_BUDGETS = (
    ChunkBudget(500, 30),
    ChunkBudget(800, 30),
    ChunkBudget(1500, 45),
    ChunkBudget(1500, 45),
)

SELF_BUDGETS = (
    ChunkBudget(600, 30),
    ChunkBudget(800, 30),
    ChunkBudget(1500, 45),
    ChunkBudget(2000, 60),
)


def chunk_budget(kind: ProfileKind, chunk_index: int) -> ChunkBudget:
    budgets = MATCH_BUDGETS if kind == ProfileKind.MATCH else SELF_BUDGETS
    return budgets[min(chunk_index, len(budgets) - 1)]


class StreamingProfileAnalyzer:
    """Runs the per-chunk inference passes for one profile kind.

    Attributes:
        kind: Which profile shape the prompts and result models target.
        client: Gemini client used for every request.

    Example:
        >>> analyzer = StreamingProfileAnalyzer(ProfileKind.MATCH, AIClient())
        >>> hooks = build_match_hooks(store, analyzer.analyze_chunks)
    """

    def __init__(self, kind: ProfileKind, client: AIClient) -> None:
        self.kind = ProfileKind(kind)
        self.client = client

    async def analyze_chunks(
        self,
        frame_chunks: Sequence[Sequence[Frame]],
        options: "ChunkAnalysisOptions",
    ) -> AccumulatedProfile:
        """Analyze every chunk in order.

        Returns:
            The last accumulator handed back by ``on_chunk_complete``, or the
            initial one if no chunk succeeded.
        """
        profile = options.initial_profile
        total = len(frame_chunks)

        for chunk_index, frames in enumerate(frame_chunks):
            if options.token.is_cancelled:
                logger.info(f"{self.kind.value}: cancelled before chunk {chunk_index + 1}/{total}")
                break

            try:
                with LogContext(
                    f"{self.kind.value}: chunk {chunk_index + 1}/{total} inference", logger=logger
                ) as ctx:
                    result = await self.analyze_chunk(
                        chunk_index,
                        frames,
                        profile,
                        quality_hints=options.quality_hints if chunk_index == 0 else "",
                        token=options.token,
                    )
            except OperationCancelledError:
                logger.info(f"{self.kind.value}: chunk {chunk_index + 1} abandoned on cancellation")
                break
            except Exception as e:
                options.on_error(e, chunk_index)
                continue

            try:
                profile = options.on_chunk_complete(chunk_index, result, ctx.elapsed * 1000)
            except Exception as e:
                options.on_error(e, chunk_index)

        return profile

    async def analyze_chunk(
        self,
        chunk_index: int,
        frames: Sequence[Frame],
        profile: AccumulatedProfile,
        quality_hints: str = "",
        token: CancellationToken | None = None,
    ) -> ChunkResult:
        """Run inference for a single chunk.

        Raises:
            ChunkAnalysisError: The request failed or the reply did not
                validate.
            OperationCancelledError: ``token`` fired while waiting.
        """
        budget = chunk_budget(self.kind, chunk_index)
        prompt = build_chunk_prompt(
            self.kind, chunk_index, profile, frame_count=len(frames), quality_hints=quality_hints
        )
        request = self.client.generate_json(
            prompt,
            images=list(frames),
            max_output_tokens=budget.max_output_tokens,
            timeout_seconds=budget.timeout_seconds,
            system_instruction=system_prompt(self.kind),
        )

        try:
            response = await (token.run(request) if token is not None else request)
        except AIClientError as e:
            raise ChunkAnalysisError(
                chunk_index,
                TOTAL_CHUNKS,
                message=f"{type(e).__name__}: {e.message}",
                retriable=e.retriable,
                original_error=e,
            ) from e

        if not response.parse_success or not isinstance(response.data, dict):
            raise ChunkAnalysisError(
                chunk_index,
                TOTAL_CHUNKS,
                message=f"Unusable model response: {response.parse_error or 'expected a JSON object'}",
                context={"finish_reason": response.finish_reason},
            )

        try:
            return chunk_result_type(self.kind, chunk_index).model_validate(response.data)
        except ValidationError as e:
            raise ChunkAnalysisError(
                chunk_index,
                TOTAL_CHUNKS,
                message=f"Response did not match the chunk schema ({e.error_count()} errors)",
                original_error=e,
            ) from e

"""Progressive analysis controller.

Drives one analysis run through its phases::

    idle -> extracting -> chunk-1 -> chunk-2 -> chunk-3 -> chunk-4
         -> consolidating -> complete

with ``aborted`` and ``error`` reachable from any active phase. The
controller is the only writer of run state. Collaborators (frame source,
scorer, inference, persistence) report back through callbacks, and each
event kind has exactly one handler that folds it into the state.

The controller is generic over the accumulator type. Everything that
differs between profile kinds is supplied through :class:`AnalysisHooks`.

Example:
    >>> controller = StreamingAnalysisController(
    ...     hooks=build_match_hooks(store, analyzer),
    ...     frame_source=FfmpegFrameSource(),
    ...     on_state_change=lambda s: print(s.phase.value),
    ... )
    >>> state = await controller.start(Path("recording.mp4"))
    >>> state.phase
    <StreamingPhase.COMPLETE: 'complete'>
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from functools import partial
from pathlib import Path
from typing import Any, Awaitable, Callable, Generic, Protocol, Sequence, TypeVar

from profilestream.cancellation import CancellationToken
from profilestream.config import StreamingSettings
from profilestream.errors import (
    ChunkAnalysisError,
    ErrorCategory,
    FrameExtractionError,
    FrameExtractionReason,
    ProfileStreamError,
    is_cancellation,
)
from profilestream.frames import FrameChunk, VideoInfo
from profilestream.models import (
    ABORTABLE_PHASES,
    CHUNK_PHASES,
    ChunkResult,
    Frame,
    FrameQualityScore,
    StreamingPhase,
)
from profilestream.quality import (
    FrameQualityScorer,
    find_best_frame_index,
    generate_quality_hints,
    score_for_index,
    validate_thumbnail_choice,
)
from profilestream.utils.logging import LogContext

logger = logging.getLogger(__name__)

P = TypeVar("P")


# =============================================================================
# Collaborator Contracts
# =============================================================================


class FrameSource(Protocol):
    """Produces frames from a video in fixed-size chunks."""

    async def extract_chunked(
        self,
        source: Any,
        *,
        chunk_size: int,
        total_frames: int,
        on_chunk_ready: Callable[[FrameChunk], None],
        on_metadata_loaded: Callable[[VideoInfo], None] | None = None,
        token: CancellationToken | None = None,
    ) -> None: ...


class QualityScorer(Protocol):
    async def score_all(self, frames: Sequence[Frame]) -> list[FrameQualityScore]: ...


@dataclass
class ChunkAnalysisOptions(Generic[P]):
    """What the inference collaborator receives alongside the frame chunks.

    Attributes:
        token: Cancellation token for the run.
        quality_hints: Hint text for the first chunk's prompt (may be empty).
        initial_profile: Empty accumulator to build prompt context from.
        on_chunk_complete: Called once per chunk, in order, with the raw chunk
            result and latency in milliseconds. Returns the merged accumulator.
        on_error: Called when a chunk fails; analysis continues.
    """

    token: CancellationToken
    quality_hints: str
    initial_profile: P
    on_chunk_complete: Callable[[int, ChunkResult, float], P]
    on_error: Callable[[BaseException, int], None]


SaveHook = Callable[[P, list[Frame]], Awaitable[None]]


@dataclass(frozen=True)
class AnalysisHooks(Generic[P]):
    """Profile-kind specific behavior plugged into the controller.

    Attributes:
        name: Label used in log lines.
        create_initial: Builds an empty accumulator.
        get_thumbnail_index: Reads the chosen thumbnail index.
        set_thumbnail_index: Returns a copy with a new thumbnail index.
        has_minimum_viable_data: Whether partial data is worth persisting.
        merge_chunk: Folds one raw chunk result into the accumulator.
        analyze_chunks: Inference collaborator.
        save_final: Persists the finished accumulator.
        save_milestone: Optional checkpoint after the first chunk.
        save_partial: Optional write used by ``abort(persist_partial=True)``.
        on_milestone_reached: Optional side effect after the third chunk.
    """

    name: str
    create_initial: Callable[[], P]
    get_thumbnail_index: Callable[[P], int]
    set_thumbnail_index: Callable[[P, int], P]
    has_minimum_viable_data: Callable[[P], bool]
    merge_chunk: Callable[[P, int, ChunkResult], P]
    analyze_chunks: Callable[[list[list[Frame]], ChunkAnalysisOptions[P]], Awaitable[P]]
    save_final: SaveHook
    save_milestone: SaveHook | None = None
    save_partial: SaveHook | None = None
    on_milestone_reached: Callable[[P], None] | None = None


# =============================================================================
# State
# =============================================================================


@dataclass
class StreamingState(Generic[P]):
    """Published view of a run. Lists are replaced, never mutated in place."""

    phase: StreamingPhase
    profile: P
    frames: list[list[Frame]] = field(default_factory=list)
    all_frames: list[Frame] = field(default_factory=list)
    current_chunk: int = 0
    total_chunks: int = 4
    error: str | None = None
    chunk_latencies: list[float] = field(default_factory=list)
    thumbnail_frame: Frame | None = None
    frame_scores: list[FrameQualityScore] = field(default_factory=list)
    thumbnail_overridden: bool = False


@dataclass
class _RunContext(Generic[P]):
    """Scratch state private to one run."""

    token: CancellationToken
    profile: P
    frame_chunks: list[list[Frame]] = field(default_factory=list)
    first_chunk_scores: list[FrameQualityScore] = field(default_factory=list)
    all_scores: list[FrameQualityScore] = field(default_factory=list)
    scoring_tasks: set[asyncio.Task] = field(default_factory=set)
    milestone_task: asyncio.Task | None = None

    @property
    def all_frames(self) -> list[Frame]:
        return [frame for chunk in self.frame_chunks for frame in chunk]


# =============================================================================
# Controller
# =============================================================================


class StreamingAnalysisController(Generic[P]):
    """Runs progressive analyses for one profile kind.

    Attributes:
        hooks: Profile-kind specific behavior.
        settings: Chunking and thumbnail constants.
    """

    def __init__(
        self,
        hooks: AnalysisHooks[P],
        frame_source: FrameSource,
        scorer: QualityScorer | None = None,
        settings: StreamingSettings | None = None,
        on_state_change: Callable[[StreamingState[P]], None] | None = None,
    ) -> None:
        self.hooks = hooks
        self.settings = settings or StreamingSettings()
        self._frame_source = frame_source
        self._scorer = scorer or FrameQualityScorer()
        self._on_state_change = on_state_change
        self._run: _RunContext[P] | None = None
        self._state = self._initial_state(StreamingPhase.IDLE)

    # -------------------------------------------------------------------------
    # Public surface
    # -------------------------------------------------------------------------

    @property
    def state(self) -> StreamingState[P]:
        return replace(self._state)

    @property
    def can_abort(self) -> bool:
        return self._state.phase in ABORTABLE_PHASES

    @property
    def is_processing(self) -> bool:
        return self.can_abort or self._state.phase == StreamingPhase.CONSOLIDATING

    @property
    def has_minimum_viable_profile(self) -> bool:
        return self.hooks.has_minimum_viable_data(self._state.profile)

    async def start(self, source: str | Path) -> StreamingState[P]:
        """Run a full analysis of ``source``.

        Starting while another run is active cancels that run first, along
        with any checkpoint save it still has pending. The coroutine never
        raises for analysis failures; inspect the returned state's ``phase``
        and ``error`` instead.

        Returns:
            Snapshot of the state when the run stopped.
        """
        previous = self._run
        if previous is not None:
            previous.token.cancel("superseded by a new run")
            if previous.milestone_task is not None:
                previous.milestone_task.cancel()
                await self._settle(previous.milestone_task)

        run: _RunContext[P] = _RunContext(
            token=CancellationToken(), profile=self.hooks.create_initial()
        )
        self._run = run
        self._set_state(self._initial_state(StreamingPhase.EXTRACTING, run.profile))
        logger.info(f"{self.hooks.name}: starting analysis of {source}")

        try:
            await self._run_pipeline(run, source)
        except Exception as e:
            if run.token.is_cancelled or is_cancellation(e):
                logger.info(f"{self.hooks.name}: run stopped by cancellation")
            elif self._run is run:
                error = ProfileStreamError.from_exception(
                    e, code="STREAMING_ANALYSIS_ERROR", category=ErrorCategory.MEDIA
                )
                logger.error(f"{self.hooks.name}: analysis failed: {error.code}: {error.message}")
                self._update(phase=StreamingPhase.ERROR, error=error.user_message)
        finally:
            for task in list(run.scoring_tasks):
                task.cancel()
            if self._run is run and self._state.phase.is_terminal:
                self._run = None

        return self.state

    async def abort(self, persist_partial: bool = False) -> None:
        """Cancel the active run and optionally keep its partial result.

        Partial results are written only when the accumulator is minimum
        viable and frames exist; the ``save_partial`` hook decides whether a
        record already covers them. ``abort(False)`` never writes.
        """
        run = self._run
        logger.info(f"{self.hooks.name}: aborting (persist_partial={persist_partial})")
        if run is not None:
            run.token.cancel("aborted by caller")
        self._update(phase=StreamingPhase.ABORTED)

        if not persist_partial or self.hooks.save_partial is None:
            return
        if not self.has_minimum_viable_profile or not self._state.all_frames:
            logger.info(f"{self.hooks.name}: nothing worth saving, skipping partial save")
            return

        if run is not None:
            await self._settle(run.milestone_task)

        try:
            await self.hooks.save_partial(self._state.profile, list(self._state.all_frames))
        except Exception as e:
            error = ProfileStreamError.from_exception(
                e, code="PARTIAL_SAVE_FAILED", category=ErrorCategory.STORAGE
            )
            logger.error(f"{self.hooks.name}: failed to save progress: {error.code}: {error.message}")

    def reset(self) -> None:
        """Cancel any active run and return to ``idle`` with empty state."""
        if self._run is not None:
            self._run.token.cancel("reset")
            if self._run.milestone_task is not None:
                self._run.milestone_task.cancel()
            self._run = None
        self._set_state(self._initial_state(StreamingPhase.IDLE))

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    async def _run_pipeline(self, run: _RunContext[P], source: str | Path) -> None:
        settings = self.settings

        with LogContext(f"{self.hooks.name}: extracting frames", logger=logger):
            await self._frame_source.extract_chunked(
                source,
                chunk_size=settings.chunk_size,
                total_frames=settings.total_frames,
                on_chunk_ready=partial(self._handle_frame_chunk, run),
                on_metadata_loaded=self._handle_metadata,
                token=run.token,
            )
        if run.token.is_cancelled:
            return
        if not run.frame_chunks:
            raise FrameExtractionError(
                FrameExtractionReason.DECODE_FAILED, "Frame source produced no frames"
            )

        logger.info(f"{self.hooks.name}: frame extraction complete, {len(run.frame_chunks)} chunks")
        hints = await self._score_first_chunk(run)

        self._update(phase=StreamingPhase.CHUNK_1)
        options = ChunkAnalysisOptions(
            token=run.token,
            quality_hints=hints,
            initial_profile=run.profile,
            on_chunk_complete=partial(self._handle_chunk_complete, run),
            on_error=partial(self._handle_chunk_error, run),
        )
        final_profile = await self.hooks.analyze_chunks(list(run.frame_chunks), options)
        if run.token.is_cancelled:
            return
        if final_profile is None:
            final_profile = run.profile

        logger.info(f"{self.hooks.name}: analysis complete, saving final result")
        await self._settle(run.milestone_task)

        if run.scoring_tasks:
            await asyncio.gather(*list(run.scoring_tasks), return_exceptions=True)

        final_profile = self._upgrade_thumbnail(run, final_profile)
        all_frames = run.all_frames
        if run.token.is_cancelled:
            return

        await self.hooks.save_final(final_profile, all_frames)
        if run.token.is_cancelled:
            return

        run.profile = final_profile
        self._update(
            phase=StreamingPhase.COMPLETE,
            profile=final_profile,
            frame_scores=sorted(run.all_scores, key=lambda s: s.index),
            thumbnail_frame=self._frame_at(all_frames, self.hooks.get_thumbnail_index(final_profile)),
        )
        logger.info(f"{self.hooks.name}: run complete")

    async def _score_first_chunk(self, run: _RunContext[P]) -> str:
        """Score chunk 0 before inference. Failure only costs the hints."""
        first_chunk = run.frame_chunks[0]
        try:
            scores = await self._scorer.score_all(first_chunk)
        except Exception as e:
            error = FrameExtractionError(
                FrameExtractionReason.CANVAS_FAILED,
                "Frame scoring failed, continuing without quality hints",
                context={"frame_count": len(first_chunk)},
                original_error=e,
            )
            logger.warning(f"{self.hooks.name}: {error.code}: {error.message}")
            return ""

        run.first_chunk_scores = list(scores)
        run.all_scores = list(scores)
        self._update(frame_scores=list(scores))
        hints = generate_quality_hints(scores)
        logger.debug(f"{self.hooks.name}: frame quality hints:\n{hints}")
        return hints

    def _upgrade_thumbnail(self, run: _RunContext[P], profile: P) -> P:
        """Switch to a clearly better frame seen after the first chunk."""
        scores = run.all_scores
        if len(scores) <= self.settings.chunk_size:
            return profile

        current_index = self.hooks.get_thumbnail_index(profile)
        current = score_for_index(scores, current_index)
        best_index = find_best_frame_index(scores)
        best = score_for_index(scores, best_index)

        threshold = self.settings.thumbnail_upgrade_threshold
        if best and current and best.overall_score > current.overall_score + threshold:
            logger.info(
                f"{self.hooks.name}: upgrading thumbnail from frame {current_index} "
                f"(score: {round(current.overall_score)}) to frame {best_index} "
                f"(score: {round(best.overall_score)})"
            )
            return self.hooks.set_thumbnail_index(profile, best_index)

        logger.info(
            f"{self.hooks.name}: keeping thumbnail frame {current_index}, "
            f"best overall is frame {best_index}"
        )
        return profile

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    def _handle_metadata(self, info: VideoInfo) -> None:
        logger.info(f"{self.hooks.name}: video metadata loaded, duration: {info.duration:.1f}s")

    def _handle_frame_chunk(self, run: _RunContext[P], chunk: FrameChunk) -> None:
        if not self._is_live(run):
            return
        logger.debug(
            f"{self.hooks.name}: frame chunk {chunk.chunk_index + 1}/{chunk.total_chunks} ready"
        )
        run.frame_chunks.append(list(chunk.frames))
        self._update(
            frames=[list(c) for c in run.frame_chunks],
            all_frames=list(chunk.all_frames_so_far),
        )

    def _handle_chunk_complete(
        self, run: _RunContext[P], chunk_index: int, result: ChunkResult, latency_ms: float
    ) -> P:
        if not self._is_live(run):
            return run.profile

        logger.info(f"{self.hooks.name}: chunk {chunk_index + 1} complete, latency: {latency_ms:.0f}ms")
        profile = self.hooks.merge_chunk(run.profile, chunk_index, result)

        thumbnail_index = self.hooks.get_thumbnail_index(profile)
        overridden = False
        if chunk_index == 0 and run.first_chunk_scores:
            validation = validate_thumbnail_choice(thumbnail_index, run.first_chunk_scores)
            if validation.was_overridden:
                logger.info(f"{self.hooks.name}: {validation.reason}")
                thumbnail_index = validation.final_index
                overridden = True
                profile = self.hooks.set_thumbnail_index(profile, thumbnail_index)

        if 0 < chunk_index < self.settings.total_chunks:
            self._schedule_chunk_scoring(run, chunk_index)

        run.profile = profile
        all_frames = run.all_frames
        last_chunk = self.settings.total_chunks - 1
        next_phase = CHUNK_PHASES[chunk_index + 1] if chunk_index < last_chunk else StreamingPhase.CONSOLIDATING
        self._update(
            phase=next_phase,
            profile=profile,
            current_chunk=chunk_index + 1,
            chunk_latencies=[*self._state.chunk_latencies, latency_ms],
            thumbnail_frame=self._frame_at(all_frames, thumbnail_index),
            thumbnail_overridden=overridden or self._state.thumbnail_overridden,
        )

        if chunk_index == 0 and self.hooks.save_milestone is not None:
            run.milestone_task = asyncio.create_task(self._save_milestone(profile, all_frames))

        if chunk_index == 2 and self.hooks.on_milestone_reached is not None:
            try:
                self.hooks.on_milestone_reached(profile)
            except Exception as e:
                logger.warning(f"{self.hooks.name}: milestone side effect failed: {e}")

        return profile

    def _handle_chunk_error(self, run: _RunContext[P], error: BaseException, chunk_index: int) -> None:
        if not self._is_live(run):
            return
        if not isinstance(error, ChunkAnalysisError):
            error = ChunkAnalysisError(
                chunk_index,
                self.settings.total_chunks,
                message=str(error) or type(error).__name__,
                context={"phase": f"chunk-{chunk_index + 1}"},
                original_error=error,
            )
        logger.warning(f"{self.hooks.name}: {error.code}: {error.message}")

    # -------------------------------------------------------------------------
    # Background work
    # -------------------------------------------------------------------------

    def _schedule_chunk_scoring(self, run: _RunContext[P], chunk_index: int) -> None:
        if chunk_index >= len(run.frame_chunks) or not run.frame_chunks[chunk_index]:
            return
        task = asyncio.create_task(self._score_chunk(run, chunk_index, run.frame_chunks[chunk_index]))
        run.scoring_tasks.add(task)
        task.add_done_callback(run.scoring_tasks.discard)

    async def _score_chunk(self, run: _RunContext[P], chunk_index: int, frames: list[Frame]) -> None:
        offset = chunk_index * self.settings.chunk_size
        try:
            scores = await self._scorer.score_all(frames)
        except Exception as e:
            error = FrameExtractionError(
                FrameExtractionReason.CANVAS_FAILED,
                f"Failed to score chunk {chunk_index + 1} frames",
                frame_index=offset,
                context={"chunk_index": chunk_index},
                original_error=e,
            )
            logger.warning(f"{self.hooks.name}: {error.code}: {error.message}")
            return

        run.all_scores.extend(s.model_copy(update={"index": s.index + offset}) for s in scores)
        logger.debug(
            f"{self.hooks.name}: scored chunk {chunk_index + 1} frames, "
            f"total scores: {len(run.all_scores)}"
        )

    async def _save_milestone(self, profile: P, all_frames: list[Frame]) -> bool:
        """Checkpoint after the first chunk. Failure is logged, never raised."""
        save = self.hooks.save_milestone
        if save is None:
            return False
        try:
            await save(profile, all_frames)
        except Exception as e:
            logger.warning(f"{self.hooks.name}: auto-save deferred: {e}")
            return False
        logger.info(f"{self.hooks.name}: auto-saved after chunk 1")
        return True

    # -------------------------------------------------------------------------
    # State helpers
    # -------------------------------------------------------------------------

    def _initial_state(self, phase: StreamingPhase, profile: P | None = None) -> StreamingState[P]:
        return StreamingState(
            phase=phase,
            profile=profile if profile is not None else self.hooks.create_initial(),
            total_chunks=self.settings.total_chunks,
        )

    def _is_live(self, run: _RunContext[P]) -> bool:
        return self._run is run and not run.token.is_cancelled

    def _update(self, **changes: Any) -> None:
        self._set_state(replace(self._state, **changes))

    def _set_state(self, state: StreamingState[P]) -> None:
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(self.state)

    @staticmethod
    async def _settle(task: asyncio.Task | None) -> None:
        """Wait for ``task`` to finish without taking on its result or cancellation."""
        if task is not None:
            await asyncio.wait({task})

    @staticmethod
    def _frame_at(frames: list[Frame], index: int) -> Frame | None:
        return frames[index] if 0 <= index < len(frames) else None

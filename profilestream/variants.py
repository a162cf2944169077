"""Match and self variants of the progressive analysis controller.

Both variants run the same controller; they differ in accumulator shape and
in what gets persisted:

- **match**: one record per analyzed profile. The record is created at the
  first-chunk milestone when a name is known, then updated by the final
  save. An optional dependent job runs once a record id exists.
- **self**: a single identity record (id 1) that is created or updated in
  place, then optionally pushed to a remote store.

Each session object owns the persistence state of one run at a time and is
reset by the ``create_initial`` hook when a run starts. A write that finishes
after a newer run has begun is left out of the new run's state.

Example:
    >>> session = MatchAnalysisSession(JsonRecordStore(data_dir / "matches"))
    >>> hooks = build_match_hooks(session, analyzer.analyze_chunks)
    >>> controller = StreamingAnalysisController(hooks, FfmpegFrameSource())
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Protocol, Sequence, TypeVar

from profilestream.controller import AnalysisHooks, ChunkAnalysisOptions
from profilestream.errors import StorageError, SyncError
from profilestream.merge import merge_chunk
from profilestream.models import (
    AccumulatedProfile,
    AnalysisPhase,
    Frame,
    MatchProfile,
    SelfProfile,
    utc_now,
)

logger = logging.getLogger(__name__)

P = TypeVar("P", MatchProfile, SelfProfile)

IN_PROGRESS = "Analysis in progress..."

AnalyzeChunks = Callable[[list[list[Frame]], ChunkAnalysisOptions], Awaitable[Any]]
DependentJob = Callable[[int, MatchProfile], Awaitable[None]]
SyncHook = Callable[[dict[str, Any], str], Awaitable[None]]


class RecordStore(Protocol):
    async def create(self, record: dict[str, Any]) -> int: ...

    async def update(self, record_id: int, record: dict[str, Any]) -> None: ...

    async def put(self, record_id: int, record: dict[str, Any]) -> None: ...

    async def get_by_id(self, record_id: int) -> dict[str, Any] | None: ...


# =============================================================================
# Shared Accessors
# =============================================================================


def get_thumbnail_index(profile: AccumulatedProfile) -> int:
    return profile.photos.thumbnail_index


def set_thumbnail_index(profile: P, index: int) -> P:
    updated = profile.model_copy(deep=True)
    updated.photos.thumbnail_index = max(0, index)
    return updated


def has_minimum_viable_data(profile: AccumulatedProfile) -> bool:
    """A profile is worth keeping once it has a name or an age."""
    return profile.identity.name is not None or profile.identity.age is not None


def pick_thumbnail(frames: Sequence[Frame], index: int) -> Frame | str:
    """Frame at ``index``, else the first frame, else an empty string."""
    if 0 <= index < len(frames):
        return frames[index]
    return frames[0] if frames else ""


async def _confirm_written(store: RecordStore, record_id: int) -> int:
    """Re-read a record after writing it so the id is known to be real."""
    if await store.get_by_id(record_id) is None:
        raise StorageError(
            f"Record {record_id} missing right after it was written",
            context={"record_id": record_id},
        )
    return record_id


# =============================================================================
# Match Variant
# =============================================================================


def build_match_analysis(profile: MatchProfile) -> dict[str, Any]:
    """Profile-analysis document stored on a match record."""
    identity = profile.identity
    psych = profile.psychological

    openers = [
        {
            "type": "like_comment",
            "prompt": prompt.question,
            "message": prompt.suggested_opener.message,
            "tactic": prompt.suggested_opener.tactic,
            "why_it_works": prompt.suggested_opener.why_it_works,
        }
        for prompt in profile.prompts.found
        if prompt.suggested_opener is not None and prompt.suggested_opener.message
    ]

    return {
        "meta": {
            "app_name": identity.app or "Unknown App",
            "best_photo_index": profile.photos.thumbnail_index,
            "chunks_processed": profile.meta.chunks_processed,
            "total_chunks": profile.meta.total_chunks,
        },
        "basics": identity.model_dump(),
        "photos": [photo.model_dump() for photo in profile.photos.analyses],
        "prompts": [
            {"question": p.question, "answer": p.answer, "analysis": p.analysis}
            for p in profile.prompts.found
        ],
        "psychological_profile": {
            "agendas": [agenda.model_dump(mode="json") for agenda in psych.agendas],
            "presentation_tactics": list(psych.presentation_tactics),
            "predicted_tactics": list(psych.predicted_tactics),
            "subtext_analysis": {},
            "archetype_summary": psych.emerging_archetype or "",
            "confidence_level": psych.confidence_level,
        },
        "recommended_openers": openers,
        "overall_analysis": {
            "summary": psych.emerging_archetype or IN_PROGRESS,
            "green_flags": list(profile.early_warnings.green_flags),
            "red_flags": list(profile.early_warnings.red_flags),
        },
    }


def build_match_record(profile: MatchProfile, frames: Sequence[Frame]) -> dict[str, Any]:
    identity = profile.identity
    return {
        "name": identity.name or "Unknown Match",
        "age": identity.age,
        "app_name": identity.app or "Unknown App",
        "timestamp": utc_now().isoformat(),
        "analysis": build_match_analysis(profile),
        "thumbnail": pick_thumbnail(frames, profile.photos.thumbnail_index),
        "analysis_phase": AnalysisPhase.QUICK.value,
    }


class MatchAnalysisSession:
    """Persistence for match runs.

    Attributes:
        store: Where match records are written.
        record_id: Id of the record written for the current run, if any.
    """

    def __init__(self, store: RecordStore, dependent_job: DependentJob | None = None) -> None:
        self.store = store
        self.record_id: int | None = None
        self._dependent_job = dependent_job
        self._job_requested = False
        self._job_started = False
        self._job_tasks: set[asyncio.Task] = set()
        self._generation = 0

    def begin_run(self) -> MatchProfile:
        self._generation += 1
        self.record_id = None
        self._job_requested = False
        self._job_started = False
        return MatchProfile()

    async def save_milestone(self, profile: MatchProfile, frames: list[Frame]) -> None:
        """Create the record early, but only once a name is known."""
        if profile.identity.name is None:
            logger.info("Skipping early save: no name extracted from the first chunk")
            return
        generation = self._generation
        record_id = await self.store.create(build_match_record(profile, frames))
        record_id = await _confirm_written(self.store, record_id)
        if generation != self._generation:
            logger.info(f"Match record {record_id} belongs to a superseded run")
            return
        self.record_id = record_id
        logger.info(f"Saved match record {record_id} after first chunk")

    async def save_final(self, profile: MatchProfile, frames: list[Frame]) -> None:
        record = build_match_record(profile, frames)
        if self.record_id is not None:
            await self.store.update(self.record_id, record)
            logger.info(f"Updated match record {self.record_id} with final analysis")
        else:
            record_id = await self.store.create(record)
            self.record_id = await _confirm_written(self.store, record_id)
            logger.info(f"Created match record {self.record_id} with final analysis")

        if self._job_requested and not self._job_started:
            self._start_dependent_job(profile)

    async def save_partial(self, profile: MatchProfile, frames: list[Frame]) -> None:
        if self.record_id is not None:
            logger.info(f"Match record {self.record_id} already holds the partial analysis")
            return
        record_id = await self.store.create(build_match_record(profile, frames))
        self.record_id = await _confirm_written(self.store, record_id)
        logger.info(f"Saved partial match record {self.record_id}")

    def on_milestone_reached(self, profile: MatchProfile) -> None:
        """Start the dependent job now if a record exists, else after the final save."""
        if self._dependent_job is None:
            return
        self._job_requested = True
        if self.record_id is None:
            logger.info("Deferring dependent job until a record exists")
            return
        self._start_dependent_job(profile)

    async def wait_for_jobs(self) -> None:
        """Wait for any running dependent jobs."""
        if self._job_tasks:
            await asyncio.gather(*list(self._job_tasks), return_exceptions=True)

    def _start_dependent_job(self, profile: MatchProfile) -> None:
        job = self._dependent_job
        if job is None or self.record_id is None:
            return
        self._job_started = True
        task = asyncio.create_task(self._run_job(job, self.record_id, profile))
        self._job_tasks.add(task)
        task.add_done_callback(self._job_tasks.discard)

    async def _run_job(self, job: DependentJob, record_id: int, profile: MatchProfile) -> None:
        logger.info(f"Starting dependent job for match record {record_id}")
        try:
            await job(record_id, profile)
        except Exception as e:
            logger.warning(f"Dependent job for match record {record_id} failed: {e}")


def build_match_hooks(
    session: MatchAnalysisSession, analyze_chunks: AnalyzeChunks
) -> AnalysisHooks[MatchProfile]:
    return AnalysisHooks(
        name="match",
        create_initial=session.begin_run,
        get_thumbnail_index=get_thumbnail_index,
        set_thumbnail_index=set_thumbnail_index,
        has_minimum_viable_data=has_minimum_viable_data,
        merge_chunk=merge_chunk,
        analyze_chunks=analyze_chunks,
        save_final=session.save_final,
        save_milestone=session.save_milestone,
        save_partial=session.save_partial,
        on_milestone_reached=session.on_milestone_reached,
    )


# =============================================================================
# Self Variant
# =============================================================================


def build_self_synthesis(profile: SelfProfile) -> dict[str, Any]:
    """Self-analysis document stored on the identity record."""
    psych = profile.psychological
    behavioral = profile.behavioral
    subtext = psych.subtext_analysis

    return {
        "basics": profile.identity.model_dump(),
        "photos": {
            "thumbnail_index": profile.photos.thumbnail_index,
            "analyses": [photo.model_dump() for photo in profile.photos.analyses],
            "vibes": list(profile.photos.vibes_summary),
        },
        "psychological_profile": {
            "archetype": psych.archetype,
            "confidence_level": psych.confidence_level,
            "agendas": [agenda.model_dump(mode="json") for agenda in psych.agendas],
            "presentation_tactics": list(psych.presentation_tactics),
            "predicted_tactics": list(psych.predicted_tactics),
            "subtext_analysis": {
                "sexual_signaling": subtext.sexual_signaling or IN_PROGRESS,
                "power_dynamics": subtext.power_dynamics or IN_PROGRESS,
                "vulnerability_indicators": subtext.vulnerability_indicators or IN_PROGRESS,
                "disconnect": subtext.disconnect or IN_PROGRESS,
            },
            "archetype_summary": psych.archetype or IN_PROGRESS,
        },
        "behavioral_insights": {
            "communication_style": behavioral.communication_style or IN_PROGRESS,
            "attachment_patterns": behavioral.attachment_patterns or IN_PROGRESS,
            "attachment_confidence": behavioral.attachment_confidence,
            "growth_areas": list(behavioral.growth_areas),
            "strengths": list(behavioral.strengths),
        },
        "dating_strategy": profile.dating.model_dump(),
        "meta": {
            "last_updated": utc_now().isoformat(),
            "inputs_used": ["video"],
            "chunks_processed": profile.meta.chunks_processed,
        },
    }


def build_identity_record(profile: SelfProfile, frames: Sequence[Frame]) -> dict[str, Any]:
    return {
        "synthesis": build_self_synthesis(profile),
        "video_analysis": {
            "frames": list(frames),
            "thumbnail_index": profile.photos.thumbnail_index,
            "extracted_at": utc_now().isoformat(),
        },
    }


class SelfAnalysisSession:
    """Persistence for self runs: one identity record, optionally synced.

    Attributes:
        store: Where the identity record is written.
        user_id: Remote account to sync to; sync is skipped when None.
    """

    IDENTITY_ID = 1

    def __init__(
        self,
        store: RecordStore,
        sync: SyncHook | None = None,
        user_id: str | None = None,
    ) -> None:
        self.store = store
        self.user_id = user_id
        self._sync = sync
        self._saved = False
        self._generation = 0

    def begin_run(self) -> SelfProfile:
        self._generation += 1
        self._saved = False
        return SelfProfile()

    async def save_milestone(self, profile: SelfProfile, frames: list[Frame]) -> None:
        try:
            await self._upsert(profile, frames)
        except Exception as e:
            error = StorageError(
                "Failed to save self-analysis after first chunk",
                context={"record_id": self.IDENTITY_ID},
                original_error=e,
            )
            logger.warning(f"{error.code}: {error.message}: {e}")
            return
        logger.info("Saved self-analysis after first chunk")

    async def save_final(self, profile: SelfProfile, frames: list[Frame]) -> None:
        record = await self._upsert(profile, frames)
        logger.info("Saved final self-analysis")
        await self._push(record)

    async def save_partial(self, profile: SelfProfile, frames: list[Frame]) -> None:
        if self._saved:
            logger.info("Identity record already holds the partial self-analysis")
            return
        await self._upsert(profile, frames)
        logger.info("Saved partial self-analysis")

    async def _upsert(self, profile: SelfProfile, frames: Sequence[Frame]) -> dict[str, Any]:
        generation = self._generation
        record = build_identity_record(profile, frames)
        if await self.store.get_by_id(self.IDENTITY_ID) is not None:
            await self.store.update(self.IDENTITY_ID, record)
        else:
            await self.store.put(self.IDENTITY_ID, record)
        await _confirm_written(self.store, self.IDENTITY_ID)
        if generation == self._generation:
            self._saved = True
        return record

    async def _push(self, record: dict[str, Any]) -> None:
        if self._sync is None or self.user_id is None:
            return
        try:
            await self._sync(record, self.user_id)
        except Exception as e:
            error = SyncError(
                "Failed to sync self-analysis", operation="push", original_error=e
            )
            logger.warning(f"{error.code}: {error.message}, will retry later: {e}")
            return
        logger.info("Synced self-analysis to remote store")


def build_self_hooks(
    session: SelfAnalysisSession, analyze_chunks: AnalyzeChunks
) -> AnalysisHooks[SelfProfile]:
    return AnalysisHooks(
        name="self",
        create_initial=session.begin_run,
        get_thumbnail_index=get_thumbnail_index,
        set_thumbnail_index=set_thumbnail_index,
        has_minimum_viable_data=has_minimum_viable_data,
        merge_chunk=merge_chunk,
        analyze_chunks=analyze_chunks,
        save_final=session.save_final,
        save_milestone=session.save_milestone,
        save_partial=session.save_partial,
    )

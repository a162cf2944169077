"""Core data models for profilestream.

Defines the streaming phases, per-frame quality scores, the two accumulator
shapes that a run progressively refines (a third-party "match" profile and
the user's own "self" profile), and the raw chunk results produced by the
inference pass for each chunk kind. All models use Pydantic v2.

Chunk results accept the camelCase keys the model is prompted to return as
well as the snake_case field names, and tolerate loosely typed values
(``"0-3"`` for an index, ``null`` for a list) because they come straight
from model output.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

# A captured frame: JPEG bytes or a base64 data URL
Frame = Union[bytes, str]

TOTAL_CHUNKS = 4


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


# =============================================================================
# Enums
# =============================================================================


class StreamingPhase(str, Enum):
    """Phases of a progressive analysis run.

    ``IDLE`` is the resting state. A run moves through ``EXTRACTING``, the
    four chunk phases, and ``CONSOLIDATING`` before reaching ``COMPLETE``.
    ``ABORTED`` and ``ERROR`` are reachable from any active phase.
    """

    IDLE = "idle"
    EXTRACTING = "extracting"
    CHUNK_1 = "chunk-1"
    CHUNK_2 = "chunk-2"
    CHUNK_3 = "chunk-3"
    CHUNK_4 = "chunk-4"
    CONSOLIDATING = "consolidating"
    COMPLETE = "complete"
    ABORTED = "aborted"
    ERROR = "error"

    @classmethod
    def for_chunk(cls, chunk_index: int) -> "StreamingPhase":
        """Phase during which chunk ``chunk_index`` (0-based) is analyzed."""
        return CHUNK_PHASES[chunk_index]

    @property
    def is_terminal(self) -> bool:
        return self in (StreamingPhase.COMPLETE, StreamingPhase.ABORTED, StreamingPhase.ERROR)


CHUNK_PHASES = (
    StreamingPhase.CHUNK_1,
    StreamingPhase.CHUNK_2,
    StreamingPhase.CHUNK_3,
    StreamingPhase.CHUNK_4,
)

ABORTABLE_PHASES = frozenset({StreamingPhase.EXTRACTING, *CHUNK_PHASES})


class AnalysisPhase(str, Enum):
    """Depth of the analysis stored in an accumulator."""

    QUICK = "quick"
    DEEP = "deep"
    COMPLETE = "complete"


class ProfileKind(str, Enum):
    """Which accumulator shape a run builds."""

    MATCH = "match"
    SELF = "self"


class AgendaPriority(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


# =============================================================================
# Frame Quality
# =============================================================================


class FrameQualityScore(BaseModel):
    """Heuristic quality assessment of a single frame.

    Attributes:
        index: Position of the frame within the run's flattened frame list.
        brightness: Mean luma, 0-255.
        variance: Normalized average per-channel color variance, 0-1.
        edge_density: Fraction of interior pixels on a strong gradient, 0-1.
        is_likely_dark: Brightness below the dark threshold.
        is_likely_text_heavy: Busy edges without color diversity.
        overall_score: Composite score, 0-100.
        is_usable: Good enough to serve as a thumbnail.
    """

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0)
    brightness: float = Field(ge=0.0, le=255.0)
    variance: float = Field(ge=0.0, le=1.0)
    edge_density: float = Field(ge=0.0, le=1.0)
    is_likely_dark: bool
    is_likely_text_heavy: bool
    overall_score: float = Field(ge=0.0, le=100.0)
    is_usable: bool


# =============================================================================
# Shared Accumulator Parts
# =============================================================================


class LenientModel(BaseModel):
    """Base for values that may arrive from model output with nulls in place of defaults."""

    @field_validator("*", mode="before")
    @classmethod
    def null_to_default(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None:
            field = cls.model_fields.get(info.field_name)
            if field is not None and not field.is_required():
                return field.get_default(call_default_factory=True)
        return v


class PhotoAnalysis(LenientModel):
    description: str = ""
    vibe: str = ""
    subtext: str = ""
    attractiveness_notes: str | None = None


class SuggestedOpener(LenientModel):
    message: str = ""
    tactic: str = ""
    why_it_works: str = ""


class PromptAnalysis(LenientModel):
    question: str = ""
    answer: str = ""
    analysis: str = ""
    suggested_opener: SuggestedOpener | None = None


class Agenda(LenientModel):
    type: str = ""
    evidence: str = ""
    priority: AgendaPriority = AgendaPriority.SECONDARY

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, v: Any) -> Any:
        if isinstance(v, str) and v.strip().lower() == "primary":
            return AgendaPriority.PRIMARY
        if isinstance(v, AgendaPriority):
            return v
        return AgendaPriority.SECONDARY


class PhotoSummary(BaseModel):
    """Photo-level accumulation.

    ``thumbnail_index`` of ``0`` doubles as "not chosen yet" for merges.
    """

    thumbnail_index: int = Field(default=0, ge=0)
    analyses: list[PhotoAnalysis] = Field(default_factory=list)
    vibes_summary: list[str] = Field(default_factory=list)


class ProfileMeta(BaseModel):
    chunks_processed: int = Field(default=0, ge=0)
    total_chunks: int = TOTAL_CHUNKS
    phase: AnalysisPhase = AnalysisPhase.QUICK
    started_at: datetime = Field(default_factory=utc_now)
    last_updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# Match Accumulator
# =============================================================================


class MatchIdentity(BaseModel):
    name: str | None = None
    age: int | None = None
    location: str | None = None
    job: str | None = None
    app: str | None = None


class PromptSummary(BaseModel):
    found: list[PromptAnalysis] = Field(default_factory=list)


class MatchPsychology(BaseModel):
    emerging_archetype: str | None = None
    confidence_level: int = Field(default=0, ge=0, le=100)
    signals: list[str] = Field(default_factory=list)
    agendas: list[Agenda] = Field(default_factory=list)
    presentation_tactics: list[str] = Field(default_factory=list)
    predicted_tactics: list[str] = Field(default_factory=list)


class EarlyWarnings(BaseModel):
    red_flags: list[str] = Field(default_factory=list)
    green_flags: list[str] = Field(default_factory=list)


class MatchProfile(BaseModel):
    """Accumulated analysis of a third-party dating profile."""

    identity: MatchIdentity = Field(default_factory=MatchIdentity)
    photos: PhotoSummary = Field(default_factory=PhotoSummary)
    prompts: PromptSummary = Field(default_factory=PromptSummary)
    psychological: MatchPsychology = Field(default_factory=MatchPsychology)
    early_warnings: EarlyWarnings = Field(default_factory=EarlyWarnings)
    meta: ProfileMeta = Field(default_factory=ProfileMeta)


# =============================================================================
# Self Accumulator
# =============================================================================


class SelfIdentity(BaseModel):
    name: str | None = None
    age: int | None = None
    location: str | None = None
    occupation: str | None = None


class SubtextAnalysis(LenientModel):
    sexual_signaling: str = ""
    power_dynamics: str = ""
    vulnerability_indicators: str = ""
    disconnect: str = ""


class SelfPsychology(BaseModel):
    archetype: str | None = None
    confidence_level: int = Field(default=0, ge=0, le=100)
    agendas: list[Agenda] = Field(default_factory=list)
    presentation_tactics: list[str] = Field(default_factory=list)
    predicted_tactics: list[str] = Field(default_factory=list)
    subtext_analysis: SubtextAnalysis = Field(default_factory=SubtextAnalysis)


class BehavioralInsights(BaseModel):
    communication_style: str | None = None
    attachment_patterns: str | None = None
    attachment_confidence: int = Field(default=0, ge=0, le=100)
    strengths: list[str] = Field(default_factory=list)
    growth_areas: list[str] = Field(default_factory=list)


class DatingStrategy(BaseModel):
    ideal_partner_profile: str | None = None
    what_to_look_for: list[str] = Field(default_factory=list)
    what_to_avoid: list[str] = Field(default_factory=list)
    bio_suggestions: list[str] = Field(default_factory=list)
    opener_style_recommendations: list[str] = Field(default_factory=list)


class SelfProfile(BaseModel):
    """Accumulated self-analysis of the user's own dating profile."""

    identity: SelfIdentity = Field(default_factory=SelfIdentity)
    photos: PhotoSummary = Field(default_factory=PhotoSummary)
    psychological: SelfPsychology = Field(default_factory=SelfPsychology)
    behavioral: BehavioralInsights = Field(default_factory=BehavioralInsights)
    dating: DatingStrategy = Field(default_factory=DatingStrategy)
    meta: ProfileMeta = Field(default_factory=ProfileMeta)


AccumulatedProfile = Union[MatchProfile, SelfProfile]


# =============================================================================
# Raw Chunk Results
# =============================================================================

_LEADING_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


def _coerce_int(value: Any) -> int | None:
    """Best-effort integer from model output ("42", 42.0, "0-3", None)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        match = _LEADING_NUMBER.search(value)
        if match:
            return int(float(match.group(0)))
    return None


class ChunkResult(LenientModel):
    """Base for raw per-chunk inference output."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _confidence(value: Any) -> int:
    number = _coerce_int(value)
    if number is None:
        return 0
    return max(0, min(100, number))


class MatchBasicsResult(ChunkResult):
    name: str | None = None
    age: int | None = None
    location: str | None = None
    job: str | None = None
    app: str | None = None
    thumbnail_index: int = 0

    @field_validator("age", mode="before")
    @classmethod
    def coerce_age(cls, v: Any) -> int | None:
        return _coerce_int(v)

    @field_validator("thumbnail_index", mode="before")
    @classmethod
    def coerce_thumbnail(cls, v: Any) -> int:
        return max(0, _coerce_int(v) or 0)


class MatchImpressionsResult(ChunkResult):
    vibes: list[str] = Field(default_factory=list)
    first_impressions: list[str] = Field(default_factory=list)
    emerging_archetype: str | None = None
    archetype_confidence: int = 0

    @field_validator("archetype_confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, v: Any) -> int:
        return _confidence(v)


class MatchObservationsResult(ChunkResult):
    photos: list[PhotoAnalysis] = Field(default_factory=list)
    prompts: list[PromptAnalysis] = Field(default_factory=list)
    signals: list[str] = Field(default_factory=list)


class MatchFlagsResult(ChunkResult):
    red_flags: list[str] = Field(default_factory=list)
    green_flags: list[str] = Field(default_factory=list)
    agendas: list[Agenda] = Field(default_factory=list)
    presentation_tactics: list[str] = Field(default_factory=list)
    predicted_tactics: list[str] = Field(default_factory=list)
    archetype_refinement: str | None = None
    final_confidence: int = 0

    @field_validator("final_confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, v: Any) -> int:
        return _confidence(v)


class SelfBasicsResult(ChunkResult):
    name: str | None = None
    age: int | None = None
    location: str | None = None
    occupation: str | None = None
    thumbnail_index: int = 0
    initial_vibes: list[str] = Field(default_factory=list)

    @field_validator("age", mode="before")
    @classmethod
    def coerce_age(cls, v: Any) -> int | None:
        return _coerce_int(v)

    @field_validator("thumbnail_index", mode="before")
    @classmethod
    def coerce_thumbnail(cls, v: Any) -> int:
        return max(0, _coerce_int(v) or 0)


class SelfImpressionsResult(ChunkResult):
    vibes: list[str] = Field(default_factory=list)
    archetype: str | None = None
    archetype_confidence: int = 0
    initial_strengths: list[str] = Field(default_factory=list)
    communication_hints: list[str] = Field(default_factory=list)

    @field_validator("archetype_confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, v: Any) -> int:
        return _confidence(v)


class SelfObservationsResult(ChunkResult):
    photos: list[PhotoAnalysis] = Field(default_factory=list)
    signals: list[str] = Field(default_factory=list)
    presentation_tactics: list[str] = Field(default_factory=list)
    subtext_analysis: SubtextAnalysis = Field(default_factory=SubtextAnalysis)

    @field_validator("subtext_analysis", mode="before")
    @classmethod
    def default_subtext(cls, v: Any) -> Any:
        return SubtextAnalysis() if v is None else v


class SelfSynthesisResult(ChunkResult):
    communication_style: str | None = None
    attachment_patterns: str | None = None
    attachment_confidence: int = 0
    strengths: list[str] = Field(default_factory=list)
    growth_areas: list[str] = Field(default_factory=list)
    ideal_partner_profile: str | None = None
    what_to_look_for: list[str] = Field(default_factory=list)
    what_to_avoid: list[str] = Field(default_factory=list)
    bio_suggestions: list[str] = Field(default_factory=list)
    opener_style_recommendations: list[str] = Field(default_factory=list)
    agendas: list[Agenda] = Field(default_factory=list)
    predicted_tactics: list[str] = Field(default_factory=list)
    archetype_refinement: str | None = None
    final_confidence: int = 0

    @field_validator("attachment_confidence", "final_confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, v: Any) -> int:
        return _confidence(v)


MATCH_CHUNK_RESULTS: tuple[type[ChunkResult], ...] = (
    MatchBasicsResult,
    MatchImpressionsResult,
    MatchObservationsResult,
    MatchFlagsResult,
)

SELF_CHUNK_RESULTS: tuple[type[ChunkResult], ...] = (
    SelfBasicsResult,
    SelfImpressionsResult,
    SelfObservationsResult,
    SelfSynthesisResult,
)


def chunk_result_type(kind: ProfileKind, chunk_index: int) -> type[ChunkResult]:
    """Result model for chunk ``chunk_index``; chunks past the last reuse the final kind."""
    results = MATCH_CHUNK_RESULTS if kind == ProfileKind.MATCH else SELF_CHUNK_RESULTS
    return results[min(chunk_index, len(results) - 1)]

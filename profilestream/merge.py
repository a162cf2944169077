"""Accumulator merge engine.

Each chunk kind has a pure merge function ``(profile, chunk_result) ->
new_profile`` that never mutates its input. Fields reconcile differently
depending on what they represent:

- identity scalars: first non-null value wins
- thumbnail index: taken only while still unset (``0``)
- tags, signals, photo and prompt analyses: appended
- archetype: latest non-empty value wins
- confidence: ``max(old, new)``, so it never decreases
- red/green flags: order-preserving set union, never retracted
- final-chunk agendas and tactic lists: replaced only by a non-empty list

Every merge increments ``meta.chunks_processed`` by exactly one and stamps
``meta.last_updated_at``.
"""

from __future__ import annotations

from typing import Callable, Iterable, TypeVar

from profilestream.models import (
    AccumulatedProfile,
    ChunkResult,
    MatchBasicsResult,
    MatchFlagsResult,
    MatchImpressionsResult,
    MatchObservationsResult,
    MatchProfile,
    ProfileKind,
    SelfBasicsResult,
    SelfImpressionsResult,
    SelfObservationsResult,
    SelfProfile,
    SelfSynthesisResult,
    SubtextAnalysis,
    chunk_result_type,
    utc_now,
)

P = TypeVar("P", MatchProfile, SelfProfile)
T = TypeVar("T")


# =============================================================================
# Helpers
# =============================================================================


def union_preserving_order(existing: Iterable[str], incoming: Iterable[str]) -> list[str]:
    """Set union that keeps first-seen order."""
    return list(dict.fromkeys([*existing, *incoming]))


def replace_if_nonempty(current: list[T], incoming: list[T]) -> list[T]:
    return list(incoming) if incoming else list(current)


def _first_value(current: T | None, incoming: T | None) -> T | None:
    return current if current is not None else incoming


def _advance(profile: P) -> P:
    """Copy ``profile`` deeply and record one more processed chunk."""
    updated = profile.model_copy(deep=True)
    updated.meta.chunks_processed += 1
    updated.meta.last_updated_at = utc_now()
    return updated


# =============================================================================
# Match Profile Merges
# =============================================================================


def merge_match_basics(profile: MatchProfile, basics: MatchBasicsResult) -> MatchProfile:
    updated = _advance(profile)
    identity = updated.identity
    identity.name = _first_value(identity.name, basics.name)
    identity.age = _first_value(identity.age, basics.age)
    identity.location = _first_value(identity.location, basics.location)
    identity.job = _first_value(identity.job, basics.job)
    identity.app = _first_value(identity.app, basics.app)
    updated.photos.thumbnail_index = updated.photos.thumbnail_index or basics.thumbnail_index
    return updated


def merge_match_impressions(
    profile: MatchProfile, impressions: MatchImpressionsResult
) -> MatchProfile:
    updated = _advance(profile)
    psych = updated.psychological
    updated.photos.vibes_summary.extend(impressions.vibes)
    if impressions.emerging_archetype is not None:
        psych.emerging_archetype = impressions.emerging_archetype
    psych.confidence_level = max(psych.confidence_level, impressions.archetype_confidence)
    psych.signals.extend(impressions.first_impressions)
    return updated


def merge_match_observations(
    profile: MatchProfile, observations: MatchObservationsResult
) -> MatchProfile:
    updated = _advance(profile)
    updated.photos.analyses.extend(p.model_copy(deep=True) for p in observations.photos)
    updated.prompts.found.extend(p.model_copy(deep=True) for p in observations.prompts)
    updated.psychological.signals.extend(observations.signals)
    return updated


def merge_match_flags(profile: MatchProfile, flags: MatchFlagsResult) -> MatchProfile:
    updated = _advance(profile)
    psych = updated.psychological
    warnings = updated.early_warnings

    warnings.red_flags = union_preserving_order(warnings.red_flags, flags.red_flags)
    warnings.green_flags = union_preserving_order(warnings.green_flags, flags.green_flags)

    psych.emerging_archetype = flags.archetype_refinement or psych.emerging_archetype
    psych.confidence_level = max(psych.confidence_level, flags.final_confidence)
    psych.agendas = replace_if_nonempty(
        psych.agendas, [a.model_copy(deep=True) for a in flags.agendas]
    )
    psych.presentation_tactics = replace_if_nonempty(
        psych.presentation_tactics, flags.presentation_tactics
    )
    psych.predicted_tactics = replace_if_nonempty(psych.predicted_tactics, flags.predicted_tactics)
    return updated


# =============================================================================
# Self Profile Merges
# =============================================================================


def merge_self_basics(profile: SelfProfile, basics: SelfBasicsResult) -> SelfProfile:
    updated = _advance(profile)
    identity = updated.identity
    identity.name = _first_value(identity.name, basics.name)
    identity.age = _first_value(identity.age, basics.age)
    identity.location = _first_value(identity.location, basics.location)
    identity.occupation = _first_value(identity.occupation, basics.occupation)
    updated.photos.thumbnail_index = updated.photos.thumbnail_index or basics.thumbnail_index
    updated.photos.vibes_summary.extend(basics.initial_vibes)
    return updated


def merge_self_impressions(profile: SelfProfile, impressions: SelfImpressionsResult) -> SelfProfile:
    updated = _advance(profile)
    psych = updated.psychological
    behavioral = updated.behavioral

    updated.photos.vibes_summary.extend(impressions.vibes)
    if impressions.archetype is not None:
        psych.archetype = impressions.archetype
    psych.confidence_level = max(psych.confidence_level, impressions.archetype_confidence)
    behavioral.strengths.extend(impressions.initial_strengths)
    behavioral.communication_style = (
        ". ".join(impressions.communication_hints) or behavioral.communication_style
    )
    return updated


def merge_self_observations(
    profile: SelfProfile, observations: SelfObservationsResult
) -> SelfProfile:
    updated = _advance(profile)
    psych = updated.psychological
    old = psych.subtext_analysis
    new = observations.subtext_analysis

    updated.photos.analyses.extend(p.model_copy(deep=True) for p in observations.photos)
    psych.presentation_tactics.extend(observations.presentation_tactics)
    psych.subtext_analysis = SubtextAnalysis(
        sexual_signaling=new.sexual_signaling or old.sexual_signaling,
        power_dynamics=new.power_dynamics or old.power_dynamics,
        vulnerability_indicators=new.vulnerability_indicators or old.vulnerability_indicators,
        disconnect=new.disconnect or old.disconnect,
    )
    return updated


def merge_self_synthesis(profile: SelfProfile, synthesis: SelfSynthesisResult) -> SelfProfile:
    updated = _advance(profile)
    psych = updated.psychological
    behavioral = updated.behavioral
    dating = updated.dating

    psych.archetype = synthesis.archetype_refinement or psych.archetype
    psych.confidence_level = max(psych.confidence_level, synthesis.final_confidence)
    psych.agendas = replace_if_nonempty(
        psych.agendas, [a.model_copy(deep=True) for a in synthesis.agendas]
    )
    psych.predicted_tactics = replace_if_nonempty(
        psych.predicted_tactics, synthesis.predicted_tactics
    )

    behavioral.communication_style = synthesis.communication_style or behavioral.communication_style
    behavioral.attachment_patterns = synthesis.attachment_patterns or behavioral.attachment_patterns
    behavioral.attachment_confidence = synthesis.attachment_confidence
    behavioral.strengths = union_preserving_order(behavioral.strengths, synthesis.strengths)
    behavioral.growth_areas = union_preserving_order(behavioral.growth_areas, synthesis.growth_areas)

    dating.ideal_partner_profile = synthesis.ideal_partner_profile or dating.ideal_partner_profile
    dating.what_to_look_for = replace_if_nonempty(dating.what_to_look_for, synthesis.what_to_look_for)
    dating.what_to_avoid = replace_if_nonempty(dating.what_to_avoid, synthesis.what_to_avoid)
    dating.bio_suggestions = replace_if_nonempty(dating.bio_suggestions, synthesis.bio_suggestions)
    dating.opener_style_recommendations = replace_if_nonempty(
        dating.opener_style_recommendations, synthesis.opener_style_recommendations
    )
    return updated


# =============================================================================
# Dispatch
# =============================================================================

MATCH_MERGES: tuple[Callable[[MatchProfile, ChunkResult], MatchProfile], ...] = (
    merge_match_basics,  # type: ignore[assignment]
    merge_match_impressions,  # type: ignore[assignment]
    merge_match_observations,  # type: ignore[assignment]
    merge_match_flags,  # type: ignore[assignment]
)

SELF_MERGES: tuple[Callable[[SelfProfile, ChunkResult], SelfProfile], ...] = (
    merge_self_basics,  # type: ignore[assignment]
    merge_self_impressions,  # type: ignore[assignment]
    merge_self_observations,  # type: ignore[assignment]
    merge_self_synthesis,  # type: ignore[assignment]
)


def merge_chunk(profile: AccumulatedProfile, chunk_index: int, result: ChunkResult) -> AccumulatedProfile:
    """Apply the merge for chunk ``chunk_index``; later chunks reuse the final merge.

    Raises:
        TypeError: ``result`` is not the chunk kind expected at that index.
    """
    kind = ProfileKind.MATCH if isinstance(profile, MatchProfile) else ProfileKind.SELF
    expected = chunk_result_type(kind, chunk_index)
    if not isinstance(result, expected):
        raise TypeError(
            f"Chunk {chunk_index} of a {kind.value} profile expects {expected.__name__}, "
            f"got {type(result).__name__}"
        )

    merges = MATCH_MERGES if kind == ProfileKind.MATCH else SELF_MERGES
    return merges[min(chunk_index, len(merges) - 1)](profile, result)  # type: ignore[arg-type]

"""Tests for the accumulator merge engine."""

from __future__ import annotations

import pytest

from profilestream.merge import (
    merge_chunk,
    merge_match_basics,
    merge_match_flags,
    merge_match_impressions,
    merge_match_observations,
    merge_self_impressions,
    merge_self_observations,
    merge_self_synthesis,
    replace_if_nonempty,
    union_preserving_order,
)
from profilestream.models import (
    Agenda,
    AgendaPriority,
    ChunkResult,
    MatchBasicsResult,
    MatchFlagsResult,
    MatchImpressionsResult,
    MatchObservationsResult,
    MatchProfile,
    SelfImpressionsResult,
    SelfObservationsResult,
    SelfProfile,
    SelfSynthesisResult,
    SubtextAnalysis,
)

# =============================================================================
# Helpers
# =============================================================================


class TestHelpers:
    def test_union_keeps_first_seen_order(self) -> None:
        assert union_preserving_order(["a", "b"], ["b", "c", "a"]) == ["a", "b", "c"]

    def test_replace_if_nonempty(self) -> None:
        assert replace_if_nonempty([1, 2], []) == [1, 2]
        assert replace_if_nonempty([1, 2], [3]) == [3]


# =============================================================================
# Invariants
# =============================================================================


class TestInvariants:
    """Properties that hold for every merge sequence."""

    def test_chunks_processed_counts_merges(self, match_results: list[ChunkResult]) -> None:
        """After k merges of any kind, chunks_processed equals k."""
        profile = MatchProfile()
        for k, index in enumerate([0, 1, 2, 3, 3, 3], start=1):
            result = match_results[min(index, 3)]
            profile = merge_chunk(profile, index, result)
            assert profile.meta.chunks_processed == k

    def test_confidence_never_decreases(self) -> None:
        profile = MatchProfile()
        for confidence in (60, 20, 0, 75, 40):
            merged = merge_match_impressions(
                profile, MatchImpressionsResult(archetype_confidence=confidence)
            )
            assert merged.psychological.confidence_level >= profile.psychological.confidence_level
            profile = merged

        profile = merge_match_flags(profile, MatchFlagsResult(final_confidence=10))
        assert profile.psychological.confidence_level == 75

    def test_input_is_not_mutated(self, match_results: list[ChunkResult]) -> None:
        original = MatchProfile()
        merge_chunk(original, 0, match_results[0])
        merge_chunk(original, 1, match_results[1])

        assert original == MatchProfile(meta=original.meta)
        assert original.meta.chunks_processed == 0
        assert original.identity.name is None

    def test_last_updated_is_refreshed(self, match_results: list[ChunkResult]) -> None:
        profile = MatchProfile()
        merged = merge_chunk(profile, 0, match_results[0])

        assert merged.meta.last_updated_at >= profile.meta.last_updated_at
        assert merged.meta.started_at == profile.meta.started_at


# =============================================================================
# Match Merges
# =============================================================================


class TestMatchMerges:
    def test_identity_first_value_wins(self) -> None:
        """Once set, an identity field survives later nulls and later values."""
        profile = merge_match_basics(MatchProfile(), MatchBasicsResult(name="Sam", age=None))
        profile = merge_match_basics(profile, MatchBasicsResult(name=None, age=29))
        profile = merge_match_basics(profile, MatchBasicsResult(name="Samantha", age=35))

        assert profile.identity.name == "Sam"
        assert profile.identity.age == 29

    def test_thumbnail_set_only_while_unset(self) -> None:
        profile = merge_match_basics(MatchProfile(), MatchBasicsResult(thumbnail_index=0))
        profile = merge_match_basics(profile, MatchBasicsResult(thumbnail_index=2))
        profile = merge_match_basics(profile, MatchBasicsResult(thumbnail_index=3))

        assert profile.photos.thumbnail_index == 2

    def test_impressions_append_and_latest_archetype(self) -> None:
        profile = merge_match_impressions(
            MatchProfile(),
            MatchImpressionsResult(vibes=["Urban"], first_impressions=["Confident"], emerging_archetype="A"),
        )
        profile = merge_match_impressions(
            profile, MatchImpressionsResult(vibes=["Artsy"], emerging_archetype=None)
        )
        profile = merge_match_impressions(profile, MatchImpressionsResult(emerging_archetype="B"))

        assert profile.photos.vibes_summary == ["Urban", "Artsy"]
        assert profile.psychological.signals == ["Confident"]
        assert profile.psychological.emerging_archetype == "B"

    def test_observations_append(self, match_results: list[ChunkResult]) -> None:
        observations = match_results[2]
        assert isinstance(observations, MatchObservationsResult)

        profile = merge_match_observations(MatchProfile(), observations)
        profile = merge_match_observations(profile, observations)

        assert len(profile.photos.analyses) == 2
        assert len(profile.prompts.found) == 2
        assert profile.psychological.signals == ["Uses humor to deflect"] * 2

    def test_flags_accumulate_as_set(self) -> None:
        """Duplicates appear once and early flags are never retracted."""
        profile = MatchProfile()
        profile = merge_match_flags(profile, MatchFlagsResult(red_flags=["Vague"], green_flags=["Kind"]))
        profile = merge_match_flags(profile, MatchFlagsResult(red_flags=["Vague", "Rude to waiter"]))
        profile = merge_match_flags(profile, MatchFlagsResult(green_flags=["Kind", "Funny"]))

        assert profile.early_warnings.red_flags == ["Vague", "Rude to waiter"]
        assert profile.early_warnings.green_flags == ["Kind", "Funny"]

    def test_empty_final_lists_do_not_erase(self) -> None:
        agenda = Agenda(type="Convince someone", evidence="Bio", priority="primary")
        profile = merge_match_flags(
            MatchProfile(),
            MatchFlagsResult(agendas=[agenda], presentation_tactics=["Charm"], predicted_tactics=["Tease"]),
        )
        profile = merge_match_flags(profile, MatchFlagsResult())

        assert profile.psychological.agendas[0].priority == AgendaPriority.PRIMARY
        assert profile.psychological.presentation_tactics == ["Charm"]
        assert profile.psychological.predicted_tactics == ["Tease"]

    def test_refinement_replaces_archetype_only_when_present(self) -> None:
        profile = merge_match_impressions(MatchProfile(), MatchImpressionsResult(emerging_archetype="Early read"))
        kept = merge_match_flags(profile, MatchFlagsResult(archetype_refinement=None))
        refined = merge_match_flags(profile, MatchFlagsResult(archetype_refinement="Final read"))

        assert kept.psychological.emerging_archetype == "Early read"
        assert refined.psychological.emerging_archetype == "Final read"


# =============================================================================
# Self Merges
# =============================================================================


class TestSelfMerges:
    def test_communication_hints_joined(self) -> None:
        profile = merge_self_impressions(
            SelfProfile(), SelfImpressionsResult(communication_hints=["Playful", "Direct"])
        )
        unchanged = merge_self_impressions(profile, SelfImpressionsResult())

        assert profile.behavioral.communication_style == "Playful. Direct"
        assert unchanged.behavioral.communication_style == "Playful. Direct"

    def test_subtext_fields_keep_earlier_values(self) -> None:
        profile = merge_self_observations(
            SelfProfile(),
            SelfObservationsResult(subtext_analysis=SubtextAnalysis(power_dynamics="Equal")),
        )
        profile = merge_self_observations(
            profile,
            SelfObservationsResult(subtext_analysis=SubtextAnalysis(disconnect="Bio is shy, photos are bold")),
        )

        subtext = profile.psychological.subtext_analysis
        assert subtext.power_dynamics == "Equal"
        assert subtext.disconnect == "Bio is shy, photos are bold"

    def test_synthesis_merges_strengths_and_strategy(self) -> None:
        profile = merge_self_impressions(
            SelfProfile(), SelfImpressionsResult(initial_strengths=["Warm smile"])
        )
        profile = merge_self_synthesis(
            profile,
            SelfSynthesisResult(
                strengths=["Curious", "Warm smile"],
                bio_suggestions=["Add a prompt about travel"],
                attachment_confidence=40,
            ),
        )
        profile = merge_self_synthesis(profile, SelfSynthesisResult())

        assert profile.behavioral.strengths == ["Warm smile", "Curious"]
        assert profile.dating.bio_suggestions == ["Add a prompt about travel"]


# =============================================================================
# Dispatch
# =============================================================================


class TestMergeChunk:
    def test_wrong_result_kind_raises(self) -> None:
        with pytest.raises(TypeError, match="expects MatchBasicsResult"):
            merge_chunk(MatchProfile(), 0, MatchFlagsResult())

    def test_self_profile_rejects_match_results(self) -> None:
        with pytest.raises(TypeError):
            merge_chunk(SelfProfile(), 1, MatchImpressionsResult())

    def test_extra_chunks_reuse_final_merge(self) -> None:
        profile = merge_chunk(MatchProfile(), 5, MatchFlagsResult(red_flags=["Late"]))

        assert profile.early_warnings.red_flags == ["Late"]
        assert profile.meta.chunks_processed == 1

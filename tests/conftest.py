"""Central pytest fixtures for profilestream.

Fixtures included:
- Frames: frames (opaque byte frames), jpeg_frame (real encoded images)
- Chunk results: match_results, self_results
- Collaborators: store (in-memory record store)
- Environment: isolated_dirs (config and data dirs under tmp_path)
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Callable

import numpy as np
import pytest
from PIL import Image

from profilestream.models import (
    Agenda,
    ChunkResult,
    MatchBasicsResult,
    MatchFlagsResult,
    MatchImpressionsResult,
    MatchObservationsResult,
    PhotoAnalysis,
    PromptAnalysis,
    SelfBasicsResult,
    SelfImpressionsResult,
    SelfObservationsResult,
    SelfSynthesisResult,
    SubtextAnalysis,
    SuggestedOpener,
)

from fakes import InMemoryStore

# =============================================================================
# Helper Functions
# =============================================================================


def encode_jpeg(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=90)
    return buffer.getvalue()


# =============================================================================
# Frame Fixtures
# =============================================================================


@pytest.fixture
def frames() -> list[bytes]:
    """Sixteen distinct opaque frames, enough for a full four-chunk run."""
    return [f"frame-{i}".encode() for i in range(16)]


@pytest.fixture
def jpeg_frame() -> Callable[..., bytes]:
    """Factory for real JPEG frames.

    ``jpeg_frame("black")`` gives a solid color; ``jpeg_frame(noise=True)``
    gives a colorful, photo-like frame.
    """

    def _make(color: str = "gray", size: tuple[int, int] = (100, 100), noise: bool = False) -> bytes:
        if noise:
            rng = np.random.default_rng(7)
            pixels = rng.integers(0, 256, size=(size[1], size[0], 3), dtype=np.uint8)
            return encode_jpeg(Image.fromarray(pixels))
        return encode_jpeg(Image.new("RGB", size, color=color))

    return _make


# =============================================================================
# Chunk Result Fixtures
# =============================================================================


@pytest.fixture
def match_results() -> list[ChunkResult]:
    """One realistic result per chunk of a match run."""
    return [
        MatchBasicsResult(name="Sam", age=29, location="Austin", app="Hinge", thumbnail_index=1),
        MatchImpressionsResult(
            vibes=["Adventure Seeker"],
            first_impressions=["Projects confidence"],
            emerging_archetype="Outdoorsy extrovert",
            archetype_confidence=35,
        ),
        MatchObservationsResult(
            photos=[PhotoAnalysis(description="Summit selfie", vibe="Outdoorsy", subtext="Values effort")],
            prompts=[
                PromptAnalysis(
                    question="My simple pleasures",
                    answer="Sunrise hikes",
                    analysis="Signals discipline",
                    suggested_opener=SuggestedOpener(
                        message="Which trail is worth the 5am alarm?",
                        tactic="Challenge",
                        why_it_works="Invites a story",
                    ),
                )
            ],
            signals=["Uses humor to deflect"],
        ),
        MatchFlagsResult(
            red_flags=["Vague about intentions"],
            green_flags=["Kind to friends"],
            agendas=[Agenda(type="Find out something important", evidence="Prompt 1", priority="primary")],
            presentation_tactics=["Charm"],
            predicted_tactics=["Tease"],
            archetype_refinement="Driven adventurer looking for a teammate",
            final_confidence=70,
        ),
    ]


@pytest.fixture
def self_results() -> list[ChunkResult]:
    """One realistic result per chunk of a self run."""
    return [
        SelfBasicsResult(name="Alex", age=31, occupation="Designer", thumbnail_index=2, initial_vibes=["Warm"]),
        SelfImpressionsResult(
            vibes=["Creative Soul"],
            archetype="Thoughtful creative",
            archetype_confidence=30,
            initial_strengths=["Warm smile"],
            communication_hints=["Playful", "Direct"],
        ),
        SelfObservationsResult(
            photos=[PhotoAnalysis(description="Studio shot", vibe="Artsy", subtext="Shows craft")],
            presentation_tactics=["Hobby photos"],
            subtext_analysis=SubtextAnalysis(power_dynamics="Equal"),
        ),
        SelfSynthesisResult(
            communication_style="Warm and direct",
            attachment_confidence=45,
            strengths=["Warm smile", "Curious"],
            growth_areas=["Show more adventure"],
            bio_suggestions=["Lead with the ceramics story"],
            final_confidence=75,
        ),
    ]


# =============================================================================
# Collaborator Fixtures
# =============================================================================


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


# =============================================================================
# Environment Fixtures
# =============================================================================


@pytest.fixture
def isolated_dirs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point config and data directories at tmp_path and clear the API key."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    # setenv first so teardown also removes a key stored by the env backend
    monkeypatch.setenv("GEMINI_API_KEY", "")
    monkeypatch.delenv("GEMINI_API_KEY")
    monkeypatch.setattr("platform.system", lambda: "Linux")
    return tmp_path

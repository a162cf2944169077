"""Frame quality scoring for thumbnail selection.

Scores frames on a tiny downsampled copy so a full run of 16 frames costs a
few milliseconds. Three signals feed a 0-100 composite:

- brightness: mean luma (0.299R + 0.587G + 0.114B)
- variance: average per-channel color variance, normalized to 0-1
- edge density: share of interior pixels whose two-tap gradient magnitude
  exceeds a fixed threshold

Busy edges without color diversity read as a text or UI screenshot rather
than a photo of a person.

Example:
    >>> scores = await score_all(frames)
    >>> best = find_best_frame_index(scores)
    >>> print(generate_quality_hints(scores))
    Frame 0: poor quality (score: 5/100) [LIKELY DARK]
    Frame 1: good quality (score: 80/100)
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np
from PIL import Image

from profilestream.models import Frame, FrameQualityScore

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

ANALYSIS_SIZE = 100

DARK_THRESHOLD = 30
LOW_VARIANCE_THRESHOLD = 0.08
HIGH_EDGE_THRESHOLD = 0.25
USABLE_SCORE_THRESHOLD = 35
EDGE_GRADIENT_THRESHOLD = 30
VARIANCE_NORMALIZER = 10000.0

GOOD_QUALITY_SCORE = 65
MODERATE_QUALITY_SCORE = 40

LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])

ScorableFrame = Union[Frame, Image.Image]


@dataclass(frozen=True)
class ThumbnailValidation:
    """Outcome of checking a suggested thumbnail against quality scores.

    Attributes:
        final_index: Index to use.
        was_overridden: True when ``final_index`` differs from the suggestion
            because the suggestion was unusable.
        reason: Diagnostic explanation for an override.
    """

    final_index: int
    was_overridden: bool
    reason: str | None = None


# =============================================================================
# Pixel Access
# =============================================================================


def _decode_frame(frame: ScorableFrame) -> Image.Image:
    if isinstance(frame, Image.Image):
        return frame
    if isinstance(frame, str):
        payload = frame.split(",", 1)[1] if frame.startswith("data:") else frame
        try:
            frame = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Frame is not valid base64: {e}") from e
    return Image.open(io.BytesIO(frame))


def load_pixels(frame: ScorableFrame) -> np.ndarray:
    """Decode ``frame`` to an ``ANALYSIS_SIZE`` square RGB float array."""
    image = _decode_frame(frame)
    if image.mode != "RGB":
        image = image.convert("RGB")
    image = image.resize((ANALYSIS_SIZE, ANALYSIS_SIZE), Image.Resampling.BILINEAR)
    return np.asarray(image, dtype=np.float64)


# =============================================================================
# Signals
# =============================================================================


def calculate_brightness(pixels: np.ndarray) -> float:
    """Mean luma of an RGB array, 0-255."""
    return float((pixels @ LUMA_WEIGHTS).mean())


def calculate_color_variance(pixels: np.ndarray) -> float:
    """Average per-channel population variance, normalized and capped at 1."""
    channel_variance = pixels.reshape(-1, 3).var(axis=0)
    return float(min(channel_variance.mean() / VARIANCE_NORMALIZER, 1.0))


def calculate_edge_density(pixels: np.ndarray) -> float:
    """Fraction of interior pixels with gradient magnitude above the threshold."""
    gray = pixels @ LUMA_WEIGHTS
    height, width = gray.shape
    if height < 3 or width < 3:
        return 0.0

    gx = gray[1:-1, 2:] - gray[1:-1, :-2]
    gy = gray[2:, 1:-1] - gray[:-2, 1:-1]
    magnitude = np.sqrt(gx * gx + gy * gy)
    edge_count = int(np.count_nonzero(magnitude > EDGE_GRADIENT_THRESHOLD))
    return edge_count / ((width - 2) * (height - 2))


def composite_score(brightness: float, variance: float, edge_density: float) -> float:
    """Combine the three signals into a clamped 0-100 score."""
    is_text_heavy = edge_density > HIGH_EDGE_THRESHOLD and variance < LOW_VARIANCE_THRESHOLD
    score = 50.0

    if brightness < DARK_THRESHOLD:
        score -= 30
    elif brightness < 50:
        score -= 15
    elif brightness > 225:
        score -= 10
    elif 80 <= brightness <= 180:
        score += 15

    if variance > 0.3:
        score += 30
    elif variance > 0.15:
        score += 20
    elif variance > LOW_VARIANCE_THRESHOLD:
        score += 10
    else:
        score -= 15

    if is_text_heavy:
        score -= 20
    elif edge_density > 0.4:
        score -= 10
    elif 0.15 < edge_density < 0.35:
        score += 10

    return max(0.0, min(100.0, score))


def neutral_score(index: int) -> FrameQualityScore:
    """Usable mid-range score returned when a frame cannot be analyzed."""
    return FrameQualityScore(
        index=index,
        brightness=128.0,
        variance=0.5,
        edge_density=0.2,
        is_likely_dark=False,
        is_likely_text_heavy=False,
        overall_score=50.0,
        is_usable=True,
    )


# =============================================================================
# Scoring
# =============================================================================


def score_frame(frame: ScorableFrame, index: int = 0) -> FrameQualityScore:
    """Score a single frame. Never raises.

    Args:
        frame: JPEG/PNG bytes, a base64 data URL, or a PIL image.
        index: Index recorded on the returned score.

    Returns:
        The frame's score, or :func:`neutral_score` if it could not be decoded.
    """
    try:
        pixels = load_pixels(frame)
        brightness = calculate_brightness(pixels)
        variance = calculate_color_variance(pixels)
        edge_density = calculate_edge_density(pixels)
    except Exception as e:
        logger.warning(f"Failed to score frame {index}, using neutral score: {e}")
        return neutral_score(index)

    is_dark = brightness < DARK_THRESHOLD
    is_text_heavy = edge_density > HIGH_EDGE_THRESHOLD and variance < LOW_VARIANCE_THRESHOLD
    score = composite_score(brightness, variance, edge_density)

    return FrameQualityScore(
        index=index,
        brightness=brightness,
        variance=variance,
        edge_density=edge_density,
        is_likely_dark=is_dark,
        is_likely_text_heavy=is_text_heavy,
        overall_score=score,
        is_usable=score >= USABLE_SCORE_THRESHOLD and not is_dark,
    )


async def score_all(frames: Sequence[ScorableFrame], index_offset: int = 0) -> list[FrameQualityScore]:
    """Score frames concurrently, preserving input order.

    Each frame is decoded in a worker thread. One bad frame degrades to a
    neutral score without affecting the others.

    Args:
        frames: Frames to score.
        index_offset: Added to each frame's position to form its score index.
    """
    return list(
        await asyncio.gather(
            *(
                asyncio.to_thread(score_frame, frame, index_offset + position)
                for position, frame in enumerate(frames)
            )
        )
    )


class FrameQualityScorer:
    """Injectable wrapper around :func:`score_all`."""

    async def score_all(
        self, frames: Sequence[ScorableFrame], index_offset: int = 0
    ) -> list[FrameQualityScore]:
        return await score_all(frames, index_offset=index_offset)


# =============================================================================
# Selection
# =============================================================================


def _highest(scores: Sequence[FrameQualityScore]) -> FrameQualityScore:
    best = scores[0]
    for candidate in scores[1:]:
        # Ties go to the later frame
        if not best.overall_score > candidate.overall_score:
            best = candidate
    return best


def find_best_frame_index(scores: Sequence[FrameQualityScore]) -> int:
    """Pick the best thumbnail candidate.

    Preference order: highest-scoring usable frame, then the first non-dark
    frame, then the highest-scoring frame overall. Empty input yields 0.
    """
    if not scores:
        return 0

    usable = [s for s in scores if s.is_usable]
    if usable:
        return _highest(usable).index

    for score in scores:
        if not score.is_likely_dark:
            return score.index

    return _highest(scores).index


def score_for_index(scores: Sequence[FrameQualityScore], index: int) -> FrameQualityScore | None:
    for score in scores:
        if score.index == index:
            return score
    return None


def validate_thumbnail_choice(
    chosen_index: int, scores: Sequence[FrameQualityScore]
) -> ThumbnailValidation:
    """Keep a suggested thumbnail if usable, otherwise override it.

    An index outside ``scores`` passes through unmodified, since the caller
    may not have scores for it yet.
    """
    if not scores or chosen_index < 0 or chosen_index >= len(scores):
        return ThumbnailValidation(final_index=chosen_index, was_overridden=False)

    chosen = scores[chosen_index]
    if chosen.is_usable:
        return ThumbnailValidation(final_index=chosen_index, was_overridden=False)

    better_index = find_best_frame_index(scores)
    if chosen.is_likely_dark:
        reason = "chosen frame is dark, overriding with better quality frame"
    elif chosen.is_likely_text_heavy:
        reason = "chosen frame is text-heavy, overriding with better quality frame"
    else:
        better = score_for_index(scores, better_index)
        better_value = round(better.overall_score) if better else "N/A"
        reason = (
            f"chosen frame score ({round(chosen.overall_score)}) below threshold, "
            f"using frame with score {better_value}"
        )

    return ThumbnailValidation(final_index=better_index, was_overridden=True, reason=reason)


def generate_quality_hints(scores: Sequence[FrameQualityScore]) -> str:
    """Render one hint line per frame for the inference prompt."""
    lines = []
    for score in scores:
        flags = []
        if score.is_likely_dark:
            flags.append("LIKELY DARK")
        if score.is_likely_text_heavy:
            flags.append("LIKELY TEXT-HEAVY")

        if score.overall_score >= GOOD_QUALITY_SCORE:
            quality = "good quality"
        elif score.overall_score >= MODERATE_QUALITY_SCORE:
            quality = "moderate quality"
        else:
            quality = "poor quality"

        flag_text = f" [{', '.join(flags)}]" if flags else ""
        lines.append(
            f"Frame {score.index}: {quality} (score: {round(score.overall_score)}/100){flag_text}"
        )
    return "\n".join(lines)

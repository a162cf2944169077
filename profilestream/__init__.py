"""profilestream - progressive analysis of dating profile screen recordings.

Frames are sampled from a recording in four chunks. Each chunk is sent to
Gemini as soon as it is captured, and the partial results are merged into a
single profile that grows more detailed with every chunk. A run can be
aborted at any point and still keep what it learned so far.

Quick Start:
    >>> from profilestream import StreamingAnalysisController
    >>> controller = StreamingAnalysisController(hooks, FfmpegFrameSource())
    >>> state = await controller.start("recording.mp4")
    >>> print(state.profile.identity.name)

CLI Usage:
    $ profilestream config set-key      # Configure Gemini API key
    $ profilestream analyze recording.mp4
    $ profilestream analyze me.mp4 --kind self
"""

__version__ = "0.1.0"

from profilestream.cancellation import CancellationToken
from profilestream.controller import (
    AnalysisHooks,
    ChunkAnalysisOptions,
    StreamingAnalysisController,
    StreamingState,
)
from profilestream.errors import (
    ChunkAnalysisError,
    ErrorCategory,
    FrameExtractionError,
    OperationCancelledError,
    ProfileStreamError,
    StorageError,
)
from profilestream.models import (
    FrameQualityScore,
    MatchProfile,
    ProfileKind,
    SelfProfile,
    StreamingPhase,
)

__all__ = [
    # Version
    "__version__",
    # Controller
    "StreamingAnalysisController",
    "StreamingState",
    "AnalysisHooks",
    "ChunkAnalysisOptions",
    "CancellationToken",
    # Models
    "StreamingPhase",
    "ProfileKind",
    "MatchProfile",
    "SelfProfile",
    "FrameQualityScore",
    # Errors
    "ProfileStreamError",
    "ErrorCategory",
    "FrameExtractionError",
    "ChunkAnalysisError",
    "OperationCancelledError",
    "StorageError",
]

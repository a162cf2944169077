"""Frame capture from video files with ffmpeg.

Samples a fixed number of timestamps evenly across a video, grabs one JPEG
per timestamp, and hands frames to the caller in fixed-size chunks as soon
as each chunk is full, so analysis of early chunks can start before the
whole video has been read.

Requires ``ffmpeg`` and ``ffprobe`` on the PATH.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from profilestream.cancellation import CancellationToken
from profilestream.config import StreamingSettings
from profilestream.errors import FrameExtractionError, FrameExtractionReason, OperationCancelledError
from profilestream.models import Frame

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SECONDS = 15.0


@dataclass(frozen=True)
class VideoInfo:
    """Basic video metadata read with ffprobe."""

    duration: float
    width: int
    height: int

    def __str__(self) -> str:
        return f"{self.width}x{self.height}, {self.duration:.1f} seconds"


@dataclass(frozen=True)
class FrameChunk:
    """A batch of consecutive frames ready for analysis.

    Attributes:
        chunk_index: 0-based position of this chunk.
        total_chunks: How many chunks the run will produce.
        frames: Frames in this chunk.
        all_frames_so_far: Every frame captured up to and including this chunk.
    """

    chunk_index: int
    total_chunks: int
    frames: Sequence[Frame]
    all_frames_so_far: Sequence[Frame]


def sample_timestamps(duration: float, count: int) -> list[float]:
    """Evenly spaced sample points, each centered in its slice of the video."""
    if count <= 0 or duration <= 0:
        return []
    step = duration / count
    return [round(step * (i + 0.5), 3) for i in range(count)]


class FfmpegFrameSource:
    """Frame source backed by ffmpeg subprocesses.

    Example:
        >>> source = FfmpegFrameSource()
        >>> await source.extract_chunked(
        ...     "recording.mp4", chunk_size=4, total_frames=16,
        ...     on_chunk_ready=lambda chunk: print(chunk.chunk_index),
        ... )
    """

    def __init__(
        self,
        settings: StreamingSettings | None = None,
        ffmpeg: str = "ffmpeg",
        ffprobe: str = "ffprobe",
    ) -> None:
        self.settings = settings or StreamingSettings()
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe

    async def extract_chunked(
        self,
        source: str | Path,
        *,
        chunk_size: int,
        total_frames: int,
        on_chunk_ready: Callable[[FrameChunk], None],
        on_metadata_loaded: Callable[[VideoInfo], None] | None = None,
        token: CancellationToken | None = None,
    ) -> None:
        """Capture ``total_frames`` frames and emit them ``chunk_size`` at a time.

        A trailing partial chunk is emitted too.

        Raises:
            FrameExtractionError: ``load_failed`` for a missing file or missing
                ffmpeg, ``decode_failed`` when nothing can be decoded,
                ``timeout`` when a capture hangs, ``aborted`` on cancellation.
        """
        path = Path(source)
        if not path.is_file():
            raise FrameExtractionError(
                FrameExtractionReason.LOAD_FAILED,
                f"Video file not found: {path}",
                context={"source": str(path)},
            )

        info = await self.probe(path, token=token)
        logger.debug(f"Probed {path.name}: {info}")
        if on_metadata_loaded is not None:
            on_metadata_loaded(info)

        timestamps = sample_timestamps(info.duration, total_frames)
        if not timestamps:
            raise FrameExtractionError(
                FrameExtractionReason.DECODE_FAILED,
                f"Video has no duration: {path}",
                context={"source": str(path)},
            )

        total_chunks = math.ceil(len(timestamps) / chunk_size)
        all_frames: list[Frame] = []
        current: list[Frame] = []

        for frame_index, timestamp in enumerate(timestamps):
            if token is not None and token.is_cancelled:
                raise FrameExtractionError(
                    FrameExtractionReason.ABORTED, frame_index=frame_index
                )

            frame = await self.grab_frame(path, timestamp, frame_index=frame_index, token=token)
            all_frames.append(frame)
            current.append(frame)

            if len(current) == chunk_size or frame_index == len(timestamps) - 1:
                on_chunk_ready(
                    FrameChunk(
                        chunk_index=frame_index // chunk_size,
                        total_chunks=total_chunks,
                        frames=list(current),
                        all_frames_so_far=list(all_frames),
                    )
                )
                current = []

    async def probe(self, path: Path, token: CancellationToken | None = None) -> VideoInfo:
        """Read duration and dimensions of the first video stream.

        Raises:
            FrameExtractionError: ``decode_failed`` if ffprobe cannot read the file.
        """
        cmd = [
            self.ffprobe,
            "-v",
            "error",
            "-select_streams",
            "v:0",
            "-show_entries",
            "stream=width,height",
            "-show_entries",
            "format=duration",
            "-print_format",
            "json",
            str(path),
        ]
        stdout = await self._run(cmd, PROBE_TIMEOUT_SECONDS, token)

        try:
            probe_data = json.loads(stdout)
            stream_info = probe_data["streams"][0]
            return VideoInfo(
                duration=float(probe_data["format"]["duration"]),
                width=int(stream_info["width"]),
                height=int(stream_info["height"]),
            )
        except (json.JSONDecodeError, KeyError, IndexError, TypeError, ValueError) as e:
            raise FrameExtractionError(
                FrameExtractionReason.DECODE_FAILED,
                f"Could not read video metadata: {e}",
                context={"source": str(path)},
                original_error=e,
            ) from e

    async def grab_frame(
        self,
        path: Path,
        timestamp: float,
        frame_index: int | None = None,
        token: CancellationToken | None = None,
    ) -> bytes:
        """Capture the frame at ``timestamp`` seconds as JPEG bytes."""
        size = self.settings.frame_max_dimension
        cmd = [
            self.ffmpeg,
            "-v",
            "error",
            "-ss",
            f"{timestamp:.3f}",
            "-i",
            str(path),
            "-frames:v",
            "1",
            "-vf",
            f"scale={size}:{size}:force_original_aspect_ratio=decrease",
            "-q:v",
            str(self.settings.jpeg_quality),
            "-f",
            "image2pipe",
            "-vcodec",
            "mjpeg",
            "pipe:1",
        ]
        frame = await self._run(
            cmd, self.settings.frame_timeout_seconds, token, frame_index=frame_index
        )
        if not frame:
            raise FrameExtractionError(
                FrameExtractionReason.DECODE_FAILED,
                f"No frame decoded at {timestamp:.2f}s",
                frame_index=frame_index,
            )
        return frame

    async def _run(
        self,
        cmd: list[str],
        timeout: float,
        token: CancellationToken | None,
        frame_index: int | None = None,
    ) -> bytes:
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError as e:
            raise FrameExtractionError(
                FrameExtractionReason.LOAD_FAILED,
                f"{cmd[0]} is not installed or not on PATH",
                frame_index=frame_index,
                original_error=e,
            ) from e

        waiter = asyncio.wait_for(process.communicate(), timeout=timeout)
        try:
            stdout, stderr = await (token.run(waiter) if token is not None else waiter)
        except OperationCancelledError as e:
            await self._kill(process)
            raise FrameExtractionError(
                FrameExtractionReason.ABORTED, frame_index=frame_index, original_error=e
            ) from e
        except asyncio.TimeoutError as e:
            await self._kill(process)
            raise FrameExtractionError(
                FrameExtractionReason.TIMEOUT,
                f"{cmd[0]} did not finish within {timeout:.0f}s",
                frame_index=frame_index,
                original_error=e,
            ) from e

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip() or f"exit code {process.returncode}"
            raise FrameExtractionError(
                FrameExtractionReason.DECODE_FAILED,
                f"{cmd[0]} failed: {message}",
                frame_index=frame_index,
            )
        return stdout

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()

"""
FFmpeg Stitcher - Turn a sequence of stills into one crossfaded video
"""

import subprocess
import shutil
import os
from typing import Any, Dict, List, Optional
from pathlib import Path

from mediaforge.config.settings import settings
from mediaforge.config.constants import (
    FFMPEG_LEVEL,
    FFMPEG_PIXEL_FORMAT,
    FFMPEG_PROFILE,
    FFMPEG_VIDEO_CODEC,
    STORY_FADE_DURATION_S,
    STORY_SHOT_DURATION_S,
    STORY_ZOOM_MAX,
    STORY_ZOOM_STEP,
)
from mediaforge.services.observability import logger


class FFmpegError(Exception):
    """FFmpeg processing error"""

    def __init__(self, message: str, code: str, details: Optional[str] = None):
        self.message = message
        self.code = code
        self.details = details
        super().__init__(self.message)


class FFmpegStitcher:
    """
    Stitch stills into a video: each still is looped for a fixed duration
    with a slow zoom, and consecutive shots are joined with a crossfade.
    """

    # Error codes
    ERROR_FFMPEG_NOT_FOUND = "FFMPEG_NOT_FOUND"
    ERROR_NO_INPUTS = "NO_INPUTS"
    ERROR_INPUT_FILE_NOT_FOUND = "INPUT_FILE_NOT_FOUND"
    ERROR_STITCH_FAILED = "STITCH_FAILED"

    def __init__(
        self,
        shot_duration_s: float = STORY_SHOT_DURATION_S,
        fade_duration_s: float = STORY_FADE_DURATION_S,
    ):
        """Initialize FFmpeg stitcher"""
        self.ffmpeg_path = settings.ffmpeg_path
        self.shot_duration_s = shot_duration_s
        self.fade_duration_s = fade_duration_s

    def total_duration(self, shot_count: int) -> float:
        """Length of the stitched video for ``shot_count`` stills"""
        if shot_count <= 0:
            return 0.0
        return shot_count * self.shot_duration_s - (shot_count - 1) * self.fade_duration_s

    def build_filter_graph(self, shot_count: int, width: int, height: int, fps: int) -> str:
        """
        Build the filter_complex graph

        Each input is scaled and cropped to the target frame, then zoomed;
        xfade offsets advance by (shot duration - fade) per joined shot.
        """
        frames = int(round(self.shot_duration_s * fps))
        parts: List[str] = []
        for i in range(shot_count):
            parts.append(
                f"[{i}:v]scale={width}:{height}:force_original_aspect_ratio=increase,"
                f"crop={width}:{height},"
                f"zoompan=z='min(zoom+{STORY_ZOOM_STEP},{STORY_ZOOM_MAX})':d={frames}:s={width}x{height}:fps={fps},"
                f"setsar=1,format={FFMPEG_PIXEL_FORMAT}[v{i}]"
            )

        if shot_count == 1:
            parts.append("[v0]null[out]")
            return ";".join(parts)

        previous = "v0"
        for i in range(1, shot_count):
            offset = round(i * (self.shot_duration_s - self.fade_duration_s), 3)
            label = "out" if i == shot_count - 1 else f"x{i}"
            parts.append(
                f"[{previous}][v{i}]xfade=transition=fade:duration={self.fade_duration_s}:offset={offset}[{label}]"
            )
            previous = label
        return ";".join(parts)

    def build_command(
        self,
        still_paths: List[str],
        output_path: str,
        width: int,
        height: int,
        fps: int,
    ) -> List[str]:
        """Full ffmpeg argument list for a stitch"""
        cmd: List[str] = [self.ffmpeg_path, "-y"]
        for path in still_paths:
            cmd += ["-loop", "1", "-t", str(self.shot_duration_s), "-i", path]
        cmd += [
            "-filter_complex", self.build_filter_graph(len(still_paths), width, height, fps),
            "-map", "[out]",
            "-r", str(fps),
            "-c:v", FFMPEG_VIDEO_CODEC,
            "-pix_fmt", FFMPEG_PIXEL_FORMAT,
            "-profile:v", FFMPEG_PROFILE,
            "-level", FFMPEG_LEVEL,
            "-movflags", "+faststart",
            output_path,
        ]
        return cmd

    def stitch(
        self,
        still_paths: List[str],
        output_path: str,
        width: int,
        height: int,
        fps: int,
    ) -> Dict[str, Any]:
        """
        Stitch stills into one mp4

        Returns:
            Dict with output path, duration and file size

        Raises:
            FFmpegError: If inputs are missing, ffmpeg is unavailable or exits non-zero
        """
        if not still_paths:
            raise FFmpegError("Stitch failed: no stills to stitch", self.ERROR_NO_INPUTS)

        for path in still_paths:
            if not os.path.exists(path):
                raise FFmpegError(
                    f"Stitch failed: input file not found: {path}",
                    self.ERROR_INPUT_FILE_NOT_FOUND,
                )

        if not self._is_ffmpeg_available():
            raise FFmpegError(
                f"FFmpeg not found: {self.ffmpeg_path}",
                self.ERROR_FFMPEG_NOT_FOUND,
            )

        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(still_paths, output_path, width, height, fps)

        logger.info(
            "ffmpeg_stitch_start",
            shot_count=len(still_paths),
            output_path=output_path,
            width=width,
            height=height,
            fps=fps,
        )

        result = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )

        if result.returncode != 0:
            error_msg = result.stderr.decode("utf-8", errors="ignore")
            logger.error(
                "ffmpeg_stitch_failed",
                returncode=result.returncode,
                stderr=error_msg[-1000:],
            )
            raise FFmpegError(
                f"Stitch failed: ffmpeg exited with code {result.returncode}: {error_msg[-500:]}",
                self.ERROR_STITCH_FAILED,
                details=error_msg,
            )

        size = os.path.getsize(output_path) if os.path.exists(output_path) else 0
        duration = self.total_duration(len(still_paths))

        logger.info(
            "ffmpeg_stitch_complete",
            output_path=output_path,
            duration_s=duration,
            size_bytes=size,
        )

        return {
            "output_path": output_path,
            "duration_s": duration,
            "size_bytes": size,
        }

    def _is_ffmpeg_available(self) -> bool:
        if os.path.isabs(self.ffmpeg_path) or os.sep in self.ffmpeg_path:
            return os.path.exists(self.ffmpeg_path) and os.access(self.ffmpeg_path, os.X_OK)
        return shutil.which(self.ffmpeg_path) is not None

"""
Crossfade Stitcher Service
FFmpeg filter-graph construction for seamless multi-clip videos
"""

import asyncio
import os
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from ..config import Settings, get_settings
from ..utils.exceptions import StitchError
from ..utils.logger import get_logger

logger = get_logger()

# Below this many clips a failed fade is fatal; at or above it we hard-cut
CONCAT_FALLBACK_MIN_CLIPS = 5


class Transition(str, Enum):
    """Transition actually used for a stitched output"""
    DISSOLVE = "dissolve"
    FADE = "fade"
    CONCAT = "concat"
    NONE = "none"


@dataclass
class EncodingProfile:
    """Encoder settings; cheaper for long chains to bound processing time"""
    preset: str
    crf: int
    video_bitrate: str
    audio_bitrate: str
    codec: str = "libx264"
    fps: int = 24


@dataclass
class FilterGraph:
    filter_complex: str
    video_label: str
    audio_label: Optional[str]


@dataclass
class StitchResult:
    path: str
    transition: Transition
    duration: float
    clip_count: int

    @property
    def degraded(self) -> bool:
        return self.transition in (Transition.FADE, Transition.CONCAT)


def encoding_profile(clip_count: int) -> EncodingProfile:
    if clip_count <= 3:
        return EncodingProfile(preset="medium", crf=18, video_bitrate="8M", audio_bitrate="192k")
    if clip_count <= 5:
        return EncodingProfile(preset="fast", crf=20, video_bitrate="6M", audio_bitrate="160k")
    return EncodingProfile(preset="veryfast", crf=23, video_bitrate="4M", audio_bitrate="128k")


def crossfade_offsets(clip_count: int, clip_duration: float, overlap: float) -> List[float]:
    """
    Start time of each transition on the running combined timeline.

    Every merge shortens the timeline by ``overlap``, so the k-th
    transition (k = 1..N-1) begins at ``k * (clip_duration - overlap)``.
    """
    if overlap <= 0 or overlap >= clip_duration:
        raise ValueError("overlap must be positive and shorter than a clip")
    step = clip_duration - overlap
    return [round(k * step, 3) for k in range(1, clip_count)]


def stitched_duration(clip_count: int, clip_duration: float, overlap: float) -> float:
    """C*D - (C-1)*V"""
    if clip_count <= 0:
        return 0.0
    return round(clip_count * clip_duration - (clip_count - 1) * overlap, 3)


def build_crossfade_graph(
    clip_count: int,
    clip_duration: float,
    overlap: float,
    transition: Transition = Transition.DISSOLVE,
    has_audio: bool = True,
    fps: int = 24
) -> FilterGraph:
    """
    Chain an xfade (and acrossfade) per adjacent pair for any N >= 2.

    Each input is trimmed to ``clip_duration`` and normalised to a common
    timebase/frame rate/pixel format so xfade accepts every pair.
    """
    if clip_count < 2:
        raise ValueError("crossfade graph needs at least two clips")

    filters: List[str] = []
    for i in range(clip_count):
        filters.append(
            f"[{i}:v]trim=duration={clip_duration:g},setpts=PTS-STARTPTS,"
            f"fps={fps},format=yuv420p,settb=AVTB[v{i}]"
        )
        if has_audio:
            filters.append(
                f"[{i}:a]atrim=duration={clip_duration:g},asetpts=PTS-STARTPTS,"
                f"aresample=44100,aformat=channel_layouts=stereo[a{i}]"
            )

    video_label, audio_label = "v0", "a0"
    for k, offset in enumerate(crossfade_offsets(clip_count, clip_duration, overlap), start=1):
        next_video = f"vx{k}"
        filters.append(
            f"[{video_label}][v{k}]xfade=transition={transition.value}:"
            f"duration={overlap:g}:offset={offset:g}[{next_video}]"
        )
        video_label = next_video

        if has_audio:
            next_audio = f"ax{k}"
            filters.append(
                f"[{audio_label}][a{k}]acrossfade=d={overlap:g}:c1=exp:c2=exp[{next_audio}]"
            )
            audio_label = next_audio

    return FilterGraph(
        filter_complex=";".join(filters),
        video_label=video_label,
        audio_label=audio_label if has_audio else None
    )


class CrossfadeStitcher:
    """Joins ordered clips with dissolve transitions, degrading gracefully"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Command construction
    # ------------------------------------------------------------------

    def build_transition_command(
        self,
        clip_paths: List[str],
        graph: FilterGraph,
        output_path: str,
        profile: EncodingProfile
    ) -> List[str]:
        cmd = [self.settings.ffmpeg_binary, "-y"]
        for path in clip_paths:
            cmd += ["-i", path]
        cmd += ["-filter_complex", graph.filter_complex, "-map", f"[{graph.video_label}]"]
        if graph.audio_label:
            cmd += ["-map", f"[{graph.audio_label}]"]
        cmd += [
            "-c:v", profile.codec,
            "-preset", profile.preset,
            "-crf", str(profile.crf),
            "-maxrate", profile.video_bitrate,
            "-bufsize", profile.video_bitrate,
        ]
        if graph.audio_label:
            cmd += ["-c:a", "aac", "-b:a", profile.audio_bitrate]
        cmd += ["-movflags", "+faststart", output_path]
        return cmd

    def build_concat_commands(self, list_path: str, output_path: str) -> List[List[str]]:
        """Stream copy first, then a re-encode if the codecs disagree"""
        base = [self.settings.ffmpeg_binary, "-y", "-f", "concat", "-safe", "0", "-i", list_path]
        return [
            base + ["-c", "copy", output_path],
            base + ["-c:v", "libx264", "-preset", "veryfast", "-c:a", "aac", output_path],
        ]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _run_ffmpeg(
        self,
        cmd: List[str],
        duration: float,
        progress_callback: Optional[Callable[[float, str], None]] = None
    ):
        """Execute FFmpeg with progress tracking; raises StitchError on failure"""
        logger.debug(f"FFmpeg command: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                universal_newlines=True
            )
        except FileNotFoundError as exc:
            raise StitchError("FFmpeg is required but not installed", clip_count=0) from exc

        stderr_output = []
        for line in process.stderr:
            stderr_output.append(line)
            if "time=" in line and progress_callback and duration > 0:
                try:
                    time_str = line.split("time=")[1].split()[0]
                    parts = time_str.split(":")
                    current = float(parts[0]) * 3600 + float(parts[1]) * 60 + float(parts[2])
                    progress = min(99.0, (current / duration) * 100)
                    progress_callback(progress, f"Encoding: {progress:.0f}%")
                except (IndexError, ValueError):
                    pass

        process.wait()

        if process.returncode != 0:
            error_msg = "".join(stderr_output[-10:])
            logger.error(f"FFmpeg exited with code {process.returncode}: {error_msg[-300:]}")
            raise StitchError(
                f"FFmpeg exited with code {process.returncode}",
                clip_count=0,
                stderr=error_msg
            )

    async def _execute(self, cmd: List[str], duration: float, progress_callback=None):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._run_ffmpeg, cmd, duration, progress_callback)

    async def _stitch_with_transition(
        self,
        clip_paths: List[str],
        clip_duration: float,
        overlap: float,
        output_path: str,
        transition: Transition,
        has_audio: bool,
        progress_callback=None
    ) -> StitchResult:
        profile = encoding_profile(len(clip_paths))
        graph = build_crossfade_graph(
            len(clip_paths), clip_duration, overlap,
            transition=transition, has_audio=has_audio, fps=profile.fps
        )
        total = stitched_duration(len(clip_paths), clip_duration, overlap)
        cmd = self.build_transition_command(clip_paths, graph, output_path, profile)
        await self._execute(cmd, total, progress_callback)
        return StitchResult(output_path, transition, total, len(clip_paths))

    async def _concatenate(self, clip_paths: List[str], clip_duration: float, output_path: str) -> StitchResult:
        list_path = output_path.rsplit(".", 1)[0] + "_concat.txt"
        with open(list_path, "w") as list_file:
            for path in clip_paths:
                safe_path = os.path.abspath(path).replace("\\", "/").replace("'", "'\\''")
                list_file.write(f"file '{safe_path}'\n")

        total = round(len(clip_paths) * clip_duration, 3)
        copy_cmd, encode_cmd = self.build_concat_commands(list_path, output_path)
        try:
            await self._execute(copy_cmd, total)
        except StitchError:
            logger.warning("Concat stream copy failed, re-encoding")
        else:
            return StitchResult(output_path, Transition.CONCAT, total, len(clip_paths))

        try:
            await self._execute(encode_cmd, total)
        except StitchError as exc:
            logger.error(f"Concat re-encode failed: {exc.message}")
            raise
        return StitchResult(output_path, Transition.CONCAT, total, len(clip_paths))

    async def stitch(
        self,
        clip_paths: List[str],
        clip_duration: float,
        output_path: str,
        overlap: Optional[float] = None,
        has_audio: bool = True,
        progress_callback: Optional[Callable[[float, str], None]] = None
    ) -> StitchResult:
        """
        Combine ``clip_paths`` (in order) into ``output_path``.

        A single clip is returned untouched. Otherwise: dissolve, then
        fade, then (for five or more clips) plain concatenation.
        """
        count = len(clip_paths)
        if count == 0:
            raise StitchError("No clips to stitch", clip_count=0)
        if count == 1:
            logger.info("Single clip, no stitching needed")
            return StitchResult(clip_paths[0], Transition.NONE, float(clip_duration), 1)

        overlap = self.settings.crossfade_seconds if overlap is None else overlap
        logger.info(
            f"Stitching {count} clips ({clip_duration}s each, {overlap}s crossfade) "
            f"-> {stitched_duration(count, clip_duration, overlap)}s"
        )

        last_error: Optional[StitchError] = None
        for transition in (Transition.DISSOLVE, Transition.FADE):
            try:
                result = await self._stitch_with_transition(
                    clip_paths, clip_duration, overlap, output_path,
                    transition, has_audio, progress_callback
                )
                if transition is not Transition.DISSOLVE:
                    logger.warning(f"Stitched with fallback transition '{transition.value}'")
                return result
            except StitchError as exc:
                logger.warning(f"{transition.value} transition failed: {exc.message}")
                last_error = exc

        if count >= CONCAT_FALLBACK_MIN_CLIPS:
            logger.warning(f"Falling back to plain concatenation for {count} clips")
            return await self._concatenate(clip_paths, clip_duration, output_path)

        raise StitchError(
            f"Could not stitch {count} clips",
            clip_count=count,
            stderr=last_error.stderr if last_error else None
        )

"""
Audio Sync Service
Fits a custom soundtrack to a stitched video and muxes it in
"""

import asyncio
import subprocess
from typing import List, Optional

from ..config import Settings, get_settings
from ..utils.exceptions import AudioSyncError
from ..utils.logger import get_logger
from .media_probe import MediaProbe

logger = get_logger()

# Durations closer than this are muxed as-is
DURATION_TOLERANCE_SECONDS = 0.5


class AudioSyncer:
    """Trim or silence-pad an audio track to the video, then replace its audio"""

    def __init__(self, settings: Optional[Settings] = None, probe: Optional[MediaProbe] = None):
        self.settings = settings or get_settings()
        self.probe = probe or MediaProbe(self.settings)

    def build_fit_command(
        self,
        audio_path: str,
        output_path: str,
        video_duration: float,
        audio_duration: float
    ) -> Optional[List[str]]:
        """None when the audio already matches the video closely enough"""
        if abs(audio_duration - video_duration) <= DURATION_TOLERANCE_SECONDS:
            return None

        cmd = [self.settings.ffmpeg_binary, "-y", "-i", audio_path]
        if audio_duration < video_duration:
            cmd += ["-af", "apad"]
        cmd += ["-t", f"{video_duration:.3f}", "-c:a", "aac", "-b:a", "192k", output_path]
        return cmd

    def build_mux_command(self, video_path: str, audio_path: str, output_path: str) -> List[str]:
        return [
            self.settings.ffmpeg_binary, "-y",
            "-i", video_path,
            "-i", audio_path,
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-c:v", "copy",
            "-c:a", "aac",
            "-b:a", "192k",
            "-shortest",
            output_path
        ]

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        return subprocess.run(cmd, capture_output=True, text=True)

    async def _execute(self, cmd: List[str], step: str):
        logger.debug(f"FFmpeg command: {' '.join(cmd)}")
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, self._run, cmd)
        except FileNotFoundError as exc:
            raise AudioSyncError("FFmpeg is required but not installed") from exc
        if result.returncode != 0:
            logger.error(f"{step} failed: {result.stderr[-300:]}")
            raise AudioSyncError(f"{step} failed (exit {result.returncode})", stderr=result.stderr)

    async def sync(self, video_path: str, audio_path: str, output_path: str) -> str:
        """Replace the audio of ``video_path`` with ``audio_path`` fitted to its length"""
        video_duration = await self.probe.duration(video_path)
        audio_duration = await self.probe.duration(audio_path)
        if video_duration is None:
            raise AudioSyncError("Could not read video duration")

        fitted_path = audio_path
        if audio_duration is not None:
            fitted_candidate = output_path.rsplit(".", 1)[0] + "_audio.m4a"
            cmd = self.build_fit_command(audio_path, fitted_candidate, video_duration, audio_duration)
            if cmd:
                action = "Padding" if audio_duration < video_duration else "Trimming"
                logger.info(f"{action} audio from {audio_duration:.2f}s to {video_duration:.2f}s")
                await self._execute(cmd, "Audio fit")
                fitted_path = fitted_candidate

        await self._execute(self.build_mux_command(video_path, fitted_path, output_path), "Audio mux")
        logger.info(f"Custom audio muxed into {output_path}")
        return output_path

"""
Media Probe
ffprobe helpers for durations and stream presence
"""

import asyncio
import subprocess
from typing import List, Optional

from ..config import Settings, get_settings
from ..utils.logger import get_logger

logger = get_logger()


class MediaProbe:
    """Thin async wrapper around ffprobe"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        return subprocess.run(cmd, capture_output=True, text=True)

    async def _probe(self, cmd: List[str]) -> subprocess.CompletedProcess:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._run, cmd)

    async def duration(self, path: str) -> Optional[float]:
        """Container duration in seconds, or None if it cannot be read"""
        result = await self._probe([
            self.settings.ffprobe_binary, "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            path
        ])
        if result.returncode != 0:
            logger.warning(f"ffprobe failed for {path}: {result.stderr[-200:]}")
            return None
        try:
            return float(result.stdout.strip())
        except ValueError:
            return None

    async def has_audio(self, path: str) -> bool:
        result = await self._probe([
            self.settings.ffprobe_binary, "-v", "error",
            "-select_streams", "a",
            "-show_entries", "stream=codec_type",
            "-of", "csv=p=0",
            path
        ])
        return result.returncode == 0 and "audio" in result.stdout

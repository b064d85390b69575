"""
Frame Extractor Service
Pulls the final frame of a clip to condition the next clip in the chain
"""

import asyncio
import os
import subprocess
from typing import List, Optional

from ..config import Settings, get_settings
from ..models.clip import MediaPayload
from ..utils.exceptions import ExtractionError
from ..utils.logger import get_logger
from ..utils.workspace import remove_file

logger = get_logger()


class FrameExtractor:
    """FFmpeg-based last-frame grabber"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def build_command(self, video_path: str, frame_path: str) -> List[str]:
        # Seek slightly before EOF instead of decoding to the literal last frame
        offset = self.settings.last_frame_offset_seconds
        return [
            self.settings.ffmpeg_binary, "-y",
            "-sseof", f"-{offset}",
            "-i", video_path,
            "-frames:v", "1",
            "-q:v", "2",
            frame_path
        ]

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        return subprocess.run(cmd, capture_output=True, text=True)

    async def extract_last_frame(self, video_path: str) -> MediaPayload:
        """
        Extract the final frame of ``video_path`` as a JPEG.

        The intermediate image is always deleted; its bytes are returned.
        """
        frame_path = video_path.rsplit(".", 1)[0] + "_last.jpg"
        cmd = self.build_command(video_path, frame_path)
        logger.debug(f"FFmpeg command: {' '.join(cmd)}")

        loop = asyncio.get_running_loop()
        try:
            try:
                result = await loop.run_in_executor(None, self._run, cmd)
            except FileNotFoundError as exc:
                raise ExtractionError("FFmpeg is required but not installed") from exc

            if result.returncode != 0:
                logger.error(f"Frame extraction failed: {result.stderr[-300:]}")
                raise ExtractionError(
                    f"FFmpeg exited with code {result.returncode}",
                    stderr=result.stderr
                )
            if not os.path.exists(frame_path) or os.path.getsize(frame_path) == 0:
                raise ExtractionError("FFmpeg produced no frame", stderr=result.stderr)

            with open(frame_path, "rb") as frame_file:
                data = frame_file.read()
        finally:
            remove_file(frame_path)

        logger.info(f"Extracted last frame ({len(data) / 1024:.0f} KB)")
        return MediaPayload(data=data, mime_type="image/jpeg")

"""
Temporary Workspace
Per-session scratch directory that is always removed on exit
"""

import os
import shutil
import uuid
from pathlib import Path
from typing import List, Optional

from .logger import get_logger

logger = get_logger()


def remove_file(path: Optional[str]):
    """Remove a file, tolerating paths that are already gone"""
    if not path:
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning(f"Failed to remove file {path}: {exc}")


class TempWorkspace:
    """
    Uniquely named scratch directory for one request.

    Every downloaded clip, extracted frame, concat list and intermediate
    render is written under ``directory``. ``cleanup()`` removes all of it
    and is safe to call more than once.

    Usage:
        async with TempWorkspace(settings.temp_dir) as ws:
            clip_path = ws.path("clip-0.mp4")
    """

    def __init__(self, root: str, session_id: Optional[str] = None):
        self.session_id = session_id or uuid.uuid4().hex
        self.directory = Path(root) / f"session-{self.session_id}"
        self._created = False

    def create(self) -> "TempWorkspace":
        self.directory.mkdir(parents=True, exist_ok=True)
        self._created = True
        logger.debug(f"Workspace created: {self.directory}")
        return self

    def path(self, name: str) -> str:
        """Absolute path for a file inside the workspace"""
        if not self._created:
            self.create()
        safe_name = Path(name).name
        return str(self.directory / safe_name)

    def files(self) -> List[str]:
        if not self.directory.exists():
            return []
        return sorted(str(p) for p in self.directory.iterdir())

    def cleanup(self):
        """Remove every file and the directory itself"""
        for file_path in self.files():
            if os.path.isdir(file_path):
                shutil.rmtree(file_path, ignore_errors=True)
            else:
                remove_file(file_path)
        try:
            self.directory.rmdir()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning(f"Workspace {self.directory} not fully removed: {exc}")
            shutil.rmtree(self.directory, ignore_errors=True)
        self._created = False

    def __enter__(self) -> "TempWorkspace":
        return self.create()

    def __exit__(self, exc_type, exc, tb):
        self.cleanup()
        return False

    async def __aenter__(self) -> "TempWorkspace":
        return self.create()

    async def __aexit__(self, exc_type, exc, tb):
        self.cleanup()
        return False

"""
Clip Data Models
One generated clip in a chain, and the payloads passed between stages
"""

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ClipStatus(str, Enum):
    """Clip generation status"""
    PENDING = "pending"
    POLLING = "polling"
    DONE = "done"
    FAILED = "failed"


class ConditioningMode(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class AudioPolicy(str, Enum):
    """How the remote model should treat the clip's audio track"""
    GENERATED = "generated"       # model generates its own audio
    NONE = "none"                 # silent; external audio mixed in later
    SYNC_TO_AUDIO = "sync"        # attach audio bytes for timing / lip-sync


@dataclass
class MediaPayload:
    """Raw media bytes with their MIME type"""
    data: bytes
    mime_type: str

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass
class Conditioning:
    """What a single clip request is conditioned on"""
    mode: ConditioningMode
    prompt: Optional[str] = None
    image: Optional[MediaPayload] = None


@dataclass
class OperationHandle:
    """Opaque handle for a remote long-running generation"""
    name: str
    clip_index: Optional[int] = None


@dataclass
class ClipJob:
    """
    One clip in the chain.

    Created when the orchestrator starts clip ``index``; status is advanced
    as the clip is submitted and polled. ``local_path`` is the downloaded
    clip, reused by the stitcher so the clip is fetched only once.
    """
    index: int
    prompt: str
    conditioning_image: Optional[MediaPayload] = None
    operation: Optional[OperationHandle] = None
    video_url: Optional[str] = None
    local_path: Optional[str] = None
    status: ClipStatus = ClipStatus.PENDING
    error: Optional[str] = None
    attempts: int = field(default=0)

    @property
    def operation_name(self) -> Optional[str]:
        return self.operation.name if self.operation else None

"""
Clip Chain Orchestrator
Generates clips one after another, conditioning each on the last frame
of its predecessor for visual continuity.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from ..config import Settings, get_settings
from ..models.clip import AudioPolicy, ClipJob, ClipStatus, Conditioning, ConditioningMode, MediaPayload
from ..utils.exceptions import ClipChainError
from ..utils.logger import get_logger, redact_url, session_logger
from ..utils.workspace import TempWorkspace
from .frame_extractor import FrameExtractor
from .media_fetcher import MediaFetcher
from .operation_poller import OperationPoller
from .veo_client import VeoClient

logger = get_logger()


class ChainState(str, Enum):
    INITIALIZING = "initializing"
    GENERATING_CLIP = "generating_clip"
    EXTRACTING_FRAME = "extracting_frame"
    ALL_CLIPS_DONE = "all_clips_done"
    FAILED = "failed"


@dataclass
class ChainPlan:
    """
    Everything the orchestrator needs for one request.

    ``prompts`` are final per-clip prompts (style and character
    description already applied); their count is the clip count.
    """
    prompts: List[str]
    aspect_ratio: str = "16:9"
    clip_duration: int = 8
    source_image: Optional[MediaPayload] = None
    audio_policy: AudioPolicy = AudioPolicy.GENERATED
    audio: Optional[MediaPayload] = None

    @property
    def clip_count(self) -> int:
        return len(self.prompts)


@dataclass
class ChainResult:
    clip_jobs: List[ClipJob] = field(default_factory=list)
    state: ChainState = ChainState.INITIALIZING

    @property
    def operation_names(self) -> List[str]:
        return [clip.operation_name for clip in self.clip_jobs if clip.operation_name]

    @property
    def video_urls(self) -> List[str]:
        return [clip.video_url for clip in self.clip_jobs if clip.video_url]

    @property
    def clip_paths(self) -> List[str]:
        return [clip.local_path for clip in self.clip_jobs if clip.local_path]

    @property
    def all_complete(self) -> bool:
        return bool(self.clip_jobs) and all(c.status == ClipStatus.DONE for c in self.clip_jobs)


StateListener = Callable[[ChainState, int, int], None]


class ClipChainOrchestrator:
    """Drives submit -> poll -> download -> extract-frame for every clip"""

    def __init__(
        self,
        client: VeoClient,
        poller: OperationPoller,
        extractor: FrameExtractor,
        fetcher: MediaFetcher,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.client = client
        self.poller = poller
        self.extractor = extractor
        self.fetcher = fetcher
        self.settings = settings or get_settings()
        self._sleep = sleep

    @staticmethod
    def _conditioning(prompt: str, image: Optional[MediaPayload]) -> Conditioning:
        if image is not None:
            return Conditioning(mode=ConditioningMode.IMAGE, prompt=prompt or None, image=image)
        return Conditioning(mode=ConditioningMode.TEXT, prompt=prompt)

    async def _generate_clip(self, clip: ClipJob, plan: ChainPlan, workspace: TempWorkspace, log):
        clip.operation = await self.client.submit(
            self._conditioning(clip.prompt, clip.conditioning_image),
            duration_seconds=plan.clip_duration,
            aspect_ratio=plan.aspect_ratio,
            audio_policy=plan.audio_policy,
            audio=plan.audio
        )
        clip.operation.clip_index = clip.index
        log.info(f"Clip {clip.index + 1}/{plan.clip_count} submitted: {clip.operation_name}")

        await self.poller.await_completion(clip.operation, clip=clip)
        log.info(f"Clip {clip.index + 1}/{plan.clip_count} ready: {redact_url(clip.video_url)}")

        clip.local_path = await self.fetcher.download(
            clip.video_url, workspace.path(f"clip-{clip.index}.mp4")
        )

    async def run(
        self,
        plan: ChainPlan,
        workspace: TempWorkspace,
        on_state: Optional[StateListener] = None
    ) -> ChainResult:
        """
        Generate every clip in ``plan`` strictly in order.

        Clip 0 is conditioned on the caller's image (or text only); clip
        i > 0 on the frame extracted from clip i - 1. The first failure
        aborts the chain and is re-raised tagged with the clip index.
        """
        log = session_logger(workspace.session_id)
        result = ChainResult()
        total = plan.clip_count

        def transition(state: ChainState, index: int = 0):
            result.state = state
            if on_state:
                on_state(state, index, total)

        transition(ChainState.INITIALIZING)
        log.info(f"Starting chain of {total} clip(s), {plan.clip_duration}s each")

        conditioning_image = plan.source_image
        for index, prompt in enumerate(plan.prompts):
            if index > 0 and self.settings.inter_clip_delay_seconds > 0:
                await self._sleep(self.settings.inter_clip_delay_seconds)

            clip = ClipJob(index=index, prompt=prompt, conditioning_image=conditioning_image)
            result.clip_jobs.append(clip)

            try:
                transition(ChainState.GENERATING_CLIP, index)
                await self._generate_clip(clip, plan, workspace, log)

                if index < total - 1:
                    transition(ChainState.EXTRACTING_FRAME, index)
                    conditioning_image = await self.extractor.extract_last_frame(clip.local_path)
            except ClipChainError as exc:
                clip.status = ClipStatus.FAILED
                clip.error = exc.message
                transition(ChainState.FAILED, index)
                log.error(f"Chain aborted at clip {index + 1}/{total}: {exc.message}")
                raise exc.for_clip(index)

        transition(ChainState.ALL_CLIPS_DONE, total - 1)
        log.info(f"All {total} clip(s) generated")
        return result

"""
Video Pipeline
Composes credit gating, clip chaining, stitching, audio sync and hosting
into the operations exposed over HTTP and the job queue.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional

from ..config import Settings, get_settings
from ..models.clip import AudioPolicy, Conditioning, ConditioningMode
from ..models.credits import ChargeDetails, VideoRecord
from ..models.generation import (
    CombineRequest,
    CombineResponse,
    GenerationRequest,
    GenerationResponse,
    RegenerateClipRequest,
    StatusSummary,
    VideoStyle,
)
from ..utils.exceptions import ClipChainError, ConfigurationError, ValidationError
from ..utils.logger import get_logger, session_logger
from ..utils.workspace import TempWorkspace
from .audio_sync import AudioSyncer
from .clip_chain import ChainPlan, ChainState, ClipChainOrchestrator
from .credit_ledger import CreditLedger, get_credit_ledger
from .frame_extractor import FrameExtractor
from .media_fetcher import MediaFetcher
from .media_probe import MediaProbe
from .operation_poller import OperationPoller
from .stitcher import CrossfadeStitcher, StitchResult
from .storage import VideoStorage
from .veo_client import VeoClient

logger = get_logger()

ProgressCallback = Callable[[float, str], None]

CONSISTENCY_SUFFIX = "Maintain exact character appearance and visual style throughout."


def apply_character(prompt: str, character: str) -> str:
    if not character:
        return prompt
    return f"{prompt}\n\n{character}\n{CONSISTENCY_SUFFIX}"


class VideoPipeline:
    """
    End-to-end video operations for one user at a time.

    Collaborators are injectable so tests can swap the remote client and
    the ffmpeg-backed services for fakes.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[VeoClient] = None,
        poller: Optional[OperationPoller] = None,
        extractor: Optional[FrameExtractor] = None,
        fetcher: Optional[MediaFetcher] = None,
        stitcher: Optional[CrossfadeStitcher] = None,
        syncer: Optional[AudioSyncer] = None,
        probe: Optional[MediaProbe] = None,
        storage: Optional[VideoStorage] = None,
        ledger: Optional[CreditLedger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.settings = settings or get_settings()
        self.client = client or VeoClient(self.settings)
        self.poller = poller or OperationPoller(self.client, self.settings, sleep=sleep)
        self.extractor = extractor or FrameExtractor(self.settings)
        self.fetcher = fetcher or MediaFetcher(self.settings)
        self.stitcher = stitcher or CrossfadeStitcher(self.settings)
        self.probe = probe or MediaProbe(self.settings)
        self.syncer = syncer or AudioSyncer(self.settings, self.probe)
        self.storage = storage or VideoStorage(self.settings)
        self.ledger = ledger or get_credit_ledger()
        self._sleep = sleep
        self.orchestrator = ClipChainOrchestrator(
            self.client, self.poller, self.extractor, self.fetcher, self.settings, sleep=sleep
        )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def cost_for(self, clip_count: int) -> int:
        """Credits for ``clip_count`` clips at the per-clip ceiling"""
        return self.settings.credits_per_second * clip_count * self.settings.clip_max_duration

    def _require_credentials(self):
        if not self.settings.veo_api_key:
            raise ConfigurationError("VEO_API_KEY", "Veo API key not configured")

    def _validate(self, request: GenerationRequest) -> List[str]:
        request.validate_for_generation(self.settings.clip_max_duration, self.settings.max_clips)
        self._require_credentials()
        return request.plan_clip_prompts(self.settings.clip_max_duration)

    async def build_plan(self, request: GenerationRequest, prompts: List[str]) -> ChainPlan:
        """Load the conditioning media and finalise per-clip prompts"""
        source_image = None
        character = ""
        if request.is_image_mode:
            source_image = await self.fetcher.load(request.source_image, "image/png")
            if request.analyze_character:
                character = await self.client.describe_character(source_image)

        audio = None
        if request.audio_policy == AudioPolicy.SYNC_TO_AUDIO:
            audio = await self.fetcher.load(request.custom_audio_url, "audio/mpeg")

        return ChainPlan(
            prompts=[apply_character(request.video_style.enhance(p), character) for p in prompts],
            aspect_ratio=request.aspect_ratio,
            clip_duration=self.settings.clip_max_duration,
            source_image=source_image,
            audio_policy=request.audio_policy,
            audio=audio,
        )

    # ------------------------------------------------------------------
    # Chained generation
    # ------------------------------------------------------------------

    async def _clips_have_audio(self, clip_paths: List[str]) -> bool:
        for path in clip_paths:
            if not await self.probe.has_audio(path):
                return False
        return True

    async def _stitch(
        self,
        clip_paths: List[str],
        clip_duration: float,
        workspace: TempWorkspace,
        has_audio: bool,
        progress_callback: Optional[ProgressCallback] = None
    ) -> StitchResult:
        def stitch_progress(pct, msg):
            if progress_callback:
                progress_callback(80 + pct * 0.1, msg)

        return await self.stitcher.stitch(
            clip_paths,
            clip_duration,
            workspace.path("stitched.mp4"),
            has_audio=has_audio,
            progress_callback=stitch_progress,
        )

    async def generate(
        self,
        user_id: str,
        request: GenerationRequest,
        progress_callback: Optional[ProgressCallback] = None
    ) -> GenerationResponse:
        """
        Chained generation: every clip is generated, downloaded, stitched
        and hosted before the charge is committed. Any failure releases
        the reservation, so nothing is charged.
        """
        prompts = self._validate(request)
        cost = self.cost_for(len(prompts))

        def report(pct: float, msg: str):
            if progress_callback:
                progress_callback(pct, msg)

        def on_state(state: ChainState, index: int, total: int):
            if state == ChainState.GENERATING_CLIP:
                report(5 + 70 * index / total, f"Generating clip {index + 1}/{total}")
            elif state == ChainState.EXTRACTING_FRAME:
                report(5 + 70 * (index + 1) / total, f"Extracting frame from clip {index + 1}")

        async with self.ledger.gate(user_id, cost) as token:
            async with TempWorkspace(self.settings.temp_dir) as workspace:
                log = session_logger(workspace.session_id)
                log.info(f"Generation for {user_id}: {len(prompts)} clip(s), {cost} credits reserved")

                plan = await self.build_plan(request, prompts)
                chain = await self.orchestrator.run(plan, workspace, on_state=on_state)

                report(78, "Stitching clips")
                has_audio = (
                    plan.audio_policy != AudioPolicy.NONE
                    and await self._clips_have_audio(chain.clip_paths)
                )
                stitched = await self._stitch(
                    chain.clip_paths, plan.clip_duration, workspace, has_audio, progress_callback
                )

                final_path = stitched.path
                if request.custom_audio_url and not request.lip_sync:
                    report(90, "Syncing custom audio")
                    audio_path = await self.fetcher.download(
                        request.custom_audio_url, workspace.path("custom-audio")
                    )
                    final_path = await self.syncer.sync(
                        stitched.path, audio_path, workspace.path("final.mp4")
                    )

                report(92, "Uploading")
                video_url = await self.storage.publish(final_path, user_id)

                remaining = await self.ledger.commit(token, ChargeDetails(
                    action_type="video_generation",
                    description=f"{plan.clip_count} clip(s) {request.input_type.value}: {prompts[0][:80]}",
                    model_used=self.settings.veo_model_tag,
                    duration=stitched.duration,
                    video=VideoRecord(
                        user_id=user_id,
                        prompt=request.prompt or prompts[0],
                        enhanced_prompt=plan.prompts[0],
                        video_url=video_url,
                        model=self.settings.veo_model_tag,
                        mode=request.input_type.value,
                        duration=stitched.duration,
                        clip_count=plan.clip_count,
                        transition=stitched.transition.value,
                    ),
                ))
                log.info(f"Delivered {video_url} ({stitched.duration}s, {stitched.transition.value})")

        report(100, "Complete")
        return GenerationResponse(
            operation_names=chain.operation_names,
            clip_count=plan.clip_count,
            video_urls=chain.video_urls,
            all_complete=chain.all_complete,
            video_url=video_url,
            total_duration=stitched.duration,
            transition=stitched.transition.value,
            credits_used=cost,
            remaining_credits=remaining,
        )

    # ------------------------------------------------------------------
    # Asynchronous submission and status
    # ------------------------------------------------------------------

    async def submit_async(self, user_id: str, request: GenerationRequest) -> GenerationResponse:
        """
        Submit every clip without frame chaining; the caller polls status
        and combines. Charged only once all submissions were accepted.
        """
        prompts = self._validate(request)
        cost = self.cost_for(len(prompts))

        async with self.ledger.gate(user_id, cost) as token:
            plan = await self.build_plan(request, prompts)
            mode = ConditioningMode.IMAGE if plan.source_image else ConditioningMode.TEXT

            operation_names: List[str] = []
            for index, prompt in enumerate(plan.prompts):
                if index > 0 and self.settings.inter_clip_delay_seconds > 0:
                    await self._sleep(self.settings.inter_clip_delay_seconds)
                try:
                    handle = await self.client.submit(
                        Conditioning(mode=mode, prompt=prompt, image=plan.source_image),
                        duration_seconds=plan.clip_duration,
                        aspect_ratio=plan.aspect_ratio,
                        audio_policy=plan.audio_policy,
                        audio=plan.audio,
                    )
                except ClipChainError as exc:
                    raise exc.for_clip(index)
                operation_names.append(handle.name)

            remaining = await self.ledger.commit(token, ChargeDetails(
                action_type="video_generation",
                description=f"{plan.clip_count} clip(s) submitted: {prompts[0][:80]}",
                model_used=self.settings.veo_model_tag,
                duration=plan.clip_count * plan.clip_duration,
            ))

        logger.info(f"Submitted {len(operation_names)} clip(s) for {user_id}")
        return GenerationResponse(
            operation_names=operation_names,
            clip_count=len(operation_names),
            credits_used=cost,
            remaining_credits=remaining,
        )

    async def check_status(self, operation_names: List[str]) -> StatusSummary:
        if not operation_names:
            raise ValidationError("At least one operation name is required", field="operationNames")
        self._require_credentials()
        return await self.poller.check_many(operation_names)

    # ------------------------------------------------------------------
    # Combine and regenerate
    # ------------------------------------------------------------------

    async def _clip_duration(self, clip_paths: List[str]) -> float:
        """Shortest probed clip duration; offsets must fit every clip"""
        durations = [await self.probe.duration(path) for path in clip_paths]
        known = [d for d in durations if d]
        return min(known) if known else float(self.settings.clip_max_duration)

    async def combine(self, user_id: str, request: CombineRequest) -> CombineResponse:
        """Download ordered clips, crossfade them and host the result"""
        async with TempWorkspace(self.settings.temp_dir) as workspace:
            log = session_logger(workspace.session_id)
            clip_paths = []
            for index, url in enumerate(request.video_urls):
                clip_paths.append(await self.fetcher.download(url, workspace.path(f"clip-{index}.mp4")))
            log.info(f"Downloaded {len(clip_paths)} clip(s) for combining")

            clip_duration = await self._clip_duration(clip_paths)
            has_audio = await self._clips_have_audio(clip_paths)
            stitched = await self._stitch(clip_paths, clip_duration, workspace, has_audio)
            video_url = await self.storage.publish(stitched.path, user_id)

        if request.save_to_media:
            await self.ledger.record_video(VideoRecord(
                user_id=user_id,
                prompt=request.prompt or "",
                enhanced_prompt=request.enhanced_prompt,
                video_url=video_url,
                model=request.model or self.settings.veo_model_tag,
                mode="combined",
                duration=stitched.duration,
                clip_count=len(clip_paths),
                transition=stitched.transition.value,
            ))

        count = len(clip_paths)
        message = "Single video, no combining needed" if count == 1 else (
            f"Combined {count} clips with {stitched.transition.value} transitions"
        )
        return CombineResponse(
            video_url=video_url,
            num_videos=count,
            total_duration=stitched.duration,
            transition=stitched.transition.value,
            message=message,
        )

    async def regenerate_clip(self, user_id: str, request: RegenerateClipRequest) -> GenerationResponse:
        """Re-submit one clip; charged for one clip after the submission is accepted"""
        self._require_credentials()
        cost = self.cost_for(1)

        async with self.ledger.gate(user_id, cost) as token:
            image = None
            if request.source_image:
                image = await self.fetcher.load(request.source_image, "image/png")
            prompt = VideoStyle(request.video_style).enhance(request.prompt.strip())
            conditioning = Conditioning(
                mode=ConditioningMode.IMAGE if image else ConditioningMode.TEXT,
                prompt=prompt,
                image=image,
            )
            try:
                handle = await self.client.submit(
                    conditioning,
                    duration_seconds=self.settings.clip_max_duration,
                    aspect_ratio=request.aspect_ratio,
                )
            except ClipChainError as exc:
                raise exc.for_clip(request.clip_index)

            remaining = await self.ledger.commit(token, ChargeDetails(
                action_type="video_regeneration",
                description=f"Regenerated clip {request.clip_index + 1}: {request.prompt[:80]}",
                model_used=self.settings.veo_model_tag,
                duration=self.settings.clip_max_duration,
            ))

        return GenerationResponse(
            operation_names=[handle.name],
            clip_count=1,
            credits_used=cost,
            remaining_credits=remaining,
        )



_video_pipeline: Optional[VideoPipeline] = None


def get_video_pipeline() -> VideoPipeline:
    """Return singleton pipeline wired from settings."""
    global _video_pipeline
    if _video_pipeline is None:
        _video_pipeline = VideoPipeline()
    return _video_pipeline

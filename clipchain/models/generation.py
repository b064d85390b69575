"""
Generation Request/Response Models
JSON contracts for the video generation, status and combine interfaces
"""

import math
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..utils.exceptions import ValidationError
from .clip import AudioPolicy

DEFAULT_IMAGE_PROMPT = "Animate this image naturally with subtle movements and bring it to life"
SUPPORTED_ASPECT_RATIOS = ("16:9", "9:16")


class InputType(str, Enum):
    TEXT_TO_VIDEO = "text-to-video"
    IMAGE_TO_VIDEO = "image-to-video"


class VideoStyle(str, Enum):
    CINEMATIC = "cinematic"
    DIALOGUE = "dialogue"
    ANIMATION = "animation"

    def enhance(self, prompt: str) -> str:
        """Apply the style prefix to a clip prompt"""
        if self is VideoStyle.CINEMATIC:
            return f"Cinematic, photorealistic, high quality: {prompt}"
        if self is VideoStyle.ANIMATION:
            return f"Creative 3D animation style, vibrant colors: {prompt}"
        return prompt


class GenerationRequest(BaseModel):
    """Request body for chained and asynchronous video generation"""
    prompt: Optional[str] = None
    script_sections: Optional[List[str]] = Field(None, alias="scriptSections")
    video_style: VideoStyle = Field(VideoStyle.CINEMATIC, alias="videoStyle")
    aspect_ratio: str = Field("16:9", alias="aspectRatio")
    duration: int = Field(8, ge=1, le=300, description="Target total duration in seconds")
    source_image: Optional[str] = Field(None, alias="sourceImage", description="Data URI or URL")
    input_type: InputType = Field(InputType.TEXT_TO_VIDEO, alias="inputType")
    with_audio: bool = Field(True, alias="withAudio")
    custom_audio_url: Optional[str] = Field(None, alias="customAudioUrl")
    lip_sync: bool = Field(False, alias="lipSync")
    analyze_character: bool = Field(True, alias="analyzeCharacter")

    model_config = {"populate_by_name": True}

    @field_validator("aspect_ratio")
    @classmethod
    def check_aspect_ratio(cls, value: str) -> str:
        if value not in SUPPORTED_ASPECT_RATIOS:
            raise ValueError(f"aspectRatio must be one of {', '.join(SUPPORTED_ASPECT_RATIOS)}")
        return value

    @property
    def is_image_mode(self) -> bool:
        return self.input_type == InputType.IMAGE_TO_VIDEO

    @property
    def audio_policy(self) -> AudioPolicy:
        if self.custom_audio_url and self.lip_sync:
            return AudioPolicy.SYNC_TO_AUDIO
        if self.custom_audio_url or not self.with_audio:
            return AudioPolicy.NONE
        return AudioPolicy.GENERATED

    def clip_count(self, ceiling: int) -> int:
        if self.script_sections:
            return max(1, len(self.script_sections))
        return max(1, math.ceil(self.duration / ceiling))

    def plan_clip_prompts(self, ceiling: int) -> List[str]:
        """
        Split the request into one raw prompt per clip.

        Explicit script sections map one-to-one onto clips. Otherwise the
        single prompt is repeated ``ceil(duration / ceiling)`` times so the
        clips cover the requested duration.
        """
        if self.script_sections:
            prompts = [section.strip() for section in self.script_sections]
        else:
            prompts = [(self.prompt or "").strip()] * self.clip_count(ceiling)

        if self.is_image_mode and not prompts[0]:
            prompts[0] = DEFAULT_IMAGE_PROMPT
        return prompts

    def validate_for_generation(self, ceiling: int, max_clips: int):
        """Business validation beyond field types; raises ValidationError"""
        prompts = self.plan_clip_prompts(ceiling)

        if not self.is_image_mode and not prompts[0]:
            raise ValidationError("Prompt is required for text-to-video", field="prompt")
        if self.is_image_mode and not self.source_image:
            raise ValidationError("sourceImage is required for image-to-video", field="sourceImage")
        if any(not prompt for prompt in prompts[1:]) and not self.is_image_mode:
            raise ValidationError("Script sections must not be empty", field="scriptSections")
        if len(prompts) > max_clips:
            raise ValidationError(
                f"Request needs {len(prompts)} clips; the maximum is {max_clips}",
                field="duration"
            )
        if self.lip_sync and not self.custom_audio_url:
            raise ValidationError("lipSync requires customAudioUrl", field="lipSync")


class RegenerateClipRequest(BaseModel):
    """Re-submit a single clip with an edited prompt"""
    prompt: str = Field(..., min_length=1)
    clip_index: int = Field(0, ge=0, alias="clipIndex")
    video_style: VideoStyle = Field(VideoStyle.CINEMATIC, alias="videoStyle")
    aspect_ratio: str = Field("16:9", alias="aspectRatio")
    source_image: Optional[str] = Field(None, alias="sourceImage")
    input_type: InputType = Field(InputType.TEXT_TO_VIDEO, alias="inputType")

    model_config = {"populate_by_name": True}


class CombineRequest(BaseModel):
    """Stitch already-complete clips into one video"""
    video_urls: List[str] = Field(..., min_length=1, alias="videoUrls")
    prompt: Optional[str] = None
    enhanced_prompt: Optional[str] = Field(None, alias="enhancedPrompt")
    model: Optional[str] = None
    save_to_media: bool = Field(True, alias="saveToMedia")

    model_config = {"populate_by_name": True}


class GenerationResponse(BaseModel):
    """Result of a chained (synchronous) generation"""
    success: bool = True
    operation_names: List[str] = Field(serialization_alias="operationNames")
    clip_count: int = Field(serialization_alias="clipCount")
    video_urls: Optional[List[str]] = Field(None, serialization_alias="videoUrls")
    all_complete: Optional[bool] = Field(None, serialization_alias="allComplete")
    video_url: Optional[str] = Field(None, serialization_alias="videoUrl")
    total_duration: Optional[float] = Field(None, serialization_alias="totalDuration")
    transition: Optional[str] = None
    credits_used: int = Field(0, serialization_alias="creditsUsed")
    remaining_credits: Optional[int] = Field(None, serialization_alias="remainingCredits")


class OperationStatus(BaseModel):
    """Status of one remote operation"""
    operation_name: str = Field(serialization_alias="operationName")
    done: bool = False
    video_url: Optional[str] = Field(None, serialization_alias="videoUrl")
    error: Optional[str] = None


class StatusSummary(BaseModel):
    """Aggregate status over every clip of a request"""
    success: bool = True
    status: str
    completed_segments: int = Field(0, serialization_alias="completedSegments")
    total_segments: int = Field(0, serialization_alias="totalSegments")
    operations: List[OperationStatus] = Field(default_factory=list)
    video_url: Optional[str] = Field(None, serialization_alias="videoUrl")
    video_urls: List[str] = Field(default_factory=list, serialization_alias="videoUrls")
    needs_combining: bool = Field(False, serialization_alias="needsCombining")
    partial_success: bool = Field(False, serialization_alias="partialSuccess")
    failed_clips: int = Field(0, serialization_alias="failedClips")
    error: Optional[str] = None
    all_errors: List[str] = Field(default_factory=list, serialization_alias="allErrors")
    message: Optional[str] = None


class CombineResponse(BaseModel):
    success: bool = True
    video_url: str = Field(serialization_alias="videoUrl")
    num_videos: int = Field(serialization_alias="numVideos")
    total_duration: float = Field(serialization_alias="totalDuration")
    transition: str = "none"
    message: Optional[str] = None

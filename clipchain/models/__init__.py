"""Models package initialization"""
from .clip import ClipJob, ClipStatus, AudioPolicy, Conditioning, ConditioningMode, MediaPayload, OperationHandle
from .credits import CreditBalance, CreditTransaction, VideoRecord, ChargeDetails, ReservationToken
from .generation import (
    GenerationRequest,
    RegenerateClipRequest,
    CombineRequest,
    GenerationResponse,
    OperationStatus,
    StatusSummary,
    CombineResponse,
    InputType,
    VideoStyle
)
from .job import GenerationJob, JobStatus

__all__ = [
    "ClipJob", "ClipStatus", "AudioPolicy", "Conditioning", "ConditioningMode", "MediaPayload", "OperationHandle",
    "CreditBalance", "CreditTransaction", "VideoRecord", "ChargeDetails", "ReservationToken",
    "GenerationRequest", "RegenerateClipRequest", "CombineRequest", "GenerationResponse",
    "OperationStatus", "StatusSummary", "CombineResponse", "InputType", "VideoStyle",
    "GenerationJob", "JobStatus"
]

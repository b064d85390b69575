"""Utils package initialization"""
from .logger import setup_logger, get_logger, session_logger, redact_url
from .exceptions import (
    ClipChainError,
    ConfigurationError,
    ValidationError,
    InsufficientCreditsError,
    ReservationError,
    GenerationFailedError,
    GenerationTimeoutError,
    TransientNetworkError,
    RequestNotAcceptedError,
    MediaDownloadError,
    ExtractionError,
    StitchError,
    AudioSyncError,
    StorageUploadError,
    JobNotFoundError
)
from .retry import retry_async
from .workspace import TempWorkspace, remove_file

__all__ = [
    "setup_logger",
    "get_logger",
    "session_logger",
    "redact_url",
    "ClipChainError",
    "ConfigurationError",
    "ValidationError",
    "InsufficientCreditsError",
    "ReservationError",
    "GenerationFailedError",
    "GenerationTimeoutError",
    "TransientNetworkError",
    "RequestNotAcceptedError",
    "MediaDownloadError",
    "ExtractionError",
    "StitchError",
    "AudioSyncError",
    "StorageUploadError",
    "JobNotFoundError",
    "retry_async",
    "TempWorkspace",
    "remove_file"
]

"""
Custom Exceptions for ClipChain
Structured error handling with recovery hints and HTTP mapping
"""

from typing import Optional, Dict, Any


class ClipChainError(Exception):
    """Base exception for all ClipChain errors"""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        recoverable: bool = False,
        recovery_hint: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        http_status: int = 500
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.recoverable = recoverable
        self.recovery_hint = recovery_hint
        self.details = details or {}
        self.http_status = http_status

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to JSON-serializable dict"""
        return {
            "error": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            "recovery_hint": self.recovery_hint,
            "details": self.details
        }

    def for_clip(self, index: int) -> "ClipChainError":
        """Tag the error with the 0-based clip index that caused it"""
        self.details["clip_index"] = index
        self.message = f"Clip {index + 1} failed: {self.message}"
        self.args = (self.message,)
        return self


# ============================================================================
# Request & Configuration Errors
# ============================================================================

class ConfigurationError(ClipChainError):
    """A required credential or setting is missing"""

    def __init__(self, setting: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"{setting} is not configured",
            code="CONFIGURATION_ERROR",
            recoverable=False,
            recovery_hint="The server is missing a credential. Contact the administrator.",
            details={"setting": setting},
            http_status=500
        )


class ValidationError(ClipChainError):
    """Caller supplied invalid input"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            recoverable=True,
            recovery_hint="Check your input parameters and try again.",
            details={"field": field} if field else {},
            http_status=400
        )


# ============================================================================
# Credit Errors
# ============================================================================

class InsufficientCreditsError(ClipChainError):
    """Balance does not cover the requested generation"""

    def __init__(self, required: int, remaining: int):
        super().__init__(
            message=f"Insufficient credits. Need {required}, have {remaining}",
            code="INSUFFICIENT_CREDITS",
            recoverable=True,
            recovery_hint="Add credits or request a shorter video.",
            details={"required": required, "remaining": remaining},
            http_status=400
        )


class ReservationError(ClipChainError):
    """Credit reservation is unknown or was already settled"""

    def __init__(self, reservation_id: str, reason: str):
        super().__init__(
            message=f"Reservation {reservation_id}: {reason}",
            code="RESERVATION_ERROR",
            recoverable=False,
            details={"reservation_id": reservation_id},
            http_status=409
        )


# ============================================================================
# Remote Generation Errors
# ============================================================================

_CONTENT_POLICY_MARKERS = ("safety", "moderation", "content policy", "blocked", "responsible ai")


class GenerationFailedError(ClipChainError):
    """The remote model refused or failed the generation"""

    def __init__(
        self,
        message: str,
        operation_name: Optional[str] = None,
        remote_code: Optional[Any] = None,
        clip_index: Optional[int] = None
    ):
        lowered = message.lower()
        content_policy = any(marker in lowered for marker in _CONTENT_POLICY_MARKERS)
        hint = "The video service rejected this request. Try again or adjust the prompt."
        if content_policy:
            hint = "Your prompt was blocked by content moderation. Please try a different prompt."

        super().__init__(
            message=message,
            code="GENERATION_FAILED",
            recoverable=True,
            recovery_hint=hint,
            details={
                "operation_name": operation_name,
                "remote_code": remote_code,
                "clip_index": clip_index,
                "content_policy": content_policy
            },
            http_status=502
        )
        self.content_policy = content_policy

    @property
    def clip_index(self) -> Optional[int]:
        return self.details.get("clip_index")


class GenerationTimeoutError(ClipChainError):
    """Operation did not finish within the poll budget"""

    def __init__(self, operation_name: str, attempts: int, clip_index: Optional[int] = None):
        super().__init__(
            message=f"Video generation timed out after {attempts} status checks",
            code="GENERATION_TIMEOUT",
            recoverable=True,
            recovery_hint=(
                "The clip may still finish on the server. Poll the status endpoint "
                "with the operation name before resubmitting."
            ),
            details={
                "operation_name": operation_name,
                "attempts": attempts,
                "clip_index": clip_index
            },
            http_status=504
        )

    @property
    def clip_index(self) -> Optional[int]:
        return self.details.get("clip_index")


class TransientNetworkError(ClipChainError):
    """Temporary network or upstream failure, safe to retry"""

    def __init__(self, message: str, url: Optional[str] = None, retry_after: Optional[float] = None):
        super().__init__(
            message=message,
            code="TRANSIENT_NETWORK_ERROR",
            recoverable=True,
            recovery_hint="Wait a moment and try again.",
            details={"url": url, "retry_after": retry_after},
            http_status=503
        )


class RequestNotAcceptedError(TransientNetworkError):
    """Upstream refused the request before acting on it (connect failure, 429)"""


class MediaDownloadError(ClipChainError):
    """Media could not be fetched (non-retryable)"""

    def __init__(self, message: str, url: Optional[str] = None, status: Optional[int] = None):
        super().__init__(
            message=message,
            code="MEDIA_DOWNLOAD_ERROR",
            recoverable=True,
            recovery_hint="Check that the media URL is valid and publicly accessible.",
            details={"url": url, "status": status},
            http_status=502
        )


# ============================================================================
# Local Media Tooling Errors
# ============================================================================

class ExtractionError(ClipChainError):
    """Last-frame extraction failed"""

    def __init__(self, message: str, stderr: Optional[str] = None):
        super().__init__(
            message=message,
            code="EXTRACTION_ERROR",
            recoverable=True,
            recovery_hint="Ensure FFmpeg is installed and the clip is a valid video.",
            http_status=500
        )
        self.stderr = stderr[-500:] if stderr else None


class StitchError(ClipChainError):
    """Every stitching strategy failed"""

    def __init__(self, message: str, clip_count: int, stderr: Optional[str] = None):
        super().__init__(
            message=message,
            code="STITCH_ERROR",
            recoverable=True,
            recovery_hint="Ensure FFmpeg is installed. The individual clips are still available.",
            details={"clip_count": clip_count},
            http_status=500
        )
        self.stderr = stderr[-500:] if stderr else None


class StorageUploadError(ClipChainError):
    """Error uploading the final video"""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(
            message=message,
            code="STORAGE_UPLOAD_ERROR",
            recoverable=True,
            recovery_hint="Check storage credentials and bucket permissions.",
            details={"key": key},
            http_status=502
        )


# ============================================================================
# Job Errors
# ============================================================================

class JobNotFoundError(ClipChainError):
    """Job not found"""

    def __init__(self, job_id: str):
        super().__init__(
            message=f"Job not found: {job_id}",
            code="JOB_NOT_FOUND",
            recoverable=False,
            details={"job_id": job_id},
            http_status=404
        )


# ============================================================================
# Audio Errors
# ============================================================================

class AudioSyncError(ClipChainError):
    """Custom audio could not be fitted or muxed onto the video"""

    def __init__(self, message: str, stderr: Optional[str] = None):
        super().__init__(
            message=message,
            code="AUDIO_SYNC_ERROR",
            recoverable=True,
            recovery_hint="Check that the audio file is a valid audio format.",
            http_status=500
        )
        self.stderr = stderr[-500:] if stderr else None

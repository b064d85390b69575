"""
Operation Poller
Waits for long-running generation operations and extracts the video URL
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol
from urllib.parse import parse_qs, urlsplit

from ..config import Settings, get_settings
from ..models.clip import ClipJob, ClipStatus, OperationHandle
from ..models.generation import OperationStatus, StatusSummary
from ..utils.exceptions import GenerationFailedError, GenerationTimeoutError, TransientNetworkError
from ..utils.logger import get_logger

logger = get_logger()

# google.rpc codes and their HTTP equivalents that mean "try again later":
# 8 RESOURCE_EXHAUSTED, 14 UNAVAILABLE, 429 rate limited, 503 overloaded
TRANSIENT_ERROR_CODES = frozenset({8, 14, 429, 503})
TRANSIENT_ERROR_STATUSES = frozenset({"RESOURCE_EXHAUSTED", "UNAVAILABLE"})


class OperationSource(Protocol):
    async def fetch_operation(self, operation_name: str) -> Dict[str, Any]:
        ...


def is_transient_error(error: Dict[str, Any]) -> bool:
    """Classify an operation error payload against the allowlist"""
    code = error.get("code")
    if isinstance(code, str) and code.isdigit():
        code = int(code)
    if code in TRANSIENT_ERROR_CODES:
        return True
    return str(error.get("status", "")).upper() in TRANSIENT_ERROR_STATUSES


# ============================================================================
# Result probes
# ============================================================================

def _first(items: Any) -> Dict[str, Any]:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


def _get(mapping: Any, key: str) -> Any:
    return mapping.get(key) if isinstance(mapping, dict) else None


def probe_generated_samples(response: Dict[str, Any]) -> Optional[str]:
    """response.generateVideoResponse.generatedSamples[0].video.uri"""
    samples = _get(_get(response, "generateVideoResponse"), "generatedSamples")
    return _get(_get(_first(samples), "video"), "uri")


def probe_generated_videos(response: Dict[str, Any]) -> Optional[str]:
    """response.generatedVideos[0] with its several locator spellings"""
    video = _first(_get(response, "generatedVideos") or _get(response, "videos"))
    return (
        _get(_get(video, "video"), "uri")
        or _get(video, "uri")
        or _get(video, "httpUri")
        or _get(video, "url")
    )


def probe_direct_video(response: Dict[str, Any]) -> Optional[str]:
    """response.video.uri"""
    return _get(_get(response, "video"), "uri")


VIDEO_URI_PROBES: List[Callable[[Dict[str, Any]], Optional[str]]] = [
    probe_generated_samples,
    probe_generated_videos,
    probe_direct_video,
]


def extract_video_uri(operation: Dict[str, Any]) -> Optional[str]:
    """Try each probe in priority order; first usable URI wins"""
    response = operation.get("response") or operation.get("result") or operation
    for probe in VIDEO_URI_PROBES:
        uri = probe(response)
        if isinstance(uri, str) and uri.strip():
            return uri.strip()
    return None


def resolve_video_url(uri: str, api_key: str, api_base: str) -> str:
    """Turn a resource URI into a downloadable URL carrying the access key"""
    url = uri
    if not uri.startswith("http"):
        url = f"{api_base}/{uri.lstrip('/')}?alt=media"
    if api_key and "key" not in parse_qs(urlsplit(url).query, keep_blank_values=True):
        separator = "&" if "?" in url else "?"
        url = f"{url}{separator}key={api_key}"
    return url


# ============================================================================
# Poller
# ============================================================================

class OperationPoller:
    """Polls an operation until completion, permanent failure or timeout"""

    def __init__(
        self,
        client: OperationSource,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.client = client
        self.settings = settings or get_settings()
        self._sleep = sleep

    def _video_url(self, operation: Dict[str, Any], operation_name: str) -> str:
        uri = extract_video_uri(operation)
        if not uri:
            logger.error(f"No video URL in response for {operation_name}")
            raise GenerationFailedError("no video URL in response", operation_name=operation_name)
        return resolve_video_url(uri, self.settings.veo_api_key, self.settings.veo_api_base)

    async def await_completion(
        self,
        handle: OperationHandle,
        interval_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        clip: Optional[ClipJob] = None
    ) -> str:
        """
        Poll ``handle`` until it yields a video URL.

        Transient remote errors and status-fetch hiccups do not count as
        failures; they only consume an attempt. Any other remote error
        raises GenerationFailedError immediately. Exhausting
        ``max_attempts`` raises GenerationTimeoutError.
        """
        interval = self.settings.poll_interval_seconds if interval_seconds is None else interval_seconds
        attempts = max_attempts or self.settings.poll_max_attempts
        name = handle.name

        if clip:
            clip.status = ClipStatus.POLLING

        for attempt in range(1, attempts + 1):
            if attempt > 1:
                await self._sleep(interval)
            if clip:
                clip.attempts = attempt

            try:
                operation = await self.client.fetch_operation(name)
            except TransientNetworkError as exc:
                logger.warning(f"Status check {attempt}/{attempts} for {name} failed: {exc.message}")
                continue

            if not operation.get("done"):
                logger.debug(f"Operation {name} still running ({attempt}/{attempts})")
                continue

            error = operation.get("error")
            if error:
                if is_transient_error(error):
                    logger.warning(
                        f"Transient error on {name} ({error.get('status') or error.get('code')}), "
                        f"continuing to poll"
                    )
                    continue
                if clip:
                    clip.status = ClipStatus.FAILED
                    clip.error = error.get("message")
                raise GenerationFailedError(
                    error.get("message") or "Operation failed",
                    operation_name=name,
                    remote_code=error.get("status") or error.get("code")
                )

            try:
                video_url = self._video_url(operation, name)
            except GenerationFailedError as exc:
                if clip:
                    clip.status = ClipStatus.FAILED
                    clip.error = exc.message
                raise

            if clip:
                clip.status = ClipStatus.DONE
                clip.video_url = video_url
            logger.info(f"Operation {name} complete after {attempt} checks")
            return video_url

        if clip:
            clip.status = ClipStatus.FAILED
            clip.error = "timed out"
        raise GenerationTimeoutError(name, attempts)

    async def check(self, operation_name: str) -> OperationStatus:
        """One status read, folded into an OperationStatus"""
        try:
            operation = await self.client.fetch_operation(operation_name)
        except TransientNetworkError as exc:
            return OperationStatus(operation_name=operation_name, done=False, error=exc.message)
        except GenerationFailedError as exc:
            return OperationStatus(operation_name=operation_name, done=True, error=exc.message)

        if not operation.get("done"):
            return OperationStatus(operation_name=operation_name, done=False)

        error = operation.get("error")
        if error:
            if is_transient_error(error):
                return OperationStatus(operation_name=operation_name, done=False)
            return OperationStatus(
                operation_name=operation_name,
                done=True,
                error=error.get("message") or "Operation failed"
            )

        try:
            return OperationStatus(
                operation_name=operation_name,
                done=True,
                video_url=self._video_url(operation, operation_name)
            )
        except GenerationFailedError as exc:
            return OperationStatus(operation_name=operation_name, done=True, error=exc.message)

    async def check_many(self, operation_names: Iterable[str]) -> StatusSummary:
        statuses = [await self.check(name) for name in operation_names]
        return summarize_statuses(statuses)


def summarize_statuses(statuses: List[OperationStatus]) -> StatusSummary:
    """Aggregate per-clip statuses into processing / complete / failed"""
    total = len(statuses)
    video_urls = [s.video_url for s in statuses if s.video_url]
    completed = len(video_urls)

    if any(not s.done for s in statuses):
        return StatusSummary(
            status="processing",
            completed_segments=completed,
            total_segments=total,
            operations=statuses,
            message=f"Processing... {completed}/{total} clips complete"
        )

    errors = [s.error for s in statuses if s.error]
    if not video_urls:
        return StatusSummary(
            success=False,
            status="failed",
            completed_segments=0,
            total_segments=total,
            operations=statuses,
            failed_clips=len(errors),
            error=errors[0] if errors else "All video clips failed to generate",
            all_errors=errors
        )

    failed = total - completed
    if failed:
        logger.info(f"Partial success: {completed} succeeded, {failed} failed")

    return StatusSummary(
        status="complete",
        completed_segments=completed,
        total_segments=total,
        operations=statuses,
        video_url=video_urls[0] if completed == 1 else None,
        video_urls=video_urls,
        needs_combining=completed > 1,
        partial_success=failed > 0,
        failed_clips=failed,
        all_errors=errors,
        message=(
            f"{completed} clips ready for combining" if completed > 1 else "Video ready"
        )
    )

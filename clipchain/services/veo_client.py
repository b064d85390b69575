"""
Veo Generation Client
Thin adapter over the Generative Language long-running video API
"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp

from ..config import Settings, get_settings
from ..models.clip import AudioPolicy, Conditioning, ConditioningMode, MediaPayload, OperationHandle
from ..utils.exceptions import (
    ConfigurationError,
    GenerationFailedError,
    RequestNotAcceptedError,
    TransientNetworkError,
    ValidationError,
)
from ..utils.logger import get_logger
from ..utils.retry import retry_async

logger = get_logger()

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}

CHARACTER_ANALYSIS_PROMPT = """Analyze this image and provide a DETAILED description of the character/subject for video generation consistency. Include:
1. Physical appearance (face shape, skin tone, hair color/style, eye color, age estimate)
2. Clothing and accessories (exact colors, patterns, style)
3. Body posture and positioning
4. Any distinctive features or characteristics
5. Overall style/mood of the image

Format the response as a concise but detailed character description that can be used to maintain visual consistency across multiple video clips. Start with "Character description:" and be specific about visual details."""


def _remote_error(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        return payload["error"]
    return {}


class VeoClient:
    """Submits generation requests and fetches operation state"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._genai_client = None

    # ------------------------------------------------------------------
    # Request construction
    # ------------------------------------------------------------------

    def _require_key(self) -> str:
        if not self.settings.veo_api_key:
            raise ConfigurationError("VEO_API_KEY", "Veo API key not configured")
        return self.settings.veo_api_key

    @staticmethod
    def build_payload(
        conditioning: Conditioning,
        duration_seconds: int,
        aspect_ratio: str,
        audio_policy: AudioPolicy,
        audio: Optional[MediaPayload] = None
    ) -> Dict[str, Any]:
        """Build the predictLongRunning request body"""
        if conditioning.mode == ConditioningMode.IMAGE and conditioning.image is None:
            raise ValidationError("Image conditioning requires image bytes", field="sourceImage")
        if conditioning.mode == ConditioningMode.TEXT and not (conditioning.prompt or "").strip():
            raise ValidationError("Text conditioning requires a prompt", field="prompt")
        if audio_policy == AudioPolicy.SYNC_TO_AUDIO and audio is None:
            raise ValidationError("Audio sync requires an audio track", field="customAudioUrl")

        instance: Dict[str, Any] = {}
        if conditioning.prompt:
            instance["prompt"] = conditioning.prompt
        if conditioning.mode == ConditioningMode.IMAGE:
            instance["image"] = {
                "bytesBase64Encoded": conditioning.image.to_base64(),
                "mimeType": conditioning.image.mime_type,
            }
        if audio_policy == AudioPolicy.SYNC_TO_AUDIO:
            instance["audio"] = {
                "bytesBase64Encoded": audio.to_base64(),
                "mimeType": audio.mime_type,
            }

        parameters: Dict[str, Any] = {
            "aspectRatio": aspect_ratio,
            "durationSeconds": duration_seconds,
            "sampleCount": 1,
        }
        if audio_policy == AudioPolicy.NONE:
            parameters["generateAudio"] = False

        return {"instances": [instance], "parameters": parameters}

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _classify_http_error(self, status: int, payload: Any, context: str, retry_after: Optional[str] = None):
        error = _remote_error(payload)
        message = error.get("message") or f"HTTP {status}"
        if status == 429:
            raise RequestNotAcceptedError(
                f"{context}: {message}",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None
            )
        if status in _RETRYABLE_STATUS:
            raise TransientNetworkError(f"{context}: {message}")
        if status in (401, 403):
            raise ConfigurationError("VEO_API_KEY", f"{context}: credential rejected ({status})")
        raise GenerationFailedError(message, remote_code=error.get("status") or status)

    async def _request(self, method: str, url: str, body: Optional[dict] = None) -> Dict[str, Any]:
        headers = {"x-goog-api-key": self._require_key(), "Content-Type": "application/json"}
        timeout = aiohttp.ClientTimeout(total=self.settings.download_timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, url, json=body, headers=headers) as response:
                    try:
                        payload = await response.json(content_type=None)
                    except ValueError:
                        payload = {}
                    if response.status >= 400:
                        self._classify_http_error(
                            response.status, payload, f"{method} {url.split('?')[0]}",
                            retry_after=response.headers.get("Retry-After")
                        )
                    return payload or {}
        except aiohttp.ClientConnectorError as exc:
            raise RequestNotAcceptedError(f"Video API unreachable: {type(exc).__name__}") from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransientNetworkError(f"Video API request interrupted: {type(exc).__name__}") from exc

    async def submit(
        self,
        conditioning: Conditioning,
        duration_seconds: int,
        aspect_ratio: str,
        audio_policy: AudioPolicy = AudioPolicy.GENERATED,
        audio: Optional[MediaPayload] = None
    ) -> OperationHandle:
        """
        Start one clip generation and return its operation handle.

        Only requests the API never accepted (connection refused, 429) are
        resent; a timeout or 5xx may already have started a generation.
        """
        self._require_key()
        body = self.build_payload(conditioning, duration_seconds, aspect_ratio, audio_policy, audio)
        url = f"{self.settings.veo_api_base}/models/{self.settings.veo_model}:predictLongRunning"

        send = retry_async(
            max_retries=self.settings.download_max_retries,
            base_delay=self.settings.download_backoff_seconds,
            retryable_exceptions=(RequestNotAcceptedError,)
        )(self._request)
        try:
            payload = await send("POST", url, body)
        except RequestNotAcceptedError:
            raise
        except TransientNetworkError as exc:
            logger.warning(f"Submit outcome unknown, not resending (a generation may have started): {exc.message}")
            raise

        name = payload.get("name")
        if not name:
            raise GenerationFailedError("No operation name returned")
        logger.info(f"Operation started: {name} ({conditioning.mode.value}, audio={audio_policy.value})")
        return OperationHandle(name=name)

    async def fetch_operation(self, operation_name: str) -> Dict[str, Any]:
        """Single status read of a long-running operation"""
        return await self._request("GET", f"{self.settings.veo_api_base}/{operation_name}")

    # ------------------------------------------------------------------
    # Character analysis (Gemini vision)
    # ------------------------------------------------------------------

    def _ensure_genai_client(self):
        """Lazy load the Gemini client"""
        if self._genai_client is not None:
            return

        if not self.settings.analysis_api_key:
            raise ConfigurationError("GEMINI_API_KEY", "Gemini API key not configured")

        from google import genai
        self._genai_client = genai.Client(api_key=self.settings.analysis_api_key)
        logger.info("Gemini client initialized")

    async def describe_character(self, image: MediaPayload) -> str:
        """
        Describe the subject of ``image`` for cross-clip consistency.

        Returns an empty string when analysis fails; generation proceeds
        without the description.
        """
        try:
            self._ensure_genai_client()
            from google.genai import types

            contents = [
                CHARACTER_ANALYSIS_PROMPT,
                types.Part.from_bytes(data=image.data, mime_type=image.mime_type),
            ]
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                None,
                lambda: self._genai_client.models.generate_content(
                    model=self.settings.analysis_model,
                    contents=contents
                )
            )
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.warning(f"Character analysis failed, continuing without it: {exc}")
            return ""

        description = (getattr(response, "text", None) or "").strip()
        logger.info(f"Character analysis: {description[:80]!r}")
        return description

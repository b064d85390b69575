"""
Media Fetcher Service
Downloads clips and decodes caller-supplied media (data URIs or URLs)
"""

import asyncio
import base64
import binascii
import mimetypes
import re
from typing import Optional

import aiohttp

from ..config import Settings, get_settings
from ..models.clip import MediaPayload
from ..utils.exceptions import MediaDownloadError, TransientNetworkError, ValidationError
from ..utils.logger import get_logger, redact_url
from ..utils.retry import retry_async

logger = get_logger()

_DATA_URI = re.compile(r"^data:([^;,]+)?(;base64)?,(.*)$", re.DOTALL)
_RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}
_CHUNK_SIZE = 1024 * 1024


def decode_data_uri(value: str, default_mime: str = "application/octet-stream") -> MediaPayload:
    """Decode ``data:<mime>;base64,<payload>`` (or bare base64) into bytes"""
    match = _DATA_URI.match(value)
    mime_type = default_mime
    payload = value
    if match:
        mime_type = match.group(1) or default_mime
        payload = match.group(3)
    try:
        data = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(f"Invalid base64 media payload: {exc}") from exc
    if not data:
        raise ValidationError("Media payload is empty")
    return MediaPayload(data=data, mime_type=mime_type)


class MediaFetcher:
    """HTTP downloader with bounded timeout and exponential backoff"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.settings.download_timeout_seconds)

    def _retrying(self, func):
        return retry_async(
            max_retries=self.settings.download_max_retries,
            base_delay=self.settings.download_backoff_seconds,
            max_delay=30.0,
            retryable_exceptions=(TransientNetworkError,)
        )(func)

    @staticmethod
    def _check_response(response: aiohttp.ClientResponse, url: str):
        if response.status in _RETRYABLE_STATUS:
            retry_after = response.headers.get("Retry-After")
            raise TransientNetworkError(
                f"HTTP {response.status} while downloading",
                url=redact_url(url),
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None
            )
        if response.status >= 400:
            raise MediaDownloadError(
                f"Failed to download media: HTTP {response.status}",
                url=redact_url(url),
                status=response.status
            )

    async def _download_once(self, url: str, dest_path: str) -> str:
        try:
            async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                async with session.get(url) as response:
                    self._check_response(response, url)
                    with open(dest_path, "wb") as output_file:
                        async for chunk in response.content.iter_chunked(_CHUNK_SIZE):
                            output_file.write(chunk)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransientNetworkError(
                f"Download interrupted: {type(exc).__name__}", url=redact_url(url)
            ) from exc
        return dest_path

    async def _read_once(self, url: str) -> MediaPayload:
        try:
            async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                async with session.get(url) as response:
                    self._check_response(response, url)
                    data = await response.read()
                    mime_type = response.headers.get("Content-Type", "").split(";")[0].strip()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransientNetworkError(
                f"Download interrupted: {type(exc).__name__}", url=redact_url(url)
            ) from exc

        if not mime_type:
            mime_type = mimetypes.guess_type(url.split("?")[0])[0] or "application/octet-stream"
        return MediaPayload(data=data, mime_type=mime_type)

    async def download(self, url: str, dest_path: str) -> str:
        """Download ``url`` to ``dest_path``; data URIs are decoded in place"""
        if url.startswith("data:"):
            payload = decode_data_uri(url)
            with open(dest_path, "wb") as output_file:
                output_file.write(payload.data)
            return dest_path

        logger.info(f"Downloading {redact_url(url)}")
        return await self._retrying(self._download_once)(url, dest_path)

    async def load(self, source: str, default_mime: str) -> MediaPayload:
        """Resolve a data URI, URL or bare base64 string to bytes"""
        if source.startswith(("http://", "https://")):
            return await self._retrying(self._read_once)(source)
        return decode_data_uri(source, default_mime=default_mime)

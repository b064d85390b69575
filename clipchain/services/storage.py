"""
Video Storage Service
Publishes final videos to Cloudflare R2 (S3 API), or to the local output
directory when object storage is not configured.
"""

import asyncio
import mimetypes
import os
import shutil
import time
import uuid
from pathlib import Path
from typing import Callable, Optional

from ..config import Settings, get_settings
from ..utils.exceptions import StorageUploadError
from ..utils.logger import get_logger

logger = get_logger()

MULTIPART_THRESHOLD = 5 * 1024 * 1024


def build_object_key(user_id: str, suffix: str = ".mp4") -> str:
    return f"ai-videos/{user_id}/{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{suffix}"


class VideoStorage:
    """R2 uploader with a local-directory fallback"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client = None

    def _ensure_initialized(self):
        """Lazy initialize the S3-compatible client"""
        if self._client is not None:
            return

        import boto3
        from botocore.config import Config

        config = Config(
            retries={"max_attempts": 3, "mode": "adaptive"},
            max_pool_connections=10
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.settings.storage_endpoint_url,
            aws_access_key_id=self.settings.storage_access_key_id,
            aws_secret_access_key=self.settings.storage_secret_access_key,
            region_name=self.settings.storage_region,
            config=config
        )
        logger.info(f"Object storage client initialized for bucket: {self.settings.storage_bucket_name}")

    def public_url(self, key: str) -> str:
        base = self.settings.storage_public_url.rstrip("/")
        if base:
            return f"{base}/{key}"
        return f"{self.settings.storage_endpoint_url.rstrip('/')}/{self.settings.storage_bucket_name}/{key}"

    def _do_upload(
        self,
        local_path: str,
        key: str,
        content_type: str,
        file_size: int,
        progress_callback: Optional[Callable[[float, str], None]]
    ):
        """Perform the actual upload (blocking)"""
        uploaded_bytes = 0

        def upload_progress(bytes_amount):
            nonlocal uploaded_bytes
            uploaded_bytes += bytes_amount
            if progress_callback and file_size:
                percent = (uploaded_bytes / file_size) * 100
                progress_callback(percent, f"Uploading: {percent:.0f}%")

        if file_size > MULTIPART_THRESHOLD:
            from boto3.s3.transfer import TransferConfig

            config = TransferConfig(
                multipart_threshold=MULTIPART_THRESHOLD,
                multipart_chunksize=MULTIPART_THRESHOLD,
                max_concurrency=4,
                use_threads=True
            )
            self._client.upload_file(
                local_path,
                self.settings.storage_bucket_name,
                key,
                ExtraArgs={"ContentType": content_type},
                Config=config,
                Callback=upload_progress
            )
        else:
            with open(local_path, "rb") as f:
                self._client.put_object(
                    Bucket=self.settings.storage_bucket_name,
                    Key=key,
                    Body=f,
                    ContentType=content_type
                )

    async def _upload(self, local_path: str, key: str, progress_callback=None) -> str:
        self._ensure_initialized()

        file_size = os.path.getsize(local_path)
        content_type, _ = mimetypes.guess_type(local_path)
        content_type = content_type or "video/mp4"
        logger.info(f"Uploading to object storage: {key} ({file_size / 1024 / 1024:.1f} MB)")

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None, self._do_upload, local_path, key, content_type, file_size, progress_callback
            )
        except Exception as exc:
            logger.error(f"Object storage upload failed for {key}: {exc}")
            raise StorageUploadError(f"Upload failed: {type(exc).__name__}", key=key) from exc

        url = self.public_url(key)
        logger.info(f"Upload complete: {url}")
        return url

    def _copy_local(self, local_path: str, key: str) -> str:
        output_dir = Path(self.settings.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        name = key.replace("/", "_")
        shutil.copyfile(local_path, output_dir / name)
        logger.info(f"Stored locally: {output_dir / name}")
        return f"/output/{name}"

    async def publish(
        self,
        local_path: str,
        user_id: str,
        progress_callback: Optional[Callable[[float, str], None]] = None
    ) -> str:
        """
        Make ``local_path`` durable and return its public URL.

        The source file is left in place; callers own its cleanup.
        """
        if not os.path.exists(local_path):
            raise StorageUploadError("Rendered video is missing", key=None)

        key = build_object_key(user_id, Path(local_path).suffix or ".mp4")
        if self.settings.storage_configured:
            return await self._upload(local_path, key, progress_callback)

        logger.info("Object storage not configured, hosting from output directory")
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._copy_local, local_path, key)
        except OSError as exc:
            raise StorageUploadError(f"Local copy failed: {exc.strerror}", key=key) from exc


_video_storage: Optional[VideoStorage] = None


def get_video_storage() -> VideoStorage:
    """Return singleton storage service."""
    global _video_storage
    if _video_storage is None:
        _video_storage = VideoStorage()
    return _video_storage

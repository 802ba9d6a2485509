"""Image asset storage: put bytes, get URL.

Assets are written below ``config.storage_dir`` using slash-separated keys
(``users/<user>/<ts>-<name>``, ``ai-generated/<user>/<task>-<ts>.png``).
Each asset gets a ``.meta.json`` sidecar recording who stored it and why.

URLs are built from ``config.public_url`` when set, otherwise they point at
the ``/media`` mount served by the FastAPI app.
"""

from __future__ import annotations

import io
import json
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
from PIL import Image, UnidentifiedImageError

from photogen.core.config import PhotogenConfig
from photogen.core.errors import StorageError

logger = logging.getLogger(__name__)

MEDIA_ROUTE = "/media"

ALLOWED_CONTENT_TYPES = frozenset(
    {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif"}
)
# Pillow format name -> canonical content type.
_FORMAT_CONTENT_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}


@dataclass
class UploadedAsset:
    """Result of storing a user upload."""

    url: str
    key: str
    size: int
    content_type: str
    width: int
    height: int


def _safe_filename(filename: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "", filename)[:50] or "upload"


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


class AssetStorage:
    """Local-directory asset store.

    Args:
        config: Application configuration.
        transport: Optional httpx transport for downloads (tests).
    """

    def __init__(self, config: PhotogenConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self.root = Path(config.storage_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        self._transport = transport

    def url_for(self, key: str) -> str:
        if self.config.public_url:
            return f"{self.config.public_url.rstrip('/')}/{key}"
        return f"{MEDIA_ROUTE}/{key}"

    def path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageError(f"Invalid storage key: {key}", "INVALID_KEY")
        return path

    def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Write ``data`` under ``key`` and return its public URL."""
        path = self.path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            sidecar = path.with_name(path.name + ".meta.json")
            sidecar.write_text(
                json.dumps({"contentType": content_type, **(metadata or {})}, indent=2),
                encoding="utf-8",
            )
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}", "WRITE_FAILED", {"key": key}) from e
        logger.info(f"Stored {len(data)} bytes at {key}")
        return self.url_for(key)

    def inspect_image(self, data: bytes) -> tuple[str, int, int]:
        """Verify ``data`` is a supported image.

        Returns:
            ``(content_type, width, height)``.

        Raises:
            StorageError: ``INVALID_IMAGE`` if Pillow cannot read it or the
                format is not allowed.
        """
        try:
            with Image.open(io.BytesIO(data)) as image:
                image_format = image.format
                width, height = image.size
                image.verify()
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise StorageError("File is not a readable image", "INVALID_IMAGE") from e
        content_type = _FORMAT_CONTENT_TYPES.get(image_format or "")
        if content_type is None:
            raise StorageError(
                f"Unsupported image format: {image_format}",
                "INVALID_IMAGE",
                {"format": image_format},
            )
        return content_type, width, height

    def store_user_image(
        self, data: bytes, filename: str, content_type: str, user_id: str
    ) -> UploadedAsset:
        """Validate and store an image uploaded by a user."""
        if len(data) > self.config.max_upload_bytes:
            raise StorageError("File too large", "FILE_TOO_LARGE", {"size": len(data)})
        detected_type, width, height = self.inspect_image(data)
        timestamp = _timestamp_ms()
        key = f"users/{user_id}/{timestamp}-{_safe_filename(filename)}"
        url = self.put(
            key,
            data,
            detected_type,
            {
                "userId": user_id,
                "uploadTime": timestamp,
                "originalName": filename,
                "declaredContentType": content_type,
            },
        )
        return UploadedAsset(
            url=url,
            key=key,
            size=len(data),
            content_type=detected_type,
            width=width,
            height=height,
        )

    async def fetch_remote(self, url: str) -> tuple[bytes, str]:
        """Download ``url`` and return ``(body, content_type)``.

        Raises:
            StorageError: ``DOWNLOAD_FAILED`` on transport errors or non-2xx
                responses.
        """
        logger.info(f"Downloading image from {url}")
        try:
            async with httpx.AsyncClient(
                timeout=self.config.download_timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(
                    url,
                    headers={"User-Agent": self.config.user_agent, "Accept": "image/*,*/*;q=0.8"},
                )
        except httpx.HTTPError as e:
            raise StorageError(f"Download failed: {e}", "DOWNLOAD_FAILED", {"url": url}) from e
        if not response.is_success:
            raise StorageError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                "DOWNLOAD_FAILED",
                {"url": url, "status": response.status_code},
            )
        content_type = response.headers.get("content-type", "image/png").split(";")[0]
        return response.content, content_type

    async def store_generated_image(
        self, image_url: str, task_id: str, user_id: str, index: int = 0
    ) -> str:
        """Copy a provider result image into storage and return its URL."""
        if not image_url or not task_id or not user_id:
            raise StorageError(
                "image_url, task_id and user_id are required",
                "STORE_AI_IMAGE_FAILED",
                {"imageUrl": image_url, "taskId": task_id, "userId": user_id},
            )
        try:
            data, content_type = await self.fetch_remote(image_url)
            timestamp = _timestamp_ms()
            suffix = f"_{index}" if index else ""
            key = f"ai-generated/{user_id}/{task_id}{suffix}-{timestamp}.png"
            return self.put(
                key,
                data,
                content_type,
                {
                    "taskId": task_id,
                    "userId": user_id,
                    "originalUrl": image_url,
                    "generatedAt": timestamp,
                },
            )
        except StorageError as e:
            logger.error(f"Failed to store generated image for task {task_id}: {e}")
            raise StorageError(
                f"Failed to store AI generated image: {e}",
                "STORE_AI_IMAGE_FAILED",
                {"imageUrl": image_url, "taskId": task_id, "userId": user_id},
            ) from e

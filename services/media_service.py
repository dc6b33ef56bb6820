import asyncio
import hashlib
import logging
import time
from typing import Dict, Optional

import aiohttp

from core.config import settings

logger = logging.getLogger(__name__)


class MediaUploadError(Exception):
    pass


def sign_upload_params(params: Dict[str, str], api_secret: str) -> str:
    """Cloudinary signature: sha1 of the sorted ``k=v`` pairs joined by ``&`` plus the secret."""
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] != "")
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


class MediaUploader:
    """Pushes user images to the media host and returns their public URL."""

    def __init__(
        self,
        cloud_name: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.cloud_name = cloud_name or settings.CLOUDINARY_CLOUD_NAME
        self.api_key = api_key or settings.CLOUDINARY_API_KEY
        self.api_secret = api_secret or settings.CLOUDINARY_API_SECRET
        self.base_url = base_url or settings.CLOUDINARY_UPLOAD_URL
        self.timeout = timeout or settings.MEDIA_UPLOAD_TIMEOUT

    @property
    def upload_url(self) -> str:
        return f"{self.base_url}/{self.cloud_name}/auto/upload"

    async def upload(self, filename: str, content: bytes, content_type: Optional[str] = None) -> Optional[str]:
        if not content:
            return None
        if not (self.cloud_name and self.api_key and self.api_secret):
            raise MediaUploadError("Media hosting is not configured")

        params = {"timestamp": str(int(time.time()))}
        form = aiohttp.FormData()
        form.add_field("file", content, filename=filename or "upload", content_type=content_type or "application/octet-stream")
        form.add_field("api_key", self.api_key)
        form.add_field("timestamp", params["timestamp"])
        form.add_field("signature", sign_upload_params(params, self.api_secret))

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(self.upload_url, data=form, timeout=aiohttp.ClientTimeout(total=self.timeout)) as resp:
                    if resp.status >= 400:
                        body = await resp.text()
                        logger.error(f"Media upload failed: {resp.status} {body[:200]}")
                        raise MediaUploadError(f"Upload rejected with status {resp.status}")
                    try:
                        data = await resp.json(content_type=None)
                    except ValueError as e:
                        logger.error(f"Media upload returned a non-JSON body: {e}")
                        raise MediaUploadError("Invalid media upload response") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.exception(f"Media host unavailable: {e}")
            raise MediaUploadError("Media service unavailable") from e

        url = (data.get("secure_url") or data.get("url")) if isinstance(data, dict) else None
        if not url:
            logger.error(f"Media upload response missing url: {data}")
            raise MediaUploadError("Invalid media upload response")
        return url


def get_media_uploader() -> MediaUploader:
    return MediaUploader()

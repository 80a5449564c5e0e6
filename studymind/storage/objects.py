"""Object storage for generated files (Supabase Storage REST API)."""

import logging
import re
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from studymind.config import get_settings
from studymind.errors import GenerationError

logger = logging.getLogger(__name__)

MIME_TYPES = {
    # Documents
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "txt": "text/plain",
    # Audio
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    # Video
    "mp4": "video/mp4",
    "webm": "video/webm",
    "avi": "video/x-msvideo",
    "mov": "video/quicktime",
    "mkv": "video/x-matroska",
    # Images
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
}


def get_mime_type(file_type: str) -> str:
    return MIME_TYPES.get((file_type or "").lower().lstrip("."), "application/octet-stream")


def storage_file_name(name: str, file_type: str, timestamp_ms: Optional[int] = None) -> str:
    """Build a collision-free object name: ``biology_notes_1718000000000.pdf``."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    base = re.sub(r"[^a-zA-Z0-9]", "_", name or "file").lower()
    return f"{base}_{timestamp_ms}.{file_type.lstrip('.')}"


@dataclass
class StoredObject:
    file_path: str
    file_url: str
    file_size: int


class ObjectStorage:
    """Thin async client for one Supabase Storage bucket."""

    def __init__(self, base_url: str, api_key: str, bucket: str, timeout: float = 60.0):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._bucket = bucket
        self._timeout = timeout

    def _headers(self, content_type: Optional[str] = None) -> dict:
        headers = {
            "authorization": f"Bearer {self._api_key}",
            "apikey": self._api_key,
        }
        if content_type:
            headers["content-type"] = content_type
        return headers

    def public_url(self, file_path: str) -> str:
        return f"{self._base_url}/storage/v1/object/public/{self._bucket}/{file_path}"

    async def upload(self, data: bytes, file_name: str, file_type: str) -> StoredObject:
        """Upload bytes under a generated object name and return its public location."""
        file_path = storage_file_name(file_name, file_type)
        url = f"{self._base_url}/storage/v1/object/{self._bucket}/{file_path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, headers=self._headers(get_mime_type(file_type)), content=data)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Upload failed for %s: %s", file_path, e)
            raise GenerationError("Failed to store the generated file. Please try again later.") from e

        logger.info("Uploaded %s (%d bytes)", file_path, len(data))
        return StoredObject(file_path=file_path, file_url=self.public_url(file_path), file_size=len(data))

    async def download(self, file_path: str) -> bytes:
        url = f"{self._base_url}/storage/v1/object/{self._bucket}/{file_path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(url, headers=self._headers())
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            logger.error("Download failed for %s: %s", file_path, e)
            raise GenerationError("Failed to download the stored file.") from e

    async def delete(self, file_paths: list[str]) -> None:
        """Remove objects from the bucket."""
        if not file_paths:
            return
        url = f"{self._base_url}/storage/v1/object/{self._bucket}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.request(
                    "DELETE", url, headers=self._headers("application/json"), json={"prefixes": file_paths},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Delete failed for %s: %s", ", ".join(file_paths), e)
            raise GenerationError("Failed to remove stored files.") from e
        logger.info("Deleted %d stored object(s)", len(file_paths))


# Module-level singleton
_storage: Optional[ObjectStorage] = None


def get_object_storage() -> ObjectStorage:
    """Get or create the global ObjectStorage instance."""
    global _storage
    if _storage is None:
        settings = get_settings()
        _storage = ObjectStorage(
            base_url=settings.storage.url,
            api_key=settings.storage.key,
            bucket=settings.storage.bucket,
            timeout=settings.tools.timeout_seconds,
        )
    return _storage

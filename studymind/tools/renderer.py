"""File rendering through the external tools service and image endpoint."""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import httpx

from studymind.config import get_settings
from studymind.errors import GenerationError
from studymind.storage.objects import ObjectStorage, get_object_storage, storage_file_name

logger = logging.getLogger(__name__)

TOOL_ROUTES = {
    "pdf": "markdown-to-pdf",
    "mp3": "text-to-audio",
}


@dataclass
class RenderedFile:
    file_type: str
    file_path: str
    file_url: str
    file_size: int
    duration: Optional[float] = None
    # True when the file was uploaded to our own bucket
    owned: bool = False

    def as_metadata(self) -> dict:
        """Metadata keys merged into the stored library item."""
        data = {
            "fileType": self.file_type,
            "filePath": self.file_path,
            "fileUrl": self.file_url,
            "fileSize": self.file_size,
        }
        if self.duration is not None:
            data["duration"] = self.duration
        return data


class Renderer:
    def __init__(
        self,
        tools_url: str,
        image_url: str,
        storage: Optional[ObjectStorage] = None,
        timeout: float = 120.0,
    ):
        self._tools_url = tools_url.rstrip("/")
        self._image_url = image_url.rstrip("/")
        self._storage = storage
        self._timeout = timeout

    @property
    def storage(self) -> ObjectStorage:
        if self._storage is None:
            self._storage = get_object_storage()
        return self._storage

    async def _call_tool(self, contents: str, name: str, file_type: str) -> RenderedFile:
        """POST ``contents`` to the tool for ``file_type``; the tool stores the file itself.

        Expected response: ``{"success": true, "data": {"fileName", "fileUrl", "fileSize", "duration"?}}``
        """
        file_name = storage_file_name(name, file_type)
        url = f"{self._tools_url}/{TOOL_ROUTES[file_type]}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json={"contents": contents, "fileName": file_name})
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Tool %s failed for %s: %s", TOOL_ROUTES[file_type], file_name, e)
            raise GenerationError("Content generation failed. Please try again later.") from e

        data = body.get("data") or {}
        if not body.get("success", True) or not data.get("fileUrl"):
            logger.error("Tool %s returned no file: %s", TOOL_ROUTES[file_type], body.get("message"))
            raise GenerationError("Content generation failed. Please try again later.")

        rendered = RenderedFile(
            file_type=file_type,
            file_path=data.get("fileName") or file_name,
            file_url=data["fileUrl"],
            file_size=int(data.get("fileSize") or 0),
            duration=data.get("duration"),
        )
        logger.info("Rendered %s via %s (%d bytes)", rendered.file_path, TOOL_ROUTES[file_type], rendered.file_size)
        return rendered

    async def render_pdf(self, markdown: str, name: str) -> RenderedFile:
        return await self._call_tool(markdown, name, "pdf")

    async def render_speech(self, script: str, name: str) -> RenderedFile:
        return await self._call_tool(script, name, "mp3")

    async def render_image(self, prompt: str, name: str, width: int = 1024, height: int = 1024) -> RenderedFile:
        """Fetch a generated image and copy it into object storage.

        The upload happens before the library item is stored; callers that
        abandon the item should pass the result to ``discard``.
        """
        url = f"{self._image_url}/{quote(prompt, safe='')}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                response = await client.get(url, params={"width": width, "height": height})
                response.raise_for_status()
                data = response.content
        except httpx.HTTPError as e:
            logger.error("Image generation failed for %r: %s", name, e)
            raise GenerationError("Content generation failed. Please try again later.") from e

        stored = await self.storage.upload(data, name, "png")
        return RenderedFile(
            file_type="png",
            file_path=stored.file_path,
            file_url=stored.file_url,
            file_size=stored.file_size,
            owned=True,
        )

    async def discard(self, files: list[RenderedFile]) -> None:
        """Delete uploaded files whose library items were never stored.

        Files written by the tools service belong to it and are left alone.
        Cleanup failures are logged, not raised.
        """
        paths = [f.file_path for f in files if f.owned]
        if not paths:
            return
        try:
            await self.storage.delete(paths)
        except GenerationError as e:
            logger.warning("Could not remove %d orphaned file(s): %s", len(paths), e)


# Module-level singleton
_renderer: Optional[Renderer] = None


def get_renderer() -> Renderer:
    """Get or create the global Renderer instance."""
    global _renderer
    if _renderer is None:
        settings = get_settings()
        _renderer = Renderer(
            tools_url=settings.tools.tools_url,
            image_url=settings.tools.image_url,
            timeout=settings.tools.timeout_seconds,
        )
    return _renderer

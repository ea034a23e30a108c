from __future__ import annotations

import asyncio
import os
from pathlib import Path, PurePosixPath

import httpx

from shared.logging import get_logger

from ..errors import AttachmentDownloadError
from ..models.contracts import AttachmentMetadata

logger = get_logger("indexing.downloader")

DEFAULT_EXTENSION = "png"
CACHE_SUBDIR = "cached"


def _extension_for(filename: str) -> str:
    suffix = PurePosixPath(filename).suffix.lstrip(".")
    if not suffix or not suffix.isalnum():
        return DEFAULT_EXTENSION
    return suffix


def local_filename(message_id: str, attachment: AttachmentMetadata) -> str:
    return f"{message_id}_{attachment.id}.{_extension_for(attachment.filename)}"


def _write_file(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # Write beside the target and rename so an interrupted write never looks cached
    tmp_path = path.with_name(path.name + ".part")
    try:
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


class AttachmentDownloader:
    """Downloads attachments into the content-addressed image cache.

    Files are named ``<message_id>_<attachment_id>.<ext>`` under
    ``cache_dir``; an existing file is treated as already downloaded.
    Filesystem calls run on worker threads via :func:`asyncio.to_thread`.
    """

    def __init__(
        self,
        cache_dir: Path,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.cache_dir = cache_dir
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout), follow_redirects=True)
        self._timeout = timeout

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def paths_for(self, message_id: str, attachment: AttachmentMetadata) -> tuple[Path, str]:
        filename = local_filename(message_id, attachment)
        return self.cache_dir / filename, str(PurePosixPath(CACHE_SUBDIR) / filename)

    async def is_cached(self, message_id: str, attachment: AttachmentMetadata) -> bool:
        absolute, _ = self.paths_for(message_id, attachment)
        return await asyncio.to_thread(absolute.exists)

    async def ensure_local(self, message_id: str, attachment: AttachmentMetadata) -> str:
        """Return the cache-relative path of the attachment, downloading it if needed."""
        absolute, relative = self.paths_for(message_id, attachment)

        if await asyncio.to_thread(absolute.exists):
            logger.info("attachment_cache_hit", message_id=message_id, path=relative)
            return relative

        try:
            response = await self._client.get(attachment.url, timeout=self._timeout)
        except httpx.HTTPError as exc:
            logger.error("attachment_request_failed", message_id=message_id, url=attachment.url, error=str(exc))
            raise AttachmentDownloadError(
                f"Download request failed for {attachment.url}: {exc}",
                message_id=message_id,
                attachment_id=attachment.id,
            ) from exc

        if not response.is_success:
            logger.error(
                "attachment_download_rejected",
                message_id=message_id,
                url=attachment.url,
                status_code=response.status_code,
            )
            raise AttachmentDownloadError(
                f"Download failed for {attachment.url}: Status {response.status_code}",
                message_id=message_id,
                attachment_id=attachment.id,
            )

        try:
            await asyncio.to_thread(_write_file, absolute, response.content)
        except OSError as exc:
            logger.error("attachment_write_failed", message_id=message_id, path=str(absolute), error=str(exc))
            raise AttachmentDownloadError(
                f"Failed to write file {absolute.name}: {exc}",
                message_id=message_id,
                attachment_id=attachment.id,
            ) from exc

        logger.info("attachment_saved", message_id=message_id, path=relative, size_bytes=len(response.content))
        return relative


__all__ = ["AttachmentDownloader", "local_filename"]

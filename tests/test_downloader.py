from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from showcase.indexing.errors import AttachmentDownloadError
from showcase.indexing.models.contracts import AttachmentMetadata
from showcase.indexing.pipeline.downloader import AttachmentDownloader, local_filename


def _attachment(filename: str = "photo.jpg") -> AttachmentMetadata:
    return AttachmentMetadata(id="555", filename=filename, url=f"https://cdn.test/{filename}")


def _downloader(tmp_path: Path, handler) -> tuple[AttachmentDownloader, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    return AttachmentDownloader(tmp_path / "images" / "cached", client=client), requests


def test_local_filename_uses_source_extension_or_png() -> None:
    assert local_filename("1", _attachment("photo.jpeg")) == "1_555.jpeg"
    assert local_filename("1", _attachment("README")) == "1_555.png"


@pytest.mark.asyncio
async def test_ensure_local_downloads_once_then_hits_cache(tmp_path: Path) -> None:
    downloader, requests = _downloader(tmp_path, lambda request: httpx.Response(200, content=b"jpeg-bytes"))
    attachment = _attachment()

    first = await downloader.ensure_local("900", attachment)
    second = await downloader.ensure_local("900", attachment)

    assert first == second == "cached/900_555.jpg"
    assert len(requests) == 1
    assert (tmp_path / "images" / "cached" / "900_555.jpg").read_bytes() == b"jpeg-bytes"
    assert not list((tmp_path / "images" / "cached").glob("*.part"))
    assert await downloader.is_cached("900", attachment)


@pytest.mark.asyncio
async def test_ensure_local_rejects_non_success_status(tmp_path: Path) -> None:
    downloader, _ = _downloader(tmp_path, lambda request: httpx.Response(500))

    with pytest.raises(AttachmentDownloadError) as excinfo:
        await downloader.ensure_local("900", _attachment())

    assert excinfo.value.message_id == "900"
    assert excinfo.value.attachment_id == "555"
    assert "Status 500" in str(excinfo.value)
    assert not (tmp_path / "images" / "cached" / "900_555.jpg").exists()


@pytest.mark.asyncio
async def test_ensure_local_wraps_transport_errors(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    downloader, _ = _downloader(tmp_path, handler)

    with pytest.raises(AttachmentDownloadError):
        await downloader.ensure_local("900", _attachment())


@pytest.mark.asyncio
async def test_write_failure_raises_and_leaves_no_partial_file(tmp_path: Path, monkeypatch) -> None:
    def failing_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("showcase.indexing.pipeline.downloader.os.replace", failing_replace)
    downloader, _ = _downloader(tmp_path, lambda request: httpx.Response(200, content=b"png"))

    with pytest.raises(AttachmentDownloadError, match="Failed to write file 900_555.jpg"):
        await downloader.ensure_local("900", _attachment())

    cache_dir = tmp_path / "images" / "cached"
    assert list(cache_dir.iterdir()) == []

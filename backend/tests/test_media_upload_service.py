import asyncio
import logging

import httpx
import pytest

from app.core.config import settings
from app.integrations.media_upload_service import (
    MediaError,
    MediaFetchError,
    MissingChunkError,
    assemble_chunks,
    chunk_file_name,
    download_media,
    force_https,
    load_media_bytes,
)
from app.integrations.platform_adapters import PublicationMedia


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "media_upload_dir", str(tmp_path))
    return tmp_path


def _write_chunks(directory, parts):
    directory.mkdir(parents=True, exist_ok=True)
    for index, part in enumerate(parts):
        (directory / chunk_file_name(index)).write_bytes(part)


def test_force_https_and_chunk_names():
    assert force_https("http://cdn.example.com/a.jpg") == "https://cdn.example.com/a.jpg"
    assert force_https(" https://cdn.example.com/a.jpg ") == "https://cdn.example.com/a.jpg"
    assert chunk_file_name(7) == "chunk_0007"


def test_assemble_chunks_in_order(upload_dir):
    _write_chunks(upload_dir / "upload-1", [b"abc", b"def", b"g"])
    assert assemble_chunks("upload-1", 3, expected_size=7) == b"abcdefg"


def test_missing_chunk_is_reported_by_index(upload_dir):
    _write_chunks(upload_dir / "upload-2", [b"abc", b"def"])
    (upload_dir / "upload-2" / chunk_file_name(1)).unlink()

    with pytest.raises(MissingChunkError, match="Missing chunk 1"):
        assemble_chunks("upload-2", 2)


def test_size_mismatch_only_warns(upload_dir, caplog):
    _write_chunks(upload_dir / "upload-3", [b"abc", b"def"])
    media_logger = logging.getLogger("app.integrations.media_upload_service")
    media_logger.addHandler(caplog.handler)
    try:
        with caplog.at_level(logging.WARNING, logger="app.integrations.media_upload_service"):
            data = assemble_chunks("upload-3", 2, expected_size=4096, name="clip.mp4")
    finally:
        media_logger.removeHandler(caplog.handler)

    assert data == b"abcdef"
    assert any("media_size_mismatch" in record.getMessage() for record in caplog.records)


def test_paths_outside_upload_dir_are_rejected(upload_dir):
    with pytest.raises(MediaError, match="escapes upload directory"):
        assemble_chunks("../elsewhere", 1)


def test_load_media_bytes_prefers_chunks_then_path(upload_dir):
    _write_chunks(upload_dir / "upload-4", [b"12", b"34"])
    (upload_dir / "file.bin").write_bytes(b"file-bytes")

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500))) as client:
            chunked = await load_media_bytes(
                client, PublicationMedia(chunkDir="upload-4", totalChunks=2, path="file.bin")
            )
            local = await load_media_bytes(client, PublicationMedia(path="file.bin", size=10))
            return chunked, local

    assert asyncio.run(run()) == (b"1234", b"file-bytes")


def test_download_media_classifies_failures():
    def handler(request: httpx.Request) -> httpx.Response:
        return {
            "/ok.mp4": httpx.Response(200, content=b"video"),
            "/gone.mp4": httpx.Response(404),
            "/busy.mp4": httpx.Response(503),
        }[request.url.path]

    async def fetch(path):
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await download_media(client, f"https://cdn.example.com{path}")

    assert asyncio.run(fetch("/ok.mp4")) == b"video"
    with pytest.raises(MediaFetchError) as gone:
        asyncio.run(fetch("/gone.mp4"))
    assert gone.value.retryable is False
    with pytest.raises(MediaFetchError) as busy:
        asyncio.run(fetch("/busy.mp4"))
    assert busy.value.retryable is True


def test_media_item_without_source_is_rejected():
    async def run():
        async with httpx.AsyncClient() as client:
            await load_media_bytes(client, PublicationMedia(name="nothing"))

    with pytest.raises(MediaError, match="no url, path or chunk directory"):
        asyncio.run(run())

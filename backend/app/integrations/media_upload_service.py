"""Media resolution for adapters that push bytes instead of handing the platform a URL.

A media item is either a remote URL, a file already stored under
``settings.media_upload_dir``, or a directory of ``chunk_0000``-style pieces
written by the chunked upload endpoint that still has to be reassembled.
"""

import asyncio
import logging
from pathlib import Path
from urllib.parse import urlparse

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

DECLARED_SIZE_TOLERANCE = 0.10


class MediaError(RuntimeError):
    retryable = False


class MissingChunkError(MediaError):
    pass


class MediaFetchError(MediaError):
    def __init__(self, message: str, *, retryable: bool) -> None:
        super().__init__(message)
        self.retryable = retryable


def force_https(url: str) -> str:
    parsed = urlparse(url.strip())
    if parsed.scheme == "http":
        return parsed._replace(scheme="https").geturl()
    return url.strip()


def chunk_file_name(index: int) -> str:
    return f"chunk_{index:04d}"


def _upload_root() -> Path:
    return Path(settings.media_upload_dir).resolve()


def _resolve_local_path(relative_path: str) -> Path:
    root = _upload_root()
    candidate = (root / relative_path.lstrip("/")).resolve()
    if root != candidate and root not in candidate.parents:
        raise MediaError(f"Media path escapes upload directory: {relative_path}")
    return candidate


def check_declared_size(name: str, declared_size: int | None, actual_size: int, *, tolerance: float = 0.0) -> None:
    """Size disagreements are logged and otherwise ignored; the platform has the final say."""
    if not declared_size:
        return
    difference = abs(actual_size - declared_size)
    if difference > declared_size * tolerance:
        logger.warning(
            "media_size_mismatch name=%s declared_bytes=%s actual_bytes=%s",
            name,
            declared_size,
            actual_size,
        )


def assemble_chunks(chunk_dir: str, total_chunks: int, *, expected_size: int | None = None, name: str = "") -> bytes:
    directory = _resolve_local_path(chunk_dir)
    if total_chunks <= 0:
        raise MediaError(f"Chunked upload {chunk_dir} declares no chunks")

    parts: list[bytes] = []
    for index in range(total_chunks):
        chunk_path = directory / chunk_file_name(index)
        if not chunk_path.is_file():
            raise MissingChunkError(f"Missing chunk {index}")
        parts.append(chunk_path.read_bytes())

    data = b"".join(parts)
    check_declared_size(name or chunk_dir, expected_size, len(data))
    logger.info("media_chunks_assembled dir=%s chunks=%s bytes=%s", chunk_dir, total_chunks, len(data))
    return data


def read_local_media(relative_path: str) -> bytes:
    local_path = _resolve_local_path(relative_path)
    if not local_path.is_file():
        raise MediaError(f"Media file not found: {relative_path}")
    return local_path.read_bytes()


async def download_media(client: httpx.AsyncClient, url: str) -> bytes:
    try:
        response = await client.get(url, follow_redirects=True)
    except httpx.TransportError as exc:
        raise MediaFetchError(f"Media download failed for {url}: {exc}", retryable=True) from exc
    if response.status_code == 429 or response.status_code >= 500:
        raise MediaFetchError(f"Media download temporary failure: {response.status_code}", retryable=True)
    if response.status_code >= 400:
        raise MediaFetchError(f"Media download failed: {response.status_code}", retryable=False)
    return response.content


async def load_media_bytes(client: httpx.AsyncClient, media) -> bytes:
    """Return the raw bytes for a media item described by ``PublicationMedia``."""
    name = media.name or media.url or media.path or "media"
    if media.chunk_dir:
        return await asyncio.to_thread(
            assemble_chunks,
            media.chunk_dir,
            media.total_chunks or 0,
            expected_size=media.size,
            name=name,
        )
    if media.path:
        data = await asyncio.to_thread(read_local_media, media.path)
    elif media.url:
        data = await download_media(client, media.url)
    else:
        raise MediaError(f"Media item {name} has no url, path or chunk directory")

    check_declared_size(name, media.size, len(data), tolerance=DECLARED_SIZE_TOLERANCE)
    return data

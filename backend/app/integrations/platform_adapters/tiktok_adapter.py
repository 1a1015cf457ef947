import logging

import httpx

from app.core.config import settings
from app.integrations.credential_provider import PlatformCredential
from app.integrations.media_upload_service import force_https, load_media_bytes
from app.integrations.platform_adapters.base_adapter import (
    AdapterAuthError,
    AdapterPermanentError,
    AdapterRetryableError,
    BasePlatformAdapter,
    PublicationContent,
)

logger = logging.getLogger(__name__)

TERMINAL_SUCCESS_STATUSES = {"PUBLISH_COMPLETE", "PUBLISHED", "SEND_TO_USER_INBOX", "INBOX_SHARE"}
TERMINAL_FAILED_STATUSES = {"FAILED", "PUBLISH_FAILED", "ERROR"}
AUTH_ERROR_CODES = {
    "access_token_invalid",
    "access_token_expired",
    "scope_not_authorized",
    "scope_permission_missed",
    "token_not_authorized_for_specified_scope",
}
RETRYABLE_ERROR_CODES = {"rate_limit_exceeded", "internal_error", "spam_risk_too_many_pending_share"}
MAX_PHOTO_ITEMS = 35


def raise_for_tiktok_error(payload: dict, *, action: str) -> None:
    error = payload.get("error") or {}
    code = str(error.get("code") or "ok").lower()
    if code == "ok":
        return
    message = str(error.get("message") or code)
    if code in AUTH_ERROR_CODES or "token" in code or "scope" in code:
        raise AdapterAuthError(f"tiktok {action} auth error: {code} {message}")
    if code in RETRYABLE_ERROR_CODES or code.startswith("internal"):
        raise AdapterRetryableError(f"tiktok {action} temporary error: {code} {message}")
    raise AdapterPermanentError(f"tiktok {action} rejected: {code} {message}")


def plan_chunks(video_size: int, chunk_size: int) -> list[tuple[int, int]]:
    """Byte ranges (inclusive) for a FILE_UPLOAD; the last chunk absorbs the remainder."""
    if video_size <= chunk_size:
        return [(0, video_size - 1)]
    total_chunks = video_size // chunk_size
    ranges = [(index * chunk_size, (index + 1) * chunk_size - 1) for index in range(total_chunks)]
    ranges[-1] = (ranges[-1][0], video_size - 1)
    return ranges


class TikTokAdapter(BasePlatformAdapter):
    platform = "tiktok"

    @classmethod
    def get_capabilities(cls) -> dict:
        return {
            "text": False,
            "image": True,
            "video": True,
            "carousel": True,
            "max_length": 2200,
        }

    def validate_content(self, content: PublicationContent) -> None:
        super().validate_content(content)
        videos = [media for media in content.media_files if media.is_video]
        if videos and len(content.media_files) > 1:
            raise AdapterPermanentError("tiktok accepts a single video per post")
        if not videos:
            if len(content.media_files) > MAX_PHOTO_ITEMS:
                raise AdapterPermanentError(f"tiktok photo posts accept at most {MAX_PHOTO_ITEMS} images")
            if any(not media.url for media in content.media_files):
                raise AdapterPermanentError("tiktok photo posts require public image URLs")

    def _headers(self, credential: PlatformCredential) -> dict:
        return {
            "Authorization": f"Bearer {credential.access_token}",
            "Content-Type": "application/json; charset=UTF-8",
        }

    def _post_info(self, content: PublicationContent) -> dict:
        options = content.settings or {}
        return {
            "title": content.caption,
            "privacy_level": options.get("privacy_level") or options.get("privacyLevel") or "PUBLIC_TO_EVERYONE",
            "disable_comment": bool(options.get("disable_comment", False)),
            "disable_duet": bool(options.get("disable_duet", False)),
            "disable_stitch": bool(options.get("disable_stitch", False)),
        }

    async def publish_content(self, credential: PlatformCredential, content: PublicationContent) -> dict:
        async with self.http_client(timeout=settings.adapter_upload_timeout_seconds) as client:
            if content.media_files[0].is_video:
                publish_id, upload_meta = await self._upload_video(client, credential, content)
            else:
                publish_id = await self._init_photo_post(client, credential, content)
                upload_meta = {"source": "PULL_FROM_URL", "photo_count": len(content.media_files)}
            status_payload, status_value = await self._poll_publish_status(client, credential, publish_id)

        result = {
            "external_post_id": publish_id,
            "publish_id": publish_id,
            "upload": upload_meta,
            "publish_status": status_value,
            "status_payload": status_payload,
        }
        if status_value is None:
            result["status_unresolved"] = True
        if status_value in {"SEND_TO_USER_INBOX", "INBOX_SHARE"}:
            result["warning"] = "TikTok inbox flow: creator must complete the post in the TikTok app."
        return result

    async def _upload_video(
        self,
        client: httpx.AsyncClient,
        credential: PlatformCredential,
        content: PublicationContent,
    ) -> tuple[str, dict]:
        media = content.media_files[0]
        data = await load_media_bytes(client, media)
        video_size = len(data)
        if video_size == 0:
            raise AdapterPermanentError("tiktok video file is empty")
        chunk_ranges = plan_chunks(video_size, settings.tiktok_chunk_size_bytes)
        chunk_size = chunk_ranges[0][1] - chunk_ranges[0][0] + 1

        response = await client.post(
            f"{settings.tiktok_api_base_url}/post/publish/video/init/",
            headers=self._headers(credential),
            json={
                "post_info": self._post_info(content),
                "source_info": {
                    "source": "FILE_UPLOAD",
                    "video_size": video_size,
                    "chunk_size": chunk_size,
                    "total_chunk_count": len(chunk_ranges),
                },
            },
        )
        self.raise_for_response(response, action="video init")
        payload = response.json()
        raise_for_tiktok_error(payload, action="video init")
        init_data = payload.get("data") or {}
        publish_id = str(init_data.get("publish_id") or "")
        upload_url = str(init_data.get("upload_url") or "")
        if not publish_id or not upload_url:
            raise AdapterPermanentError("tiktok video init response missing publish_id or upload_url")

        content_type = media.type if media.type and media.type.startswith("video/") else "video/mp4"
        for index, (start, end) in enumerate(chunk_ranges):
            await self._put_chunk(
                client,
                upload_url,
                data[start : end + 1],
                content_range=f"bytes {start}-{end}/{video_size}",
                content_type=content_type,
                index=index,
            )

        logger.info(
            "tiktok_video_uploaded publish_id=%s bytes=%s chunks=%s",
            publish_id,
            video_size,
            len(chunk_ranges),
        )
        return publish_id, {
            "source": "FILE_UPLOAD",
            "video_size": video_size,
            "chunk_size": chunk_size,
            "total_chunk_count": len(chunk_ranges),
        }

    async def _put_chunk(
        self,
        client: httpx.AsyncClient,
        upload_url: str,
        chunk: bytes,
        *,
        content_range: str,
        content_type: str,
        index: int,
    ) -> None:
        headers = {
            "Content-Type": content_type,
            "Content-Range": content_range,
            "Content-Length": str(len(chunk)),
        }
        last_error: Exception | None = None
        for attempt in range(1, self.poll_max_attempts + 1):
            try:
                response = await client.put(upload_url, content=chunk, headers=headers)
                self.raise_for_response(response, action=f"chunk {index} upload")
                return
            except (AdapterRetryableError, httpx.TransportError) as exc:
                last_error = exc
                logger.warning(
                    "tiktok_chunk_upload_retry chunk=%s attempt=%s reason=%s",
                    index,
                    attempt,
                    exc,
                )
            if attempt < self.poll_max_attempts:
                await self.wait_between_polls()
        raise AdapterRetryableError(f"tiktok chunk {index} upload failed after {self.poll_max_attempts} attempts: {last_error}")

    async def _init_photo_post(
        self,
        client: httpx.AsyncClient,
        credential: PlatformCredential,
        content: PublicationContent,
    ) -> str:
        post_info = self._post_info(content)
        post_info["description"] = post_info.pop("title")
        response = await client.post(
            f"{settings.tiktok_api_base_url}/post/publish/content/init/",
            headers=self._headers(credential),
            json={
                "post_info": post_info,
                "source_info": {
                    "source": "PULL_FROM_URL",
                    "photo_cover_index": 0,
                    "photo_images": [force_https(media.url) for media in content.media_files],
                },
                "post_mode": "DIRECT_POST",
                "media_type": "PHOTO",
            },
        )
        self.raise_for_response(response, action="photo init")
        payload = response.json()
        raise_for_tiktok_error(payload, action="photo init")
        publish_id = str((payload.get("data") or {}).get("publish_id") or "")
        if not publish_id:
            raise AdapterPermanentError("tiktok photo init response missing publish_id")
        return publish_id

    async def _poll_publish_status(
        self,
        client: httpx.AsyncClient,
        credential: PlatformCredential,
        publish_id: str,
    ) -> tuple[dict, str | None]:
        """Unresolved after the last attempt counts as published; TikTok keeps processing on its side."""
        last_payload: dict = {}
        for attempt in range(1, self.poll_max_attempts + 1):
            response = await client.post(
                f"{settings.tiktok_api_base_url}/post/publish/status/fetch/",
                headers=self._headers(credential),
                json={"publish_id": publish_id},
            )
            self.raise_for_response(response, action="status fetch")
            last_payload = response.json()
            raise_for_tiktok_error(last_payload, action="status fetch")

            data = last_payload.get("data") or {}
            status_value = str(data.get("status") or "").upper()
            if status_value in TERMINAL_SUCCESS_STATUSES:
                return last_payload, status_value
            if status_value in TERMINAL_FAILED_STATUSES:
                raise AdapterPermanentError(
                    f"tiktok publish failed with status {status_value}: {data.get('fail_reason') or 'unknown'}"
                )
            if attempt < self.poll_max_attempts:
                await self.wait_between_polls()

        logger.warning(
            "tiktok_publish_status_unresolved publish_id=%s attempts=%s",
            publish_id,
            self.poll_max_attempts,
        )
        return last_payload, None

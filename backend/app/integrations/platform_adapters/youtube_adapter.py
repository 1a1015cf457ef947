import logging

import httpx

from app.core.config import settings
from app.integrations.credential_provider import PlatformCredential
from app.integrations.media_upload_service import load_media_bytes
from app.integrations.platform_adapters.base_adapter import (
    AdapterPermanentError,
    AdapterRetryableError,
    BasePlatformAdapter,
    CaptionTooLongError,
    PublicationContent,
)

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 100
RESUME_INCOMPLETE = 308


def resolve_title(content: PublicationContent) -> str:
    if content.title:
        return content.title.strip()
    first_line = next((line.strip() for line in content.caption.splitlines() if line.strip()), "")
    return first_line[:MAX_TITLE_LENGTH] or "Untitled"


class YouTubeAdapter(BasePlatformAdapter):
    platform = "youtube"

    @classmethod
    def get_capabilities(cls) -> dict:
        return {
            "text": False,
            "image": False,
            "video": True,
            "carousel": False,
            "max_length": 5000,
            "max_title_length": MAX_TITLE_LENGTH,
        }

    def validate_content(self, content: PublicationContent) -> None:
        super().validate_content(content)
        if len(content.media_files) != 1:
            raise AdapterPermanentError("youtube upload requires exactly one video")
        if content.title and len(content.title.strip()) > MAX_TITLE_LENGTH:
            raise CaptionTooLongError(f"youtube title is {len(content.title.strip())} characters; limit is {MAX_TITLE_LENGTH}")

    def _video_resource(self, content: PublicationContent) -> dict:
        options = content.settings or {}
        return {
            "snippet": {
                "title": resolve_title(content),
                "description": content.caption,
                "tags": list(options.get("tags") or []),
                "categoryId": str(options.get("category_id") or options.get("categoryId") or "22"),
            },
            "status": {
                "privacyStatus": options.get("privacy_status") or options.get("privacyStatus") or "public",
                "selfDeclaredMadeForKids": bool(options.get("made_for_kids", False)),
            },
        }

    async def publish_content(self, credential: PlatformCredential, content: PublicationContent) -> dict:
        media = content.media_files[0]
        auth_header = {"Authorization": f"Bearer {credential.access_token}"}
        async with self.http_client(timeout=settings.adapter_upload_timeout_seconds) as client:
            data = await load_media_bytes(client, media)
            total_size = len(data)
            if total_size == 0:
                raise AdapterPermanentError("youtube video file is empty")
            content_type = media.type if media.type and media.type.startswith("video/") else "video/*"

            session_response = await client.post(
                f"{settings.youtube_upload_base_url}/videos",
                params={"uploadType": "resumable", "part": "snippet,status"},
                headers={
                    **auth_header,
                    "X-Upload-Content-Length": str(total_size),
                    "X-Upload-Content-Type": content_type,
                },
                json=self._video_resource(content),
            )
            self.raise_for_response(session_response, action="upload session")
            session_url = session_response.headers.get("location")
            if not session_url:
                raise AdapterPermanentError("youtube upload session response missing Location header")

            video = await self._upload_chunks(client, session_url, data, content_type=content_type, auth_header=auth_header)
            video_id = str(video.get("id") or "")
            if not video_id:
                raise AdapterPermanentError("youtube upload response missing video id")

            processing_status = await self._poll_processing(client, video_id, auth_header=auth_header)

        logger.info("youtube_video_uploaded video_id=%s bytes=%s processing=%s", video_id, total_size, processing_status)
        result = {
            "external_post_id": video_id,
            "video_id": video_id,
            "url": f"https://www.youtube.com/watch?v={video_id}",
            "processing_status": processing_status,
        }
        if processing_status is None:
            result["status_unresolved"] = True
        return result

    async def _upload_chunks(
        self,
        client: httpx.AsyncClient,
        session_url: str,
        data: bytes,
        *,
        content_type: str,
        auth_header: dict,
    ) -> dict:
        total_size = len(data)
        chunk_size = max(1, settings.youtube_chunk_size_bytes)
        offset = 0
        failures = 0
        stalled = 0
        while offset < total_size:
            end = min(offset + chunk_size, total_size) - 1
            headers = {
                **auth_header,
                "Content-Type": content_type,
                "Content-Range": f"bytes {offset}-{end}/{total_size}",
            }
            try:
                response = await client.put(session_url, content=data[offset : end + 1], headers=headers)
                if response.status_code != RESUME_INCOMPLETE:
                    self.raise_for_response(response, action="chunk upload")
                    return response.json()
            except (AdapterRetryableError, httpx.TransportError) as exc:
                failures += 1
                logger.warning("youtube_chunk_upload_retry offset=%s attempt=%s reason=%s", offset, failures, exc)
                if failures >= self.poll_max_attempts:
                    raise AdapterRetryableError(
                        f"youtube upload failed after {self.poll_max_attempts} attempts: {exc}"
                    ) from exc
                await self.wait_between_polls()
                continue

            next_offset = self._next_offset(response, fallback=end + 1)
            if next_offset <= offset:
                # 308 without progress still consumes an attempt.
                stalled += 1
                logger.warning("youtube_chunk_upload_stalled offset=%s attempt=%s", offset, stalled)
                if stalled >= self.poll_max_attempts:
                    raise AdapterRetryableError(f"youtube upload made no progress after {stalled} attempts")
                await self.wait_between_polls()
            offset = next_offset
        raise AdapterPermanentError("youtube upload ended without a video resource")

    @staticmethod
    def _next_offset(response: httpx.Response, *, fallback: int) -> int:
        received = response.headers.get("range")
        if not received or "-" not in received:
            return fallback
        return int(received.rsplit("-", 1)[-1]) + 1

    async def _poll_processing(self, client: httpx.AsyncClient, video_id: str, *, auth_header: dict) -> str | None:
        """Unresolved after the last attempt counts as uploaded; YouTube finishes processing asynchronously."""
        for attempt in range(1, self.poll_max_attempts + 1):
            response = await client.get(
                f"{settings.youtube_api_base_url}/videos",
                params={"part": "status,processingDetails", "id": video_id},
                headers=auth_header,
            )
            self.raise_for_response(response, action="processing status")
            items = response.json().get("items") or []
            if items:
                upload_status = str((items[0].get("status") or {}).get("uploadStatus") or "")
                processing = str((items[0].get("processingDetails") or {}).get("processingStatus") or "")
                if upload_status in {"rejected", "failed"} or processing in {"failed", "terminated"}:
                    reason = (items[0].get("status") or {}).get("rejectionReason") or upload_status or processing
                    raise AdapterPermanentError(f"youtube rejected video {video_id}: {reason}")
                if processing == "succeeded" or upload_status == "processed":
                    return processing or upload_status
            if attempt < self.poll_max_attempts:
                await self.wait_between_polls()

        logger.warning("youtube_processing_unresolved video_id=%s attempts=%s", video_id, self.poll_max_attempts)
        return None

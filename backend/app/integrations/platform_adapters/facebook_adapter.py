import json
import logging

import httpx

from app.core.config import settings
from app.integrations.credential_provider import PlatformCredential
from app.integrations.media_upload_service import force_https
from app.integrations.platform_adapters.base_adapter import (
    AdapterAuthError,
    AdapterError,
    AdapterPermanentError,
    BasePlatformAdapter,
    PublicationContent,
)
from app.integrations.platform_adapters.meta_graph import raise_for_meta_response, require_id

logger = logging.getLogger(__name__)


class FacebookAdapter(BasePlatformAdapter):
    platform = "facebook"

    @classmethod
    def get_capabilities(cls) -> dict:
        return {
            "text": True,
            "image": True,
            "video": True,
            "carousel": True,
            "max_length": 63206,
        }

    def validate_content(self, content: PublicationContent) -> None:
        super().validate_content(content)
        if any(not media.url for media in content.media_files):
            raise AdapterPermanentError("facebook publishing requires public media URLs")
        if len(content.media_files) > 1 and any(media.is_video for media in content.media_files):
            raise AdapterPermanentError("facebook multi-media posts only support photos")
        if content.variant == "story" and any(media.is_video for media in content.media_files):
            raise AdapterPermanentError("facebook video stories are not supported by this integration")

    async def publish_content(self, credential: PlatformCredential, content: PublicationContent) -> dict:
        page_id = credential.account_id
        if not page_id:
            raise AdapterAuthError("facebook page id missing from connection")
        page_token = str(credential.extra.get("page_access_token") or credential.access_token)
        base_url = f"{settings.meta_graph_api_base_url}/{page_id}"

        async with self.http_client(timeout=settings.adapter_upload_timeout_seconds) as client:
            media_files = content.media_files
            if not media_files:
                publication_type = "text"
                data = {"message": content.caption, "access_token": page_token}
                if content.link:
                    data["link"] = content.link
                response = await client.post(f"{base_url}/feed", data=data)
                payload = raise_for_meta_response(self, response, action="feed post")
            elif content.variant == "story":
                publication_type = "photo_story"
                photo_id = await self._upload_unpublished_photo(client, base_url, page_token, media_files[0].url)
                response = await client.post(
                    f"{base_url}/photo_stories",
                    data={"photo_id": photo_id, "access_token": page_token},
                )
                payload = raise_for_meta_response(self, response, action="photo story")
            elif media_files[0].is_video:
                publication_type = "video"
                response = await client.post(
                    f"{base_url}/videos",
                    data={
                        "file_url": force_https(media_files[0].url),
                        "description": content.caption,
                        "access_token": page_token,
                    },
                )
                payload = raise_for_meta_response(self, response, action="video upload")
            elif len(media_files) == 1:
                publication_type = "photo"
                response = await client.post(
                    f"{base_url}/photos",
                    data={
                        "url": force_https(media_files[0].url),
                        "caption": content.caption,
                        "access_token": page_token,
                    },
                )
                payload = raise_for_meta_response(self, response, action="photo upload")
            else:
                publication_type = "multi_photo"
                payload = await self._publish_multi_photo(client, base_url, page_token, content)

        external_post_id = str(payload.get("post_id") or payload.get("id") or "")
        if not external_post_id:
            raise AdapterPermanentError(f"facebook {publication_type} response missing id")
        logger.info("facebook_post_published page_id=%s post_id=%s type=%s", page_id, external_post_id, publication_type)
        return {
            "external_post_id": external_post_id,
            "publication_type": publication_type,
            "page_id": page_id,
        }

    async def _upload_unpublished_photo(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        page_token: str,
        url: str,
    ) -> str:
        response = await client.post(
            f"{base_url}/photos",
            data={"url": force_https(url), "published": "false", "access_token": page_token},
        )
        payload = raise_for_meta_response(self, response, action="unpublished photo upload")
        return require_id(self, payload, action="unpublished photo upload")

    async def _publish_multi_photo(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        page_token: str,
        content: PublicationContent,
    ) -> dict:
        photo_ids: list[str] = []
        for index, media in enumerate(content.media_files):
            try:
                photo_ids.append(await self._upload_unpublished_photo(client, base_url, page_token, media.url))
            except AdapterError as exc:
                logger.warning("facebook_multi_photo_child_failed index=%s reason=%s", index, exc)
                raise type(exc)(f"facebook photo {index + 1} failed: {exc}") from exc

        response = await client.post(
            f"{base_url}/feed",
            data={
                "message": content.caption,
                "attached_media": json.dumps([{"media_fbid": photo_id} for photo_id in photo_ids]),
                "access_token": page_token,
            },
        )
        return raise_for_meta_response(self, response, action="multi-photo feed post")

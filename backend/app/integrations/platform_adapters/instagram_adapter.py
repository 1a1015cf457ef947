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
    PublicationMedia,
)
from app.integrations.platform_adapters.meta_graph import raise_for_meta_response, require_id, wait_for_container

logger = logging.getLogger(__name__)

MAX_CAROUSEL_ITEMS = 10


class InstagramAdapter(BasePlatformAdapter):
    platform = "instagram"

    @classmethod
    def get_capabilities(cls) -> dict:
        return {
            "text": False,
            "image": True,
            "video": True,
            "carousel": True,
            "max_length": 2200,
            "max_carousel_items": MAX_CAROUSEL_ITEMS,
        }

    def validate_content(self, content: PublicationContent) -> None:
        super().validate_content(content)
        if len(content.media_files) > MAX_CAROUSEL_ITEMS:
            raise AdapterPermanentError(
                f"instagram carousel accepts at most {MAX_CAROUSEL_ITEMS} items, got {len(content.media_files)}"
            )
        if any(not media.url for media in content.media_files):
            raise AdapterPermanentError("instagram publishing requires public media URLs")

    async def publish_content(self, credential: PlatformCredential, content: PublicationContent) -> dict:
        if not credential.account_id:
            raise AdapterAuthError("instagram business account id missing from connection")

        is_carousel = len(content.media_files) > 1 and content.variant not in {"story", "reels"}
        async with self.http_client() as client:
            if is_carousel:
                container_id, container_status = await self._create_carousel(client, credential, content)
                media_type = "CAROUSEL"
            else:
                media = content.media_files[0]
                media_type = self._media_type(media, content.variant)
                container_id = await self._create_container(
                    client,
                    credential,
                    media,
                    media_type=media_type,
                    caption=None if media_type == "STORIES" else content.caption,
                )
                container_status = None
                if media.is_video:
                    container_status = await wait_for_container(
                        self,
                        client,
                        base_url=settings.meta_graph_api_base_url,
                        container_id=container_id,
                        access_token=credential.access_token,
                    )

            publish_response = await client.post(
                f"{settings.meta_graph_api_base_url}/{credential.account_id}/media_publish",
                data={"creation_id": container_id, "access_token": credential.access_token},
            )
            payload = raise_for_meta_response(self, publish_response, action="media_publish")

        external_post_id = require_id(self, payload, action="media_publish")
        logger.info(
            "instagram_media_published container_id=%s media_id=%s media_type=%s",
            container_id,
            external_post_id,
            media_type,
        )
        return {
            "external_post_id": external_post_id,
            "container_id": container_id,
            "media_type": media_type,
            "container_status": container_status,
            "instagram_account_id": credential.account_id,
        }

    @staticmethod
    def _media_type(media: PublicationMedia, variant: str | None) -> str:
        if variant == "story":
            return "STORIES"
        if media.is_video or variant == "reels":
            return "REELS"
        return "IMAGE"

    async def _create_container(
        self,
        client: httpx.AsyncClient,
        credential: PlatformCredential,
        media: PublicationMedia,
        *,
        media_type: str,
        caption: str | None = None,
        is_carousel_item: bool = False,
    ) -> str:
        data = {"access_token": credential.access_token}
        url_field = "video_url" if media.is_video else "image_url"
        data[url_field] = force_https(media.url)
        if media_type != "IMAGE":
            data["media_type"] = media_type
        if caption:
            data["caption"] = caption
        if is_carousel_item:
            data["is_carousel_item"] = "true"

        response = await client.post(f"{settings.meta_graph_api_base_url}/{credential.account_id}/media", data=data)
        payload = raise_for_meta_response(self, response, action="container creation")
        return require_id(self, payload, action="container creation")

    async def _create_carousel(
        self,
        client: httpx.AsyncClient,
        credential: PlatformCredential,
        content: PublicationContent,
    ) -> tuple[str, str]:
        child_ids: list[str] = []
        for index, media in enumerate(content.media_files):
            try:
                child_id = await self._create_container(
                    client,
                    credential,
                    media,
                    media_type="VIDEO" if media.is_video else "IMAGE",
                    is_carousel_item=True,
                )
                if media.is_video:
                    await wait_for_container(
                        self,
                        client,
                        base_url=settings.meta_graph_api_base_url,
                        container_id=child_id,
                        access_token=credential.access_token,
                    )
            except AdapterError as exc:
                logger.warning(
                    "instagram_carousel_child_failed index=%s created=%s reason=%s",
                    index,
                    len(child_ids),
                    exc,
                )
                raise type(exc)(f"instagram carousel item {index + 1} failed: {exc}") from exc
            child_ids.append(child_id)

        parent_response = await client.post(
            f"{settings.meta_graph_api_base_url}/{credential.account_id}/media",
            data={
                "media_type": "CAROUSEL",
                "children": ",".join(child_ids),
                "caption": content.caption,
                "access_token": credential.access_token,
            },
        )
        payload = raise_for_meta_response(self, parent_response, action="carousel container creation")
        return require_id(self, payload, action="carousel container creation"), "CHILDREN_READY"

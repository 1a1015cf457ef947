import asyncio
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

MAX_CAROUSEL_ITEMS = 20
# Threads rejects threads_publish issued immediately after container creation.
PUBLISH_SETTLE_SECONDS = 2.0


class ThreadsAdapter(BasePlatformAdapter):
    platform = "threads"

    @classmethod
    def get_capabilities(cls) -> dict:
        return {
            "text": True,
            "image": True,
            "video": True,
            "carousel": True,
            "max_length": 500,
            "max_carousel_items": MAX_CAROUSEL_ITEMS,
        }

    def validate_content(self, content: PublicationContent) -> None:
        super().validate_content(content)
        if len(content.media_files) > MAX_CAROUSEL_ITEMS:
            raise AdapterPermanentError(f"threads carousel accepts at most {MAX_CAROUSEL_ITEMS} items")
        if any(not media.url for media in content.media_files):
            raise AdapterPermanentError("threads publishing requires public media URLs")
        if not content.media_files and not content.caption.strip():
            raise AdapterPermanentError("threads text post requires a caption")

    async def publish_content(self, credential: PlatformCredential, content: PublicationContent) -> dict:
        if not credential.account_id:
            raise AdapterAuthError("threads user id missing from connection")

        base_url = settings.threads_api_base_url
        async with self.http_client() as client:
            if len(content.media_files) > 1:
                media_type = "CAROUSEL"
                container_id = await self._create_carousel(client, credential, content)
            elif content.media_files:
                media = content.media_files[0]
                media_type = "VIDEO" if media.is_video else "IMAGE"
                container_id = await self._create_container(client, credential, media_type, media=media, text=content.caption)
                if media.is_video:
                    await wait_for_container(
                        self,
                        client,
                        base_url=base_url,
                        container_id=container_id,
                        access_token=credential.access_token,
                        status_field="status",
                    )
            else:
                media_type = "TEXT"
                container_id = await self._create_container(client, credential, media_type, text=content.caption)

            await asyncio.sleep(min(PUBLISH_SETTLE_SECONDS, self.poll_delay_seconds))
            publish_response = await client.post(
                f"{base_url}/{credential.account_id}/threads_publish",
                data={"creation_id": container_id, "access_token": credential.access_token},
            )
            payload = raise_for_meta_response(self, publish_response, action="threads_publish")

        external_post_id = require_id(self, payload, action="threads_publish")
        logger.info(
            "threads_post_published container_id=%s media_id=%s media_type=%s",
            container_id,
            external_post_id,
            media_type,
        )
        return {
            "external_post_id": external_post_id,
            "container_id": container_id,
            "media_type": media_type,
            "threads_user_id": credential.account_id,
        }

    async def _create_container(
        self,
        client: httpx.AsyncClient,
        credential: PlatformCredential,
        media_type: str,
        *,
        media: PublicationMedia | None = None,
        text: str | None = None,
        is_carousel_item: bool = False,
        children: list[str] | None = None,
    ) -> str:
        data = {"media_type": media_type, "access_token": credential.access_token}
        if media is not None:
            data["video_url" if media.is_video else "image_url"] = force_https(media.url)
        if text:
            data["text"] = text
        if is_carousel_item:
            data["is_carousel_item"] = "true"
        if children:
            data["children"] = ",".join(children)

        response = await client.post(f"{settings.threads_api_base_url}/{credential.account_id}/threads", data=data)
        payload = raise_for_meta_response(self, response, action=f"{media_type.lower()} container creation")
        return require_id(self, payload, action="container creation")

    async def _create_carousel(
        self,
        client: httpx.AsyncClient,
        credential: PlatformCredential,
        content: PublicationContent,
    ) -> str:
        child_ids: list[str] = []
        for index, media in enumerate(content.media_files):
            try:
                child_id = await self._create_container(
                    client,
                    credential,
                    "VIDEO" if media.is_video else "IMAGE",
                    media=media,
                    is_carousel_item=True,
                )
                if media.is_video:
                    await wait_for_container(
                        self,
                        client,
                        base_url=settings.threads_api_base_url,
                        container_id=child_id,
                        access_token=credential.access_token,
                        status_field="status",
                    )
            except AdapterError as exc:
                logger.warning("threads_carousel_child_failed index=%s reason=%s", index, exc)
                raise type(exc)(f"threads carousel item {index + 1} failed: {exc}") from exc
            child_ids.append(child_id)

        return await self._create_container(
            client,
            credential,
            "CAROUSEL",
            text=content.caption,
            children=child_ids,
        )

import logging

from app.core.config import settings
from app.integrations.credential_provider import PlatformCredential
from app.integrations.platform_adapters.base_adapter import (
    AdapterAuthError,
    AdapterPermanentError,
    BasePlatformAdapter,
    CaptionTooLongError,
    PublicationContent,
)

logger = logging.getLogger(__name__)


class DuplicateShareError(AdapterPermanentError):
    error_code = "duplicate_post"


class LinkedInAdapter(BasePlatformAdapter):
    platform = "linkedin"

    @classmethod
    def get_capabilities(cls) -> dict:
        return {
            "text": True,
            "image": False,
            "video": False,
            "carousel": False,
            "max_length": 3000,
        }

    def validate_content(self, content: PublicationContent) -> None:
        max_length = int(self.get_capabilities()["max_length"])
        if len(content.caption) > max_length:
            raise CaptionTooLongError(f"linkedin caption is {len(content.caption)} characters; limit is {max_length}")
        if not content.caption.strip():
            raise AdapterPermanentError("linkedin share requires text")

    def _share_content(self, content: PublicationContent) -> dict:
        # Media is shared as a link card; native asset upload is not part of this integration.
        link = content.link or next((media.url for media in content.media_files if media.url), None)
        share = {
            "shareCommentary": {"text": content.caption},
            "shareMediaCategory": "NONE",
        }
        if link:
            share["shareMediaCategory"] = "ARTICLE"
            share["media"] = [{"status": "READY", "originalUrl": link}]
        return share

    async def publish_content(self, credential: PlatformCredential, content: PublicationContent) -> dict:
        if not credential.account_id:
            raise AdapterAuthError("linkedin member id missing from connection")
        author = credential.account_id
        if not author.startswith("urn:li:"):
            author = f"urn:li:person:{author}"

        payload = {
            "author": author,
            "lifecycleState": "PUBLISHED",
            "specificContent": {"com.linkedin.ugc.ShareContent": self._share_content(content)},
            "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
        }
        headers = {
            "Authorization": f"Bearer {credential.access_token}",
            "Content-Type": "application/json",
            "X-Restli-Protocol-Version": "2.0.0",
        }
        async with self.http_client() as client:
            response = await client.post(f"{settings.linkedin_api_base_url}/ugcPosts", headers=headers, json=payload)
            if response.status_code == 422 and "duplicate" in response.text.lower():
                raise DuplicateShareError("linkedin rejected duplicate share")
            self.raise_for_response(response, action="ugcPosts")
            body = response.json() if response.content else {}

        external_post_id = str(response.headers.get("x-restli-id") or body.get("id") or "")
        if not external_post_id:
            raise AdapterPermanentError("linkedin publish response missing post id")
        logger.info("linkedin_post_published post_id=%s", external_post_id)
        return {"external_post_id": external_post_id, "author": author}

import logging

import httpx

from app.core.config import settings
from app.integrations.credential_provider import PlatformCredential
from app.integrations.platform_adapters.base_adapter import (
    AdapterAuthError,
    AdapterPermanentError,
    AdapterRetryableError,
    BasePlatformAdapter,
    CaptionTooLongError,
    PublicationContent,
)

logger = logging.getLogger(__name__)

AUTH_ERROR_CODES = {32, 64, 89, 326}
RETRYABLE_ERROR_CODES = {88, 130, 131, 185}
DUPLICATE_ERROR_CODE = 187


class DuplicatePostError(AdapterPermanentError):
    error_code = "duplicate_post"


def _error_codes(payload: dict) -> list[int]:
    codes: list[int] = []
    for error in payload.get("errors") or []:
        code = error.get("code") if isinstance(error, dict) else None
        if isinstance(code, int):
            codes.append(code)
    return codes


def _error_detail(payload: dict, response: httpx.Response) -> str:
    if payload.get("detail"):
        return str(payload["detail"])
    messages = [str(error.get("message")) for error in payload.get("errors") or [] if isinstance(error, dict)]
    return "; ".join(message for message in messages if message) or response.text[:300]


class XAdapter(BasePlatformAdapter):
    platform = "x"

    @classmethod
    def get_capabilities(cls) -> dict:
        return {
            "text": True,
            "image": False,
            "video": False,
            "carousel": False,
            "max_length": 280,
        }

    def validate_content(self, content: PublicationContent) -> None:
        max_length = int(self.get_capabilities()["max_length"])
        if len(content.caption) > max_length:
            raise CaptionTooLongError(f"x caption is {len(content.caption)} characters; limit is {max_length}")
        if not content.caption.strip():
            raise AdapterPermanentError("x post requires text")

    async def publish_content(self, credential: PlatformCredential, content: PublicationContent) -> dict:
        headers = {"Authorization": f"Bearer {credential.access_token}", "Content-Type": "application/json"}
        async with self.http_client() as client:
            response = await client.post(f"{settings.x_api_base_url}/tweets", headers=headers, json={"text": content.caption})
            payload = response.json() if response.headers.get("content-type", "").startswith("application/json") else {}
            if response.status_code >= 400 or payload.get("errors"):
                self._raise_for_x_error(response, payload)

        external_post_id = str((payload.get("data") or {}).get("id") or "")
        if not external_post_id:
            raise AdapterPermanentError("x publish response missing post id")

        result = {"external_post_id": external_post_id, "text": content.caption}
        if content.media_files:
            result["warning"] = "X media upload is not enabled; published as text-only."
        logger.info("x_post_published post_id=%s", external_post_id)
        return result

    def _raise_for_x_error(self, response: httpx.Response, payload: dict) -> None:
        codes = _error_codes(payload)
        detail = _error_detail(payload, response)
        if DUPLICATE_ERROR_CODE in codes or "duplicate" in detail.lower():
            raise DuplicatePostError(f"x rejected duplicate post: {detail}")
        if response.status_code == 401 or any(code in AUTH_ERROR_CODES for code in codes):
            raise AdapterAuthError(f"x publish unauthorized: {detail}")
        if response.status_code == 403:
            raise AdapterAuthError(f"x publish forbidden (check tweet.write scope): {detail}")
        if response.status_code == 429 or any(code in RETRYABLE_ERROR_CODES for code in codes):
            reset_at = response.headers.get("x-rate-limit-reset")
            raise AdapterRetryableError(f"x rate limit exceeded (reset={reset_at}): {detail}")
        self.raise_for_response(response, action="publish", detail=detail)
        raise AdapterPermanentError(f"x publish rejected: {detail}")

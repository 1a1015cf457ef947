import asyncio
import logging
from abc import ABC, abstractmethod
from typing import ClassVar

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from app.application.services.platform_limits import media_kind, parse_option_id
from app.core.config import settings
from app.integrations.credential_provider import PlatformCredential
from app.integrations.media_upload_service import MediaError

logger = logging.getLogger(__name__)


class AdapterResolutionError(RuntimeError):
    retryable = False
    error_code = "adapter_resolution_error"


class AdapterError(RuntimeError):
    retryable: bool = True
    error_code: str = "adapter_error"


class AdapterRetryableError(AdapterError):
    retryable = True
    error_code = "adapter_retryable_error"


class AdapterPermanentError(AdapterError):
    retryable = False
    error_code = "adapter_permanent_error"


class AdapterAuthError(AdapterPermanentError):
    error_code = "adapter_auth_error"


class AdapterTimeoutError(AdapterRetryableError):
    error_code = "adapter_timeout"


class CaptionTooLongError(AdapterPermanentError):
    error_code = "caption_too_long"


class PublicationMedia(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str | None = None
    path: str | None = None
    chunk_dir: str | None = Field(default=None, validation_alias=AliasChoices("chunk_dir", "chunkDir"))
    total_chunks: int | None = Field(default=None, validation_alias=AliasChoices("total_chunks", "totalChunks"))
    type: str | None = None
    size: int | None = None
    name: str | None = None

    @property
    def is_video(self) -> bool:
        return media_kind(self.type) == "video"


class PublicationContent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    caption: str = ""
    title: str | None = None
    link: str | None = None
    media_files: list[PublicationMedia] = Field(
        default_factory=list, validation_alias=AliasChoices("media_files", "mediaFiles")
    )
    settings: dict = Field(default_factory=dict)
    option_id: str | None = Field(default=None, validation_alias=AliasChoices("option_id", "optionId"))

    @property
    def variant(self) -> str | None:
        if not self.option_id:
            return None
        return parse_option_id(self.option_id)[1]


class BasePlatformAdapter(ABC):
    platform: ClassVar[str] = ""

    def __init__(
        self,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        poll_max_attempts: int | None = None,
        poll_delay_seconds: float | None = None,
        http_timeout_seconds: float | None = None,
    ) -> None:
        self.transport = transport
        self.poll_max_attempts = poll_max_attempts or settings.adapter_poll_max_attempts
        self.poll_delay_seconds = (
            settings.adapter_poll_delay_seconds if poll_delay_seconds is None else poll_delay_seconds
        )
        self.http_timeout_seconds = http_timeout_seconds or settings.adapter_http_timeout_seconds

    @classmethod
    def get_capabilities(cls) -> dict:
        return {
            "text": True,
            "image": False,
            "video": False,
            "carousel": False,
            "max_length": 3000,
        }

    def http_client(self, *, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout or self.http_timeout_seconds, transport=self.transport)

    async def wait_between_polls(self) -> None:
        if self.poll_delay_seconds > 0:
            await asyncio.sleep(self.poll_delay_seconds)

    def parse_content(self, content: dict) -> PublicationContent:
        try:
            return PublicationContent.model_validate(content or {})
        except ValidationError as exc:
            raise AdapterPermanentError(f"{self.platform} job content is malformed: {exc.error_count()} errors") from exc

    def validate_content(self, content: PublicationContent) -> None:
        """Checks that need no network; failures here are never retried."""
        capabilities = self.get_capabilities()
        max_length = int(capabilities.get("max_length") or 0)
        if max_length and len(content.caption) > max_length:
            raise CaptionTooLongError(
                f"{self.platform} caption is {len(content.caption)} characters; limit is {max_length}"
            )
        if content.media_files:
            has_video = any(media.is_video for media in content.media_files)
            if has_video and not capabilities.get("video"):
                raise AdapterPermanentError(f"{self.platform} does not accept video in this integration")
            if not has_video and not capabilities.get("image"):
                raise AdapterPermanentError(f"{self.platform} does not accept images in this integration")
        elif not capabilities.get("text"):
            raise AdapterPermanentError(f"{self.platform} publish requires at least one media file")

    def raise_for_response(self, response: httpx.Response, *, action: str, detail: str | None = None) -> None:
        if response.status_code < 400:
            return
        reason = detail or response.text[:500]
        if response.status_code in {401, 403}:
            raise AdapterAuthError(f"{self.platform} {action} unauthorized: {reason}")
        if response.status_code == 429 or response.status_code >= 500:
            raise AdapterRetryableError(f"{self.platform} {action} temporary failure: {response.status_code} {reason}")
        raise AdapterPermanentError(f"{self.platform} {action} failed: {response.status_code} {reason}")

    @abstractmethod
    async def publish_content(self, credential: PlatformCredential, content: PublicationContent) -> dict:
        raise NotImplementedError

    async def publish(self, credential: PlatformCredential, content: dict) -> dict:
        """
        Entry point used by the dispatcher.
        1) Parse and validate the job content before any network call
        2) Run the platform protocol
        3) Convert every failure into the AdapterError taxonomy
        """
        parsed = self.parse_content(content)
        self.validate_content(parsed)
        try:
            result = await self.publish_content(credential, parsed)
        except AdapterError:
            raise
        except MediaError as exc:
            error_cls = AdapterRetryableError if exc.retryable else AdapterPermanentError
            raise error_cls(f"{self.platform} media unavailable: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise AdapterTimeoutError(f"{self.platform} request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise AdapterRetryableError(f"{self.platform} network failure: {exc}") from exc
        except ValueError as exc:
            raise AdapterRetryableError(f"{self.platform} returned an unreadable response: {exc}") from exc

        result.setdefault("platform", self.platform)
        return result

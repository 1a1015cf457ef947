import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.orm import Session

from app.application.services.job_store import PublicationValidationError, create_job
from app.application.services.platform_limits import parse_option_id
from app.application.services.publication_queue import enqueue
from app.core.config import settings
from app.domain.models.publication_job import PublicationJob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptionEnqueueOutcome:
    option_id: str
    platform: str
    job_id: UUID | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.job_id is not None


def submit_publication_job(
    db: Session,
    *,
    user_id: UUID,
    platform: str,
    content: dict,
    metadata: dict | None = None,
    max_retries: int | None = None,
) -> PublicationJob:
    """Create a pending job and its first queue notice in the caller's transaction."""
    job = create_job(
        db,
        user_id=user_id,
        platform=platform,
        content=content,
        metadata=metadata,
        max_retries=max_retries or settings.default_max_retries,
    )
    enqueue(db, job.id)
    logger.info("publication_job_enqueued job_id=%s user_id=%s platform=%s", job.id, user_id, job.platform)
    return job


def resolve_caption(option_id: str, captions: dict) -> tuple[str, bool]:
    platform, _ = parse_option_id(option_id)
    specific = captions.get("specific") or {}
    for key in (option_id, platform):
        value = specific.get(key)
        if isinstance(value, str) and value.strip():
            return value, True
    return str(captions.get("universal") or ""), False


def build_job_content(option_id: str, *, media_files: list[dict], caption: str, publish_settings: dict) -> dict:
    return {
        "mediaFiles": media_files,
        "caption": caption,
        "settings": publish_settings,
        "optionId": option_id,
    }


def enqueue_publication_batch(
    db: Session,
    *,
    user_id: UUID,
    selected_options: list[str],
    media_files: list[dict],
    captions: dict,
    publish_settings: dict | None = None,
) -> list[OptionEnqueueOutcome]:
    """One job per selected option; an invalid option is reported without blocking the others."""
    enqueued_at = datetime.now(UTC).isoformat()
    outcomes: list[OptionEnqueueOutcome] = []
    for option_id in selected_options:
        platform, _ = parse_option_id(option_id)
        caption, has_custom_caption = resolve_caption(option_id, captions)
        try:
            job = submit_publication_job(
                db,
                user_id=user_id,
                platform=platform,
                content=build_job_content(
                    option_id,
                    media_files=media_files,
                    caption=caption,
                    publish_settings=publish_settings or {},
                ),
                metadata={
                    "enqueuedAt": enqueued_at,
                    "optionId": option_id,
                    "totalPlatforms": len(selected_options),
                    "hasCustomCaption": has_custom_caption,
                },
            )
        except PublicationValidationError as exc:
            logger.warning("publication_option_rejected user_id=%s option_id=%s reason=%s", user_id, option_id, exc)
            outcomes.append(OptionEnqueueOutcome(option_id=option_id, platform=platform, error=str(exc)))
            continue
        outcomes.append(OptionEnqueueOutcome(option_id=option_id, platform=platform, job_id=job.id))
    return outcomes

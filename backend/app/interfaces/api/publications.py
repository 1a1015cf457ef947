import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.application.services.job_notifier import JobStatusNotifier
from app.application.services.job_store import (
    PublicationValidationError,
    get_job,
    get_job_for_user,
    get_queue_metrics,
    list_jobs_for_user,
    serialize_job,
)
from app.application.services.publishing_service import enqueue_publication_batch, submit_publication_job
from app.domain.models.publication_job import PublicationJobStatus
from app.infrastructure.db.session import get_db
from app.interfaces.api.deps import get_current_user_id, get_job_notifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/publications", tags=["publications"])


class PublicationJobCreateRequest(BaseModel):
    platform: str = Field(min_length=1, max_length=32)
    content: dict
    metadata: dict = Field(default_factory=dict)
    max_retries: int | None = Field(default=None, ge=1, le=10)


class MediaFilePayload(BaseModel):
    name: str | None = None
    size: int | None = Field(default=None, ge=0)
    type: str | None = None
    url: str | None = None
    path: str | None = None
    chunk_dir: str | None = None
    total_chunks: int | None = Field(default=None, ge=1)


class CaptionsPayload(BaseModel):
    universal: str = ""
    specific: dict[str, str] = Field(default_factory=dict)


class PublicationBatchRequest(BaseModel):
    selected_options: list[str] = Field(min_length=1)
    media_files: list[MediaFilePayload] = Field(default_factory=list)
    captions: CaptionsPayload = Field(default_factory=CaptionsPayload)
    settings: dict = Field(default_factory=dict)


@router.post("/jobs", status_code=status.HTTP_201_CREATED)
def create_publication_job(
    payload: PublicationJobCreateRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    notifier: JobStatusNotifier = Depends(get_job_notifier),
) -> dict:
    try:
        job = submit_publication_job(
            db,
            user_id=user_id,
            platform=payload.platform,
            content=payload.content,
            metadata=payload.metadata,
            max_retries=payload.max_retries,
        )
    except PublicationValidationError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error_code": exc.error_code, "message": str(exc)},
        ) from exc
    db.commit()
    notifier.job_changed(serialize_job(job))
    return {"job_id": str(job.id), "status": job.status}


@router.post("/enqueue")
def enqueue_publications(
    payload: PublicationBatchRequest,
    response: Response,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    notifier: JobStatusNotifier = Depends(get_job_notifier),
) -> dict:
    outcomes = enqueue_publication_batch(
        db,
        user_id=user_id,
        selected_options=payload.selected_options,
        media_files=[media.model_dump(exclude_none=True) for media in payload.media_files],
        captions=payload.captions.model_dump(),
        publish_settings=payload.settings,
    )
    db.commit()
    for outcome in outcomes:
        if outcome.job_id is not None:
            notifier.job_changed(serialize_job(get_job(db, outcome.job_id)))

    succeeded = [outcome for outcome in outcomes if outcome.ok]
    if len(succeeded) == len(outcomes):
        response.status_code = status.HTTP_200_OK
    elif succeeded:
        response.status_code = status.HTTP_207_MULTI_STATUS
    else:
        response.status_code = status.HTTP_400_BAD_REQUEST
    logger.info(
        "publication_batch_enqueued user_id=%s options=%s succeeded=%s",
        user_id,
        len(outcomes),
        len(succeeded),
    )
    return {
        "success": bool(succeeded),
        "total": len(outcomes),
        "enqueued": len(succeeded),
        "results": [
            {
                "option_id": outcome.option_id,
                "platform": outcome.platform,
                "job_id": str(outcome.job_id) if outcome.job_id else None,
                "error": outcome.error,
            }
            for outcome in outcomes
        ],
    }


@router.get("/jobs/{job_id}")
def get_publication_job(
    job_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> dict:
    job = get_job_for_user(db, job_id, user_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Publication job not found")
    return serialize_job(job)


@router.get("/jobs")
def list_publication_jobs(
    status_filter: PublicationJobStatus | None = Query(default=None, alias="status"),
    platform: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> list[dict]:
    rows = list_jobs_for_user(
        db,
        user_id,
        status=status_filter.value if status_filter else None,
        platform=platform.strip().lower() if platform else None,
        limit=limit,
    )
    return [serialize_job(row) for row in rows]


@router.get("/metrics")
def get_publication_metrics(
    _: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> dict:
    return get_queue_metrics(db).as_dict()

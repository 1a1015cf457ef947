from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from app.application.services.job_notifier import JobStatusNotifier, RedisJobStatusNotifier
from app.core.security import InvalidAccessTokenError, decode_access_token
from app.infrastructure.logging.context import set_user_id

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_current_user_id(token: str = Depends(oauth2_scheme)) -> UUID:
    """Resolve the caller from the bearer token; every job query is scoped to this id."""
    try:
        user_id = decode_access_token(token)
    except InvalidAccessTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    set_user_id(str(user_id))
    return user_id


def get_job_notifier() -> JobStatusNotifier:
    return RedisJobStatusNotifier()

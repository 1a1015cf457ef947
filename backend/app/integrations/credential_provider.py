import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from app.core.security import CredentialCipherError, decrypt_secret, encrypt_secret
from app.domain.models.social_connection import SocialConnection

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_GRACE_SECONDS = 60


class CredentialError(RuntimeError):
    """No usable token for the user on the requested platform. Never retried."""

    retryable = False
    error_code = "credential_error"


@dataclass(frozen=True)
class PlatformCredential:
    access_token: str
    account_id: str | None = None
    extra: dict = field(default_factory=dict)


class CredentialProvider(Protocol):
    def get_valid_token(self, user_id: UUID, platform: str) -> PlatformCredential: ...


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def is_token_expired(connection: SocialConnection, *, within_seconds: int = TOKEN_EXPIRY_GRACE_SECONDS) -> bool:
    if connection.expires_at is None:
        return False
    return _as_utc(connection.expires_at) <= datetime.now(UTC) + timedelta(seconds=within_seconds)


def load_social_connection(db: Session, *, user_id: UUID, platform: str) -> SocialConnection | None:
    return db.execute(
        select(SocialConnection).where(
            SocialConnection.user_id == user_id,
            SocialConnection.platform == platform,
        )
    ).scalar_one_or_none()


def store_social_connection(
    db: Session,
    *,
    user_id: UUID,
    platform: str,
    access_token: str,
    platform_user_id: str | None = None,
    refresh_token: str | None = None,
    expires_in_seconds: int | None = None,
    profile_data: dict | None = None,
) -> SocialConnection:
    connection = load_social_connection(db, user_id=user_id, platform=platform)
    if connection is None:
        connection = SocialConnection(user_id=user_id, platform=platform)
    connection.access_token = encrypt_secret(access_token)
    connection.refresh_token = encrypt_secret(refresh_token) if refresh_token else None
    connection.platform_user_id = platform_user_id
    connection.expires_at = (
        datetime.now(UTC) + timedelta(seconds=expires_in_seconds) if expires_in_seconds else None
    )
    connection.is_active = True
    connection.profile_data = profile_data or {}
    db.add(connection)
    db.flush()
    return connection


class StoredCredentialProvider:
    """Reads tokens stored by the OAuth flows. Refreshing them is the OAuth service's job."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def get_valid_token(self, user_id: UUID, platform: str) -> PlatformCredential:
        with self.session_factory() as db:
            connection = load_social_connection(db, user_id=user_id, platform=platform)
            if connection is None:
                raise CredentialError(f"{platform} account not connected")
            if not connection.is_active:
                raise CredentialError(f"{platform} connection is inactive")
            if is_token_expired(connection):
                logger.warning(
                    "credential_token_expired user_id=%s platform=%s expires_at=%s",
                    user_id,
                    platform,
                    connection.expires_at,
                )
                raise CredentialError(f"{platform} access token expired; reconnect the account")
            try:
                access_token = decrypt_secret(connection.access_token or "")
            except CredentialCipherError as exc:
                raise CredentialError(f"{platform} access token could not be decrypted") from exc
            if not access_token:
                raise CredentialError(f"{platform} access token unavailable")

            return PlatformCredential(
                access_token=access_token,
                account_id=connection.platform_user_id,
                extra=dict(connection.profile_data or {}),
            )

import base64
import hashlib
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import jwt
from cryptography.fernet import Fernet, InvalidToken

from app.core.config import settings

ACCESS_TOKEN_TYPE = "access"


class InvalidAccessTokenError(Exception):
    pass


class CredentialCipherError(ValueError):
    """Stored platform token cannot be decrypted with the current key."""


def _credential_cipher() -> Fernet:
    # Falls back to the JWT secret so local setups need a single secret.
    secret_source = settings.token_encryption_key or settings.jwt_secret_key
    digest = hashlib.sha256(secret_source.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def create_access_token(user_id: UUID, *, expires_minutes: int | None = None) -> str:
    lifetime = timedelta(minutes=expires_minutes or settings.jwt_access_token_expire_minutes)
    claims = {
        "sub": str(user_id),
        "exp": datetime.now(UTC) + lifetime,
        "type": ACCESS_TOKEN_TYPE,
        "jti": str(uuid4()),
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> UUID:
    """Return the user id carried by a valid, unexpired access token."""
    try:
        claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as exc:
        raise InvalidAccessTokenError("Invalid token") from exc

    if claims.get("type") != ACCESS_TOKEN_TYPE:
        raise InvalidAccessTokenError("Invalid token type")
    try:
        return UUID(str(claims["sub"]))
    except (KeyError, ValueError) as exc:
        raise InvalidAccessTokenError("Invalid token payload") from exc


def encrypt_secret(secret: str) -> str:
    if not secret:
        return ""
    return _credential_cipher().encrypt(secret.encode("utf-8")).decode("utf-8")


def decrypt_secret(encrypted_secret: str) -> str:
    if not encrypted_secret:
        return ""
    try:
        return _credential_cipher().decrypt(encrypted_secret.encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        raise CredentialCipherError("Invalid encrypted secret") from exc

"""Password hashing and JWT creation/verification for authentication."""

import re
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import bcrypt
import jwt
from pydantic import ValidationError

from cinecriticas.schemas.auth import Claims

if TYPE_CHECKING:
    from cinecriticas.core.config import Settings

# Bcrypt cost (rounds) used for every stored password.
BCRYPT_ROUNDS = 10

# bcrypt only looks at the first 72 bytes of the password.
BCRYPT_MAX_BYTES = 72

# $2a$, $2b$ and $2y$ are all bcrypt; 2-digit cost, 22-char salt + 31-char digest.
_BCRYPT_HASH_RE = re.compile(r"^\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53}$")

CLAIM_FIELDS = ("id", "username", "email", "role")


class TokenError(Exception):
    """Raised when a bearer token cannot be trusted."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidTokenError(TokenError):
    """Bad signature, malformed token or missing claims."""


class ExpiredTokenError(TokenError):
    """Signature is fine but exp has passed."""


def is_password_hash(value: str | None) -> bool:
    """True if value already looks like a bcrypt hash produced by hash_password."""
    if not value:
        return False
    return bool(_BCRYPT_HASH_RE.match(value))


def _password_bytes(plain_password: str) -> bytes:
    return plain_password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(plain_password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """
    Hash a plain-text password for storage. Do not store plain passwords.

    Values that are already bcrypt hashes are returned unchanged, so callers that
    pass a stored hash back through (profile updates, store hooks) never
    double-hash it.
    """
    if not plain_password:
        raise ValueError("Password must be non-empty")
    if is_password_hash(plain_password):
        return plain_password
    return bcrypt.hashpw(
        _password_bytes(plain_password), bcrypt.gensalt(rounds=rounds)
    ).decode("utf-8")


def verify_password(plain_password: str, hashed: str | None) -> bool:
    """Verify a plain password against a stored hash. Never raises; malformed hashes fail closed."""
    if not plain_password or not is_password_hash(hashed):
        return False
    try:
        return bcrypt.checkpw(_password_bytes(plain_password), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def create_access_token(claims: Claims, settings: "Settings") -> str:
    """Create a JWT carrying the public claims, iat and exp."""
    now = datetime.now(UTC)
    expire = now + timedelta(minutes=settings.JWT_EXPIRE_MINUTES)
    payload: dict[str, Any] = {
        "sub": str(claims.id),
        **claims.model_dump(),
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(
        payload,
        settings.JWT_SECRET.get_secret_value(),
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_access_token(token: str, settings: "Settings") -> Claims:
    """
    Decode and validate a JWT; return its public claims.
    Raises ExpiredTokenError when exp has passed and InvalidTokenError otherwise.
    """
    if not token:
        raise InvalidTokenError("Token is empty")
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET.get_secret_value(),
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp", "iat", "sub"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise ExpiredTokenError("Token has expired") from e
    except jwt.PyJWTError as e:
        raise InvalidTokenError(f"Token rejected: {type(e).__name__}") from e

    if payload.get("sub") != str(payload.get("id")):
        raise InvalidTokenError("Token subject does not match its id claim")
    try:
        return Claims.model_validate({field: payload.get(field) for field in CLAIM_FIELDS})
    except ValidationError as e:
        raise InvalidTokenError("Token payload is missing identity claims") from e

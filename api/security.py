"""
Password hashing and bearer token issuing/verification.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt
import structlog

from api.errors import InvalidTokenError

logger = structlog.get_logger(__name__)

# bcrypt only looks at the first 72 bytes of the password
BCRYPT_MAX_BYTES = 72

EMAIL_CLAIM = "email"


def password_fits(plain_password: str) -> bool:
    """True when bcrypt will see every byte of the password."""
    return len(plain_password.encode("utf-8")) <= BCRYPT_MAX_BYTES


def hash_password(plain_password: str, rounds: int = 12) -> str:
    """
    Hash a plaintext password with a freshly generated salt.

    Raises:
        ValueError: Password longer than bcrypt can hash in full
    """
    if not password_fits(plain_password):
        raise ValueError(f"Password exceeds {BCRYPT_MAX_BYTES} bytes")
    pw_bytes = plain_password.encode("utf-8")
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain_password: str, hashed: str) -> bool:
    """Check a plaintext password against a stored hash."""
    # Stored passwords never exceed the limit, so a longer one cannot match
    if not password_fits(plain_password):
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


class TokenManager:
    """
    Issues and verifies signed bearer tokens.

    The signing key is fixed for the lifetime of the process. Tokens carry the
    user's email; an ``exp`` claim is only added when ``expire_minutes`` is set.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expire_minutes: Optional[int] = None
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    def issue_token(self, email: str) -> str:
        """
        Create a signed token for the given identity.

        Args:
            email: Email of the user the token identifies

        Returns:
            Encoded JWT
        """
        payload: Dict[str, Any] = {EMAIL_CLAIM: email}
        if self.expire_minutes:
            payload["exp"] = datetime.now(timezone.utc) + timedelta(minutes=self.expire_minutes)
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Dict[str, Any]:
        """
        Decode and validate a token.

        Args:
            token: Encoded JWT

        Returns:
            The token claims

        Raises:
            InvalidTokenError: If the token is malformed, badly signed,
                expired, or carries no email claim
        """
        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.PyJWTError as e:
            logger.debug("Token rejected", error=str(e))
            raise InvalidTokenError(str(e)) from e

        email = claims.get(EMAIL_CLAIM)
        if not isinstance(email, str) or not email:
            raise InvalidTokenError("Token has no identity claim")
        return claims

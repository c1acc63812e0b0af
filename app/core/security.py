"""
Security utilities for password hashing and JWT access tokens.
Uses bcrypt for secure password hashing.
Uses python-jose for JWT token generation and validation.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
import bcrypt
from jose import jwt, JWTError
from jose.exceptions import ExpiredSignatureError
from core.config import settings
from core.exceptions import TokenMissingError, TokenExpiredError, TokenInvalidError


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password to hash

    Returns:
        Hashed password as a string
    """
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash.

    Args:
        plain_password: Plain text password to verify
        hashed_password: Previously hashed password

    Returns:
        True if password matches, False otherwise
    """
    password_bytes = plain_password.encode('utf-8')
    hashed_bytes = hashed_password.encode('utf-8')
    return bcrypt.checkpw(password_bytes, hashed_bytes)


def create_access_token(
    user_id: int,
    username: str,
    expires_delta: Optional[timedelta] = None
) -> Dict[str, Any]:
    """
    Create a signed JWT access token.

    Args:
        user_id: User ID to encode in the token
        username: Username to encode in the token
        expires_delta: Token lifetime (defaults to access_token_expire_minutes)

    Returns:
        Dictionary with token, expires_at, issued_at
    """
    now = datetime.now(timezone.utc)
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)
    expires_at = now + expires_delta

    payload = {
        "user_id": user_id,
        "username": username,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
        "type": "access"
    }

    token = jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)

    return {
        "token": token,
        "expires_at": expires_at,
        "issued_at": now
    }


@dataclass(frozen=True)
class SessionClaim:
    """Identity extracted from a verified access token. Never persisted."""
    user_id: int
    username: Optional[str]
    issued_at: Optional[int]
    expires_at: Optional[int]


class CredentialVerifier:
    """
    Maps a bearer token to a user identity.

    Shared by the REST dependencies and the WebSocket gateway. Holds no
    mutable state, so one instance can be called concurrently from any
    connection task or request handler.
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        self.secret_key = secret_key
        self.algorithm = algorithm

    def verify(self, token: Optional[str]) -> SessionClaim:
        """
        Verify a JWT access token and return its claim.

        Args:
            token: Encoded JWT, may be None or empty

        Returns:
            SessionClaim for the authenticated user

        Raises:
            TokenMissingError: If no token was supplied
            TokenExpiredError: If the token has expired
            TokenInvalidError: If the signature, type or user_id claim is invalid
        """
        if not token or not isinstance(token, str):
            raise TokenMissingError("Token is required")

        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise TokenExpiredError("Token expired")
        except JWTError as e:
            raise TokenInvalidError(f"Invalid token: {e}")

        if payload.get("type") != "access":
            raise TokenInvalidError("Invalid token type")

        user_id = payload.get("user_id")
        if isinstance(user_id, bool) or not isinstance(user_id, int):
            raise TokenInvalidError("Invalid token payload")

        return SessionClaim(
            user_id=user_id,
            username=payload.get("username"),
            issued_at=payload.get("iat"),
            expires_at=payload.get("exp")
        )


# Global verifier instance
credential_verifier = CredentialVerifier(settings.jwt_secret_key, settings.jwt_algorithm)

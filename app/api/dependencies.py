"""
Dependency injection functions for FastAPI.
Provides database sessions, the message store, the messaging gateway and
bearer-token authentication.
"""
from typing import Generator, Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from api.messaging_gateway import MessagingGateway, messaging_gateway
from core.audit_logger import audit_logger
from core.exceptions import AuthError
from core.security import credential_verifier
from db.database import SessionLocal
from db.message_store import MessageStore, message_store
from db.models import User
from db.repository import Repository

security = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.
    Automatically closes the session when request completes.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_message_store() -> MessageStore:
    """Dependency returning the shared message store."""
    return message_store


def get_gateway() -> MessagingGateway:
    """Dependency returning the shared messaging gateway."""
    return messaging_gateway


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Bearer token authentication dependency.

    Verifies the JWT with the shared credential verifier and loads the user.

    Args:
        request: Incoming request (for audit context)
        credentials: HTTP Bearer token from Authorization header
        db: Database session

    Returns:
        Authenticated User object

    Raises:
        HTTPException: 401 if the header is missing or the user no longer exists,
            403 if the token is invalid or expired
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"}
        )

    try:
        claim = credential_verifier.verify(credentials.credentials)
    except AuthError as e:
        audit_logger.log_token_rejected(
            reason=e.reason,
            channel="http",
            ip_address=request.client.host if request.client else None,
            request_id=getattr(request.state, "request_id", None),
            endpoint=request.url.path
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired token"
        )

    user = Repository(db).get_user_by_id(claim.user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"}
        )

    return user

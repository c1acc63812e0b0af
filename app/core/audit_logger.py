"""
Audit logging for security events.
Logs logins, registrations, password changes and rejected tokens
(on REST routes and on the WebSocket gateway) for forensics.
"""
import logging
import json
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from enum import Enum

logger = logging.getLogger(__name__)


class AuditEventType(str, Enum):
    """Types of security audit events."""
    # Authentication events
    AUTH_SUCCESS = "auth_success"
    AUTH_FAILURE = "auth_failure"
    USER_REGISTERED = "user_registered"
    PASSWORD_CHANGED = "password_changed"
    PASSWORD_CHANGE_FAILED = "password_change_failed"

    # Token events
    TOKEN_ISSUED = "token_issued"
    TOKEN_INVALID = "token_invalid"
    TOKEN_EXPIRED = "token_expired"


class AuditLogger:
    """
    Security audit logger.

    All audit events are logged with:
    - Timestamp (ISO 8601)
    - Event type
    - User identifier / username
    - Source IP address
    - Request ID (for correlation)
    - Additional context metadata
    """

    @staticmethod
    def log_event(
        event_type: AuditEventType,
        user_id: Optional[int] = None,
        username: Optional[str] = None,
        ip_address: Optional[str] = None,
        request_id: Optional[str] = None,
        success: bool = True,
        metadata: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None
    ) -> None:
        """
        Log a security audit event.

        Args:
            event_type: Type of security event
            user_id: User identifier (if available)
            username: Username supplied by the client (if available)
            ip_address: Source IP address
            request_id: Request correlation ID
            success: Whether the operation succeeded
            metadata: Additional context (e.g., endpoint, channel)
            error_message: Error message for failed operations
        """
        audit_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type.value,
            "success": success,
            "user_id": user_id,
            "username": username,
            "ip_address": ip_address,
            "request_id": request_id,
            "metadata": metadata or {},
            "error_message": error_message
        }

        log_level = logging.INFO if success else logging.WARNING

        logger.log(
            log_level,
            f"AUDIT: {event_type.value} | "
            f"user={user_id} | username={username} | ip={ip_address} | "
            f"success={success} | {json.dumps(audit_entry, default=str)}"
        )

    @staticmethod
    def log_auth_success(user_id: int, username: str, ip_address: Optional[str], request_id: Optional[str]) -> None:
        """Log successful login."""
        AuditLogger.log_event(
            event_type=AuditEventType.AUTH_SUCCESS,
            user_id=user_id,
            username=username,
            ip_address=ip_address,
            request_id=request_id
        )

    @staticmethod
    def log_auth_failure(username: Optional[str], ip_address: Optional[str], request_id: Optional[str], reason: str) -> None:
        """Log failed login attempt."""
        AuditLogger.log_event(
            event_type=AuditEventType.AUTH_FAILURE,
            username=username,
            ip_address=ip_address,
            request_id=request_id,
            success=False,
            error_message=reason
        )

    @staticmethod
    def log_user_registered(user_id: int, username: str, ip_address: Optional[str], request_id: Optional[str]) -> None:
        """Log account creation."""
        AuditLogger.log_event(
            event_type=AuditEventType.USER_REGISTERED,
            user_id=user_id,
            username=username,
            ip_address=ip_address,
            request_id=request_id
        )

    @staticmethod
    def log_password_change(user_id: int, success: bool, reason: Optional[str] = None) -> None:
        """Log a password change attempt."""
        AuditLogger.log_event(
            event_type=AuditEventType.PASSWORD_CHANGED if success else AuditEventType.PASSWORD_CHANGE_FAILED,
            user_id=user_id,
            success=success,
            error_message=reason
        )

    @staticmethod
    def log_token_issued(user_id: int, username: str, expires_in: int) -> None:
        """Log token issuance."""
        AuditLogger.log_event(
            event_type=AuditEventType.TOKEN_ISSUED,
            user_id=user_id,
            username=username,
            metadata={"token_type": "access_token", "expires_in": expires_in}
        )

    @staticmethod
    def log_token_rejected(
        reason: str,
        channel: str,
        ip_address: Optional[str] = None,
        request_id: Optional[str] = None,
        endpoint: Optional[str] = None
    ) -> None:
        """Log an expired or invalid token presented on a REST route or the socket."""
        event_type = AuditEventType.TOKEN_EXPIRED if reason == "token_expired" else AuditEventType.TOKEN_INVALID
        AuditLogger.log_event(
            event_type=event_type,
            ip_address=ip_address,
            request_id=request_id,
            success=False,
            metadata={"channel": channel, "endpoint": endpoint},
            error_message=reason
        )


# Global audit logger instance
audit_logger = AuditLogger()

"""
Exceptions raised by the credential verifier, the realtime frame parser
and the message store.
"""


class AuthError(Exception):
    """Base exception for credential verification failures."""

    reason = "auth_failed"


class TokenMissingError(AuthError):
    """Raised when no token was supplied."""

    reason = "token_missing"


class TokenExpiredError(AuthError):
    """Raised when a JWT token has expired."""

    reason = "token_expired"


class TokenInvalidError(AuthError):
    """Raised when a JWT token is malformed, badly signed or carries bad claims."""

    reason = "token_invalid"


class MalformedFrame(Exception):
    """Raised when an inbound WebSocket frame cannot be parsed."""

    def __init__(self, reason: str):
        """
        Initialize MalformedFrame.

        Args:
            reason: Why the frame was rejected
        """
        super().__init__(f"Malformed frame: {reason}")
        self.reason = reason


class StoreError(Exception):
    """Raised when the message store cannot complete an operation."""

    def __init__(self, operation: str, cause: Exception = None):
        """
        Initialize StoreError.

        Args:
            operation: Store operation that failed ("append" or "history")
            cause: Underlying database exception
        """
        super().__init__(f"Message store {operation} failed: {cause}")
        self.operation = operation
        self.cause = cause

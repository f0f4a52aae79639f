from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass pins an HTTP ``status_code`` and a stable ``error_code`` that
    clients can branch on:

    - validation_error (400)
    - code_expired (400)
    - unauthorized / invalid_token / invalid_code / token_expired (401)
    - not_found (404)
    - conflict (409)
    - server_error (500)
    - delivery_failed (502)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidTokenError(AuthenticationError):
    """Token decoded to nothing usable or is not a live session (401)."""
    error_code = "invalid_token"


class TokenDecodeError(InvalidTokenError):
    """Token could not be decrypted or parsed at all.

    Kept distinct from its parent so bearer parsing can treat an undecodable
    token as "no identity" while a revoked one still fails loudly.
    """


class TokenExpiredError(AuthenticationError):
    """Short-lived token is past its deadline (401)."""
    error_code = "token_expired"


class InvalidCodeError(AuthenticationError):
    """One-time or TOTP code did not match (401)."""
    error_code = "invalid_code"


class CodeExpiredError(ServiceError):
    """Password reset code is past its expiry (400)."""
    status_code = 400
    error_code = "code_expired"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class DeliveryFailedError(ServiceError):
    """Outbound e-mail could not be handed to the mail server (502)."""
    status_code = 502
    error_code = "delivery_failed"


__all__ = [
    "ServiceError",
    "AuthenticationError",
    "InvalidTokenError",
    "TokenDecodeError",
    "TokenExpiredError",
    "InvalidCodeError",
    "CodeExpiredError",
    "NotFoundError",
    "ConflictError",
    "ServerError",
    "DeliveryFailedError",
]

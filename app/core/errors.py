"""
Application error taxonomy.

Services raise these; the handlers registered in main.py turn them into
``{"success": false, "error": {...}}`` responses with the matching status.
"""

from fastapi import status


class AppError(Exception):
    """Base class for every error that maps to a stable API outcome."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    """Malformed or out-of-range caller input."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class MessageFormatError(ValidationError):
    """A signed message does not follow the canonical sign-message layout."""


class AuthenticationError(AppError):
    """Credential, signature or nonce protocol failure."""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTHENTICATION_ERROR"


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "AUTHORIZATION_ERROR"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class StateConflictError(AppError):
    """Requested transition is illegal from the current state."""

    status_code = status.HTTP_409_CONFLICT
    code = "STATE_CONFLICT"


class TransientStoreError(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "TRANSIENT_STORE_ERROR"


class StoreTimeoutError(TransientStoreError):
    """A transaction ran past its execution ceiling and was rolled back."""


class BlockchainError(AppError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "BLOCKCHAIN_ERROR"

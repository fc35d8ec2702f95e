"""
Error taxonomy for the chat API.

Every failure the services raise is a ChatError subclass carrying the HTTP
status and the client-facing detail. The exception handlers registered in
main.py turn them into JSON responses; internal causes are logged there and
never echoed back to the client.
"""

from typing import Optional


class ChatError(Exception):
    """Base class for errors rendered as JSON responses."""

    status_code: int = 500
    detail: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None, errors: Optional[list] = None):
        if detail is not None:
            self.detail = detail
        self.errors = errors
        super().__init__(self.detail)


# =============================================================================
# Validation (400)
# =============================================================================

class ValidationError(ChatError):
    status_code = 400
    detail = "Validation failed"


class InvalidPayload(ValidationError):
    detail = "Invalid message payload"


class FileTooLarge(ValidationError):
    detail = "File too large"


class UnsupportedType(ValidationError):
    detail = "File type not allowed"


class MissingFile(ValidationError):
    detail = "No file uploaded"


class InvalidCredentials(ValidationError):
    # Same text for unknown username and wrong password
    detail = "Invalid username or password"


# =============================================================================
# Conflict (400)
# =============================================================================

class ConflictError(ChatError):
    status_code = 400
    detail = "Conflict"


class DuplicateIdentifier(ConflictError):
    detail = "Username or email already exists"


# =============================================================================
# Authentication (401 / 403)
# =============================================================================

class AuthError(ChatError):
    status_code = 403
    detail = "Invalid token"


class MissingToken(AuthError):
    status_code = 401
    detail = "Access token required"


class InvalidToken(AuthError):
    pass


class TokenExpired(AuthError):
    pass


# =============================================================================
# Not found (404) / Upstream (500)
# =============================================================================

class NotFoundError(ChatError):
    status_code = 404
    detail = "Not found"


class NotFound(NotFoundError):
    pass


class UpstreamError(ChatError):
    status_code = 500
    detail = "Internal server error"

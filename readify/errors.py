"""
Error taxonomy shared by services and the HTTP layer.
Every error carries the HTTP status the API answers with.
"""

from typing import Optional


class ReadifyError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(ReadifyError):
    """Bad or missing input (empty text, unknown voice...)."""
    status_code = 400


class ConflictError(ValidationError):
    """Input is valid but collides with an existing record."""
    status_code = 409


class AuthError(ReadifyError):
    """Missing, invalid or expired session, or bad credentials."""
    status_code = 401


class AccessDenied(ReadifyError):
    """Valid session, but the caller does not own the resource."""
    status_code = 403


class NotFound(ReadifyError):
    status_code = 404


class ProviderError(ReadifyError):
    """Upstream AI/TTS failure. Keeps the upstream status and body for diagnostics."""
    status_code = 502

    def __init__(self, message: str = "", status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class StorageError(ReadifyError):
    """Key-value or blob operation failure."""
    status_code = 500

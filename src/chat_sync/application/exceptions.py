from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class NotFoundError(AppError):
    pass


class ConflictError(AppError):
    pass


class ValidationError(AppError):
    pass


class TransportError(AppError):
    """Realtime channel or HTTP backend unreachable. Never fatal."""


class AuthorizationError(AppError):
    """Backend refused access (403). Fatal to the conversation view."""


class UploadError(AppError):
    """Asset upload failed; the dependent send must not be emitted."""


class DuplicateAckError(ConflictError):
    """A correlation id was acknowledged twice with different server ids."""

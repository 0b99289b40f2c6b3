from __future__ import annotations


class AppError(Exception):
    """Base error carrying the HTTP status it maps to."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    status_code = 400


class HostOnlyError(ValidationError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class SessionMissingError(NotFoundError):
    """No player/lobby identifiers are stored; send the user to the join flow."""


class PersistenceError(AppError):
    status_code = 500


class ExternalServiceError(AppError):
    """LLM or third-party failure. Generation code always falls back before this reaches a user."""

    status_code = 502


class ConflictError(PersistenceError):
    """A write lost a race on a unique index."""

    status_code = 409

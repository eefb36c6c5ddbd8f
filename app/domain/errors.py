from __future__ import annotations


class ConsoleError(Exception):
    status_code = 500


class ValidationError(ConsoleError):
    status_code = 400

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class TransientNetworkError(ValidationError):
    """The validator could not be reached; treated as a failed validation."""

    def __init__(self, message: str = "validation service unreachable, please retry", *, field: str | None = None) -> None:
        super().__init__(message, field=field)


class ForbiddenError(ConsoleError):
    status_code = 403


class NotFoundError(ConsoleError):
    status_code = 404


class ConflictError(ConsoleError):
    status_code = 409


class AuthError(ConsoleError):
    status_code = 401

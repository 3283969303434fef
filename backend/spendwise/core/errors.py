from fastapi import HTTPException


class AppError(HTTPException):
    status = 500

    def __init__(self, detail: str, details: str | None = None, status_code: int | None = None) -> None:
        super().__init__(status_code=status_code or self.status, detail=detail)
        self.details = details


class ValidationError(AppError):
    status = 400


class ConflictError(AppError):
    status = 400


class AuthError(AppError):
    """401 when credentials are absent, 403 when a presented token is rejected."""

    status = 401


class NotFoundError(AppError):
    status = 404


class StoreError(AppError):
    status = 500


class TransientStoreError(StoreError):
    """The store could not hand out a connection; safe to retry the whole unit."""


def error_body(detail: object, details: str | None = None) -> dict:
    body = {"error": detail}
    if details:
        body["details"] = details
    return body

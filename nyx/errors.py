"""Error taxonomy shared by the data-access services.

Service functions raise these with a short message. The application turns
them into ``{"detail": message}`` responses with the matching status code.
"""
from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class NyxError(Exception):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotAuthenticated(NyxError):
    status_code = 401

    def __init__(self, message: str = "Unauthenticated") -> None:
        super().__init__(message)


class NotAuthorized(NyxError):
    status_code = 403

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class NotFound(NyxError):
    status_code = 404


class ValidationFailed(NyxError):
    status_code = 422


class Conflict(ValidationFailed):
    status_code = 409


class UploadFailed(NyxError):
    status_code = 400


async def handle_nyx_error(request: Request, exc: NyxError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

"""Domain error taxonomy and its HTTP mapping."""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class DispatchError(Exception):
    """Base class for expected, caller-facing failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_code: str = "dispatch_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class ValidationError(DispatchError):
    """Malformed id or missing field; raised before any store access."""

    status_code = 422  # Unprocessable Content
    default_code = "validation_error"


class NotFoundError(DispatchError):
    """A job, technician or KYC row does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class ConflictError(DispatchError):
    """The current state does not allow the requested change.

    Routine outcome: lost accept race, disallowed transition, already cancelled.
    """

    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"


class PermissionDeniedError(DispatchError):
    """The caller does not own the resource it is acting on."""

    status_code = status.HTTP_403_FORBIDDEN
    default_code = "permission_denied"


class EligibilityDeniedError(PermissionDeniedError):
    """The technician fails the readiness gate."""

    default_code = "eligibility_denied"

    def __init__(self, message: str, reasons: list[str], code: Optional[str] = None):
        super().__init__(message, code)
        self.reasons = list(reasons)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reasons"] = self.reasons
        return data


async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    """Render a DispatchError as a JSON response."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the domain error handler to the application."""
    app.add_exception_handler(DispatchError, dispatch_error_handler)  # type: ignore[arg-type]

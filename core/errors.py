# ABOUTME: Typed API errors carrying an HTTP status and optional structured details.
# ABOUTME: Raised by planner and auth code; api.main renders them as {"error": {code, message, details?}}.

from typing import Any


class ApiError(Exception):
    """Domain error with an HTTP status and optional JSON-serializable details."""

    status_code = 500

    def __init__(self, message: str, details: Any = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_body(self) -> dict:
        error: dict[str, Any] = {"code": self.status_code, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        return {"error": error}


class ValidationError(ApiError):
    status_code = 400


class UnauthorizedError(ApiError):
    status_code = 401


class ForbiddenError(ApiError):
    status_code = 403


class NotFoundError(ApiError):
    status_code = 404


class ConflictError(ApiError):
    status_code = 409


class UpstreamUnavailableError(ApiError):
    status_code = 503


def ensure(condition: Any, error: ApiError) -> None:
    """Raise error unless condition is truthy. Keeps guard clauses on one line at call sites."""
    if not condition:
        raise error

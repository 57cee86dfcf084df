"""Error taxonomy raised by the service layer and mapped to HTTP responses in main."""

from typing import Any, Optional


class ExamServiceError(Exception):
    """Base error carrying an HTTP status and structured detail for the client."""

    status_code = 500

    def __init__(self, message: str, detail: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, **self.detail}


class BadRequestError(ExamServiceError):
    status_code = 400


class UnauthorizedError(ExamServiceError):
    status_code = 401


class ForbiddenError(ExamServiceError):
    status_code = 403


class NotFoundError(ExamServiceError):
    status_code = 404

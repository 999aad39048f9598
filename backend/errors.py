# errors.py
"""
Error taxonomy for the generation pipeline.

Every stage raises one of these; the HTTP layer turns them into
``{"error": {"code", "message", "details"}}`` with the class's status code.
"""
from typing import Any, Optional


class AppError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None,
                 correlation_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.correlation_id = correlation_id

    def to_response(self) -> dict:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return {"error": body}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


# --- Input
class InvalidSourceUrl(AppError):
    code = "INVALID_SOURCE_URL"
    status_code = 400


class RequestValidationFailed(AppError):
    code = "VALIDATION_ERROR"
    status_code = 400


# --- Flashcard platform
class SetNotFound(AppError):
    code = "SET_NOT_FOUND"
    status_code = 404


class SetPrivate(AppError):
    code = "SET_PRIVATE"
    status_code = 403


class SetEmpty(AppError):
    code = "SET_EMPTY"
    status_code = 422


class DataValidationError(AppError):
    code = "DATA_VALIDATION_ERROR"
    status_code = 422


class ScraperFailed(AppError):
    """Automated retrieval failed; the caller can fetch ``api_url`` by hand and repost it."""

    code = "SCRAPER_FAILED"
    status_code = 424

    def __init__(self, message: str, api_url: str, details: Optional[dict[str, Any]] = None,
                 correlation_id: Optional[str] = None):
        merged = {"apiUrl": api_url}
        merged.update(details or {})
        super().__init__(message, merged, correlation_id)
        self.api_url = api_url


# --- AI provider
class ContentBlocked(AppError):
    code = "CONTENT_BLOCKED"
    status_code = 502


class InvalidResponseData(AppError):
    code = "INVALID_RESPONSE_DATA"
    status_code = 502


class AiGenerationFailed(AppError):
    code = "AI_GENERATION_FAILED"
    status_code = 500


# --- Storage / misc
class ResourceNotFound(AppError):
    code = "NOT_FOUND"
    status_code = 404


class DatabaseError(AppError):
    code = "DATABASE_ERROR"
    status_code = 500


class InternalError(AppError):
    code = "INTERNAL_ERROR"
    status_code = 500

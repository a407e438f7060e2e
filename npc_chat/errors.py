"""Error taxonomy for the conversation pipeline.

Every failure raised by the pipeline is a ``PipelineError`` carrying one
``ErrorCode``. The HTTP layer maps codes to status codes with
``status_for``; nothing else inspects the code.
"""

from enum import Enum


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    LLM_API_ERROR = "LLM_API_ERROR"
    LLM_API_TIMEOUT = "LLM_API_TIMEOUT"
    API_KEY_MISSING = "API_KEY_MISSING"
    SYSTEM_ERROR = "SYSTEM_ERROR"


GENERIC_SYSTEM_MESSAGE = "Internal error, please try again later"


class PipelineError(Exception):
    """A classified failure of a pipeline operation."""

    def __init__(self, code: ErrorCode, message: str, details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        error = {"code": self.code.value, "message": self.message}
        if self.details:
            error["details"] = self.details
        return error


class ValidationError(PipelineError):
    """Malformed input, raised before any write."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(
            ErrorCode.VALIDATION_ERROR,
            message,
            {"field": field} if field else None,
        )
        self.field = field


class GenerationError(PipelineError):
    """Reply generation failed upstream of the pipeline."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        provider: str | None = None,
        status: int | None = None,
    ):
        super().__init__(code, message)
        self.provider = provider
        self.status = status


class StorageError(Exception):
    """Raised by store backends; never shown to clients as-is."""


def not_found(message: str) -> PipelineError:
    return PipelineError(ErrorCode.NOT_FOUND, message)


def permission_denied(message: str) -> PipelineError:
    return PipelineError(ErrorCode.PERMISSION_DENIED, message)


def system_error(message: str = GENERIC_SYSTEM_MESSAGE) -> PipelineError:
    return PipelineError(ErrorCode.SYSTEM_ERROR, message)


def status_for(code: ErrorCode) -> int:
    """HTTP status code for an error code."""
    match code:
        case ErrorCode.VALIDATION_ERROR:
            return 400
        case ErrorCode.PERMISSION_DENIED:
            return 403
        case ErrorCode.NOT_FOUND:
            return 404
        case ErrorCode.LLM_API_ERROR | ErrorCode.LLM_API_TIMEOUT | ErrorCode.API_KEY_MISSING:
            return 502
        case _:
            return 500

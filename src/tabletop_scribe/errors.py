"""Structured API errors."""

from fastapi import status


class ErrorCode:
    """Machine-readable error codes returned to API callers."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_PARTS = "INVALID_PARTS"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    REQUEST_TOO_LARGE = "REQUEST_TOO_LARGE"
    FEATURE_DISABLED = "FEATURE_DISABLED"
    STORAGE_ERROR = "STORAGE_ERROR"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    REFERRAL_ERROR = "REFERRAL_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ApiError(Exception):
    """Error carrying an HTTP status and a machine-readable code."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        self.status_code = status_code
        self.code = code
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        """Return the JSON body sent to the client."""
        return {"message": self.message, "error": self.code}


def validation_error(message: str) -> ApiError:
    return ApiError(status.HTTP_400_BAD_REQUEST, ErrorCode.VALIDATION_ERROR, message)


def not_found(message: str) -> ApiError:
    return ApiError(status.HTTP_404_NOT_FOUND, ErrorCode.NOT_FOUND, message)


def unauthorized(message: str = "Authentication required") -> ApiError:
    return ApiError(status.HTTP_401_UNAUTHORIZED, ErrorCode.UNAUTHORIZED, message)


def too_large(code: str, message: str) -> ApiError:
    return ApiError(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, code, message)

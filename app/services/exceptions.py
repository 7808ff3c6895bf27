from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    UPLOAD = "upload"
    INTERNAL = "internal"


class ServiceError(Exception):
    """Base exception for service-level errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, *, detail: str | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or message


class ValidationError(ServiceError):
    kind = ErrorKind.VALIDATION

    def __init__(self, errors: dict[str, list[str]], message: str = "The given data was invalid."):
        first = next(iter(errors.values()), [message])
        super().__init__(message, detail=first[0] if first else message)
        self.errors = errors


class NotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND


class UploadError(ServiceError):
    kind = ErrorKind.UPLOAD


class InternalError(ServiceError):
    kind = ErrorKind.INTERNAL

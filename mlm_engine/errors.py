# mlm_engine/errors.py
"""
Error taxonomy shared by every service and the HTTP layer.
"""
from enum import Enum


class ErrorCode(Enum):
    INVALID_ARGUMENT = "invalid-argument"
    ALREADY_EXISTS = "already-exists"
    NOT_FOUND = "not-found"
    FAILED_PRECONDITION = "failed-precondition"
    RESOURCE_EXHAUSTED = "resource-exhausted"
    INTERNAL = "internal"
    ABORTED = "aborted"


class MLMError(Exception):
    """Base error with a stable code the caller can switch on."""
    code = ErrorCode.INTERNAL

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def toDict(self) -> dict:
        return {"code": self.code.value, "message": self.message}


class InvalidArgument(MLMError):
    code = ErrorCode.INVALID_ARGUMENT


class AlreadyExists(MLMError):
    code = ErrorCode.ALREADY_EXISTS


class NotFound(MLMError):
    code = ErrorCode.NOT_FOUND


class FailedPrecondition(MLMError):
    code = ErrorCode.FAILED_PRECONDITION


class ResourceExhausted(MLMError):
    code = ErrorCode.RESOURCE_EXHAUSTED


class Internal(MLMError):
    code = ErrorCode.INTERNAL


class Aborted(MLMError):
    code = ErrorCode.ABORTED


class SlotConflict(Aborted):
    """A tree slot was taken between locating and claiming it."""
    pass

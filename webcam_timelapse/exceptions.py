"""Error taxonomy shared across the webcam timelapse system."""

from __future__ import annotations

from typing import Optional


class WebcamTimelapseError(RuntimeError):
    """Base class for runtime failures raised by the system."""


class ValidationError(ValueError):
    """Raised when caller-supplied input is outside its valid range."""


class FormatError(ValidationError):
    """Raised when caller-supplied text does not match the expected format."""


class NotFoundError(WebcamTimelapseError):
    """Raised when a referenced webcam or animation job does not exist."""


class ConflictError(WebcamTimelapseError):
    """Raised when a job is not in the state an operation requires."""

    def __init__(self, message: str, actual_status: Optional[str] = None) -> None:
        super().__init__(message)
        self.actual_status = actual_status


class TransientIOError(WebcamTimelapseError):
    """Raised for network or storage failures that a later tick may retry."""


class StorageError(TransientIOError):
    """Raised when the relational or object store rejects an operation."""


__all__ = [
    "ConflictError",
    "FormatError",
    "NotFoundError",
    "StorageError",
    "TransientIOError",
    "ValidationError",
    "WebcamTimelapseError",
]

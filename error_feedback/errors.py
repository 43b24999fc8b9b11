"""
Error types for the error feedback daemon.

All errors inherit from ErrorFeedbackError for easy catching.
"""

from pathlib import Path
from typing import Optional


class ErrorFeedbackError(Exception):
    """Base exception for all error-feedback failures."""
    pass


class StorageError(ErrorFeedbackError):
    """Raised when reading, writing or moving a bundle file fails."""

    def __init__(self, path: Path, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Storage failure at {path}: {reason}")


class BundleValidationError(ErrorFeedbackError):
    """Raised when a bundle record is malformed or has an unsupported version."""

    def __init__(self, path: Optional[Path], reason: str):
        self.path = Path(path) if path is not None else None
        self.reason = reason
        location = f" at {path}" if path is not None else ""
        super().__init__(f"Invalid error bundle{location}: {reason}")


class ProcessorError(ErrorFeedbackError):
    """Raised when the bundle processor throws or returns an unusable result."""

    def __init__(self, bundle_id: str, reason: str):
        self.bundle_id = bundle_id
        self.reason = reason
        super().__init__(f"Processor failed for bundle {bundle_id}: {reason}")


class WatchError(ErrorFeedbackError):
    """Raised when the filesystem watcher cannot be established."""

    def __init__(self, path: Path, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Cannot watch {path}: {reason}")


class LockError(ErrorFeedbackError):
    """Raised when the single-instance lock is held by another process."""

    def __init__(self, path: Path):
        self.path = Path(path)
        super().__init__(f"Another daemon holds the lock at {path}")


def describe_error(error: BaseException) -> str:
    """Human-readable one-line message for an exception."""
    message = str(error).strip()
    if not message:
        return type(error).__name__
    return message

"""
Atomic file operations.

Readers of the queue directories must never observe a partially written
file, so every write goes to a temp file in the same directory and is
renamed into place.
"""

import fcntl
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Optional

from error_feedback.constants import TEMP_FILE_SUFFIX
from error_feedback.errors import LockError


logger = logging.getLogger(__name__)


class AtomicFileWriter:
    """Write files via temp file + os.replace."""

    @staticmethod
    def temp_path_for(path: Path) -> Path:
        return path.with_name(f"{path.name}.{uuid.uuid4().hex[:8]}{TEMP_FILE_SUFFIX}")

    @classmethod
    def write_text(cls, path: Path, content: str) -> None:
        """
        Atomically replace ``path`` with ``content``.

        Raises:
            OSError: if the write or rename fails; the temp file is removed
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = cls.temp_path_for(path)

        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except Exception:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.debug(f"Failed to remove temp file {tmp_path}: {cleanup_error}")
            raise

    @classmethod
    def write_json(cls, path: Path, data: Any) -> None:
        cls.write_text(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")


class FileLock:
    """
    Advisory, non-blocking exclusive lock on a file (fcntl.flock).

    Holds the lock until release(); the owning PID is written into the
    file for diagnostics.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._fd: Optional[int] = None

    @property
    def locked(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """
        Take the lock.

        Raises:
            LockError: if another holder has it
        """
        if self._fd is not None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            os.ftruncate(fd, 0)
            os.write(fd, f"{os.getpid()}\n".encode())
        except BlockingIOError:
            os.close(fd)
            raise LockError(self.path)
        except OSError:
            os.close(fd)
            raise

        self._fd = fd

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

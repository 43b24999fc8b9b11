"""
Bundle store for directory-based queue state.

No database - the directory structure is the source of truth:
- pending/            - bundles waiting to be processed (and retries)
- processed/          - resolved or failed bundles
- processed/invalid/  - quarantined bundles that failed validation

A bundle's physical location encodes its lifecycle stage. Every write is
atomic (temp file + rename), so readers never see partial records.
"""

import json
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

from pydantic import ValidationError

from error_feedback.atomic import AtomicFileWriter
from error_feedback.constants import BUNDLE_SCHEMA_VERSION, BUNDLE_FILE_SUFFIX
from error_feedback.errors import BundleValidationError, StorageError
from error_feedback.models import ErrorBundle, utc_now_iso
from error_feedback.paths import BundlePaths, build_bundle_filename, bundle_id_from_filename


logger = logging.getLogger(__name__)


def parse_bundle_record(data: Any, path: Optional[Path] = None) -> ErrorBundle:
    """
    Validate a decoded JSON record into an ErrorBundle.

    Raises:
        BundleValidationError: missing id, unsupported version or schema errors
    """
    if not isinstance(data, dict):
        raise BundleValidationError(path, "record is not a JSON object")

    if not data.get("id"):
        raise BundleValidationError(path, "missing id")

    version = data.get("version")
    if isinstance(version, bool) or version != BUNDLE_SCHEMA_VERSION:
        raise BundleValidationError(path, f"unsupported version {version!r}")

    try:
        return ErrorBundle.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "record"
        raise BundleValidationError(
            path, f"{e.error_count()} schema error(s), first at {location}: {first['msg']}"
        ) from e


class ReadStatus(str, Enum):
    """Outcome of reading a bundle file."""
    OK = "ok"
    ABSENT = "absent"
    INVALID = "invalid"
    ERROR = "error"


@dataclass
class ReadResult:
    """Result of BundleStore.read(); never an exception."""

    path: Path
    status: ReadStatus
    bundle: Optional[ErrorBundle] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ReadStatus.OK


class BundleStore:
    """
    Durable, atomic operations over the pending and processed directories.
    """

    def __init__(self, paths: BundlePaths):
        self.paths = paths

    def ensure_dirs(self) -> None:
        """Create pending/, processed/ and processed/invalid/."""
        for directory in (self.paths.pending, self.paths.processed, self.paths.invalid):
            directory.mkdir(parents=True, exist_ok=True)

    def write(self, bundle: ErrorBundle, directory: Optional[Path] = None) -> Path:
        """
        Atomically write a bundle into a directory (pending by default).

        Returns:
            Path of the written file

        Raises:
            StorageError: if the write fails
        """
        directory = directory or self.paths.pending
        target = directory / build_bundle_filename(bundle.id)

        try:
            AtomicFileWriter.write_json(target, bundle.to_record())
        except OSError as e:
            raise StorageError(target, str(e)) from e

        return target

    def save_pending(self, bundle: ErrorBundle) -> Path:
        """Persist an updated bundle back into pending (retry path)."""
        return self.write(bundle, self.paths.pending)

    def read(self, path: Path) -> ReadResult:
        """Read and validate one bundle file."""
        path = Path(path)

        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ReadResult(path, ReadStatus.ABSENT, reason="file not found")
        except OSError as e:
            return ReadResult(path, ReadStatus.ERROR, reason=str(e))

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            return ReadResult(path, ReadStatus.INVALID, reason=f"malformed JSON: {e}")

        try:
            bundle = parse_bundle_record(data, path)
        except BundleValidationError as e:
            return ReadResult(path, ReadStatus.INVALID, reason=e.reason)

        return ReadResult(path, ReadStatus.OK, bundle=bundle)

    def load(self, path: Path) -> Optional[ErrorBundle]:
        """Degraded read: the bundle, or None for anything unreadable."""
        return self.read(path).bundle

    def _list_bundle_files(self, directory: Path) -> List[Path]:
        try:
            entries = list(directory.iterdir())
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageError(directory, f"cannot list directory: {e}") from e

        files = [
            entry for entry in entries
            if not entry.name.startswith(".")
            and bundle_id_from_filename(entry.name)
            and entry.is_file()
        ]

        # Sort by filename (bundle IDs start with a UTC timestamp)
        files.sort(key=lambda p: p.name)
        return files

    def list_pending(self) -> List[Path]:
        """
        List pending bundle files in arrival order.

        Returns:
            Sorted paths; empty if pending/ doesn't exist yet

        Raises:
            StorageError: any other listing failure
        """
        return self._list_bundle_files(self.paths.pending)

    def list_processed(self) -> List[Path]:
        return self._list_bundle_files(self.paths.processed)

    def count(self, directory: Path) -> int:
        """Number of bundle files directly in a directory."""
        return len(self._list_bundle_files(Path(directory)))

    def pending_count(self) -> int:
        return self.count(self.paths.pending)

    def move_to_processed(self, bundle: ErrorBundle) -> ErrorBundle:
        """
        Stamp a bundle as processed, write it to processed/, drop the pending copy.

        The pending copy is removed only after the processed copy is durable.
        A crash in between leaves a stale duplicate in pending; processed is
        authoritative (see reconcile()).

        Returns:
            The stamped bundle

        Raises:
            StorageError: if the processed copy cannot be written
        """
        updated = bundle.model_copy(update={"processed": True, "processed_at": utc_now_iso()})
        self.write(updated, self.paths.processed)

        pending_path = self.paths.pending_path(bundle.id)
        try:
            pending_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Bundle {bundle.id} processed but pending copy not removed: {e}")

        return updated

    def quarantine(self, path: Path) -> Optional[Path]:
        """
        Move an unreadable file into processed/invalid/ unchanged.

        Returns:
            New location, or None if the move failed
        """
        path = Path(path)
        target = self.paths.invalid / path.name

        try:
            self.paths.invalid.mkdir(parents=True, exist_ok=True)
            os.replace(path, target)
        except OSError as e:
            logger.warning(f"Failed to quarantine {path}: {e}")
            return None

        return target

    def prune(self, max_age_seconds: float) -> int:
        """
        Delete processed bundles older than max_age_seconds.

        Only processed/ is scanned; pending/ and processed/invalid/ are
        never touched. Per-file failures are skipped.

        Returns:
            Number of files deleted
        """
        cutoff = time.time() - max_age_seconds
        cleaned = 0

        try:
            entries = list(self.paths.processed.iterdir())
        except FileNotFoundError:
            return 0
        except OSError as e:
            logger.warning(f"Cleanup failed: {e}")
            return 0

        for entry in entries:
            if not entry.name.endswith(BUNDLE_FILE_SUFFIX):
                continue
            try:
                if entry.is_file() and entry.stat().st_mtime < cutoff:
                    entry.unlink()
                    cleaned += 1
            except OSError:
                continue

        if cleaned > 0:
            logger.info(f"Cleaned up {cleaned} processed bundle(s)")

        return cleaned

    def reconcile(self) -> int:
        """
        Remove pending files whose bundle already exists in processed/.

        Returns:
            Number of stale pending copies removed
        """
        processed_ids = {bundle_id_from_filename(p.name) for p in self.list_processed()}
        removed = 0

        for path in self.list_pending():
            if bundle_id_from_filename(path.name) not in processed_ids:
                continue
            try:
                path.unlink()
                removed += 1
                logger.info(f"Removed stale pending copy {path.name} (already processed)")
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Failed to remove stale pending copy {path}: {e}")

        return removed

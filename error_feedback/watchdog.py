"""
Filesystem watcher for the pending bundles directory.

Uses watchdog to react to new or rewritten bundle files. The watcher only
signals that something changed; debouncing and batching live in the
scheduler, and the scheduler's poll timer covers any missed events.
"""

import fnmatch
import logging
import os
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from error_feedback.constants import BUNDLE_FILE_PATTERN, TEMP_FILE_SUFFIX, WATCHER_STOP_TIMEOUT
from error_feedback.errors import WatchError


logger = logging.getLogger(__name__)


def is_ignored_name(name: str) -> bool:
    """Hidden files and temp-write artifacts never trigger a batch."""
    return name.startswith(".") or name.endswith(TEMP_FILE_SUFFIX)


class PendingBundleWatcher(FileSystemEventHandler):
    """
    Watchdog handler for the pending directory.

    Calls trigger_callback(file_path) for every created, modified or
    moved-in file matching the bundle pattern.
    """

    def __init__(
        self,
        pending_dir: Path,
        trigger_callback: Callable[[str], None],
        pattern: str = BUNDLE_FILE_PATTERN
    ):
        """
        Initialize watcher.

        Args:
            pending_dir: Directory to watch (non-recursive)
            trigger_callback: Called with the path of the changed file
            pattern: Glob pattern for bundle filenames
        """
        super().__init__()
        self.pending_dir = Path(pending_dir)
        self.trigger_callback = trigger_callback
        self.pattern = pattern
        self._observer: Optional[Observer] = None

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle_file_event(os.fsdecode(event.src_path), "created")

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle_file_event(os.fsdecode(event.src_path), "modified")

    def on_moved(self, event: FileSystemEvent) -> None:
        # Atomic writes land as a rename of the temp file onto the final name
        if event.is_directory:
            return
        self._handle_file_event(os.fsdecode(event.dest_path), "moved")

    def _handle_file_event(self, file_path: str, event_type: str) -> None:
        name = Path(file_path).name

        if is_ignored_name(name):
            return

        if not fnmatch.fnmatch(name, self.pattern):
            return

        logger.debug(f"Bundle file {event_type}: {name}")

        try:
            self.trigger_callback(file_path)
        except Exception as e:
            logger.error(f"Trigger callback failed for {file_path}: {e}")

    def start(self) -> None:
        """
        Start watching.

        Raises:
            WatchError: if the directory is missing or the observer cannot start
        """
        if self.is_running():
            return

        if not self.pending_dir.is_dir():
            raise WatchError(self.pending_dir, "directory does not exist")

        observer = Observer()
        try:
            observer.schedule(self, str(self.pending_dir), recursive=False)
            observer.start()
        except Exception as e:
            raise WatchError(self.pending_dir, str(e)) from e

        self._observer = observer
        logger.info(f"Watching {self.pending_dir}")

    def stop(self) -> None:
        """Stop watching. Observer errors are logged, never raised."""
        if self._observer is None:
            return

        try:
            self._observer.stop()
            self._observer.join(timeout=WATCHER_STOP_TIMEOUT)
        except Exception as e:
            logger.warning(f"Error stopping watcher for {self.pending_dir}: {e}")
        finally:
            self._observer = None

    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

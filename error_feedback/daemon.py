"""
Error feedback daemon.

Watches the pending bundles directory, processes new bundles through the
configured processor and moves them to processed/. Uses watchdog for push
notifications with a fixed-interval poll as a backstop; both feed the
batch scheduler.
"""

import json
import logging
import os
import signal
import threading
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from error_feedback.atomic import AtomicFileWriter, FileLock
from error_feedback.bundle_runner import BatchResult, BundleProcessedHook, BundleRunner, ProcessErrorHook
from error_feedback.errors import StorageError, WatchError
from error_feedback.models import DaemonSettings, DaemonState, DaemonStatus, utc_now_iso
from error_feedback.paths import BundlePaths
from error_feedback.processor import BundleProcessor
from error_feedback.scheduler import BatchScheduler
from error_feedback.store import BundleStore
from error_feedback.watchdog import PendingBundleWatcher


logger = logging.getLogger(__name__)


def read_daemon_state(state_file: Path) -> Optional[DaemonState]:
    """Read the persisted daemon state; None if missing or unreadable."""
    try:
        data = json.loads(Path(state_file).read_text(encoding="utf-8"))
        return DaemonState.model_validate(data)
    except FileNotFoundError:
        return None
    except (OSError, ValueError, ValidationError) as e:
        logger.warning(f"Failed to read daemon state at {state_file}: {e}")
        return None


class ErrorFeedbackDaemon:
    """
    Single-consumer daemon over one queue directory.

    start() returns immediately; the scheduler thread does the work.
    """

    def __init__(
        self,
        paths: Optional[BundlePaths] = None,
        settings: Optional[DaemonSettings] = None,
        processor: Optional[BundleProcessor] = None,
        on_bundle_processed: Optional[BundleProcessedHook] = None,
        on_process_error: Optional[ProcessErrorHook] = None
    ):
        """
        Initialize daemon.

        Args:
            paths: Queue and state locations (default: resolved from env)
            settings: Daemon tunables (default: DaemonSettings())
            processor: Bundle processor (default: relay to operator)
            on_bundle_processed: Hook after a bundle reaches processed/
            on_process_error: Hook when the processor raises
        """
        self.paths = paths or BundlePaths.from_env()
        self.settings = settings or DaemonSettings()
        self.store = BundleStore(self.paths)

        self.runner = BundleRunner(
            store=self.store,
            processor=processor,
            max_batch_size=self.settings.max_batch_size,
            inter_bundle_delay_ms=self.settings.inter_bundle_delay_ms,
            on_bundle_processed=on_bundle_processed,
            on_process_error=on_process_error,
        )
        self.scheduler = BatchScheduler(
            run_batch=self.process_batch,
            debounce_ms=self.settings.debounce_ms,
            poll_interval_ms=self.settings.poll_interval_ms,
        )
        self.watcher: Optional[PendingBundleWatcher] = None

        self._instance_lock: Optional[FileLock] = (
            FileLock(self.paths.lock_file) if self.settings.single_instance_lock else None
        )
        self._batch_guard = threading.Lock()
        self._state_lock = threading.Lock()
        self._shutdown_event = threading.Event()
        self._stopped = True

        self.state = DaemonState()

    @property
    def is_active(self) -> bool:
        """True between start() and stop()."""
        return not self._stopped

    def start(self) -> None:
        """
        Start watching and processing.

        Raises:
            LockError: single_instance_lock is on and another daemon holds it
            OSError: the queue directories cannot be created
        """
        if self.is_active:
            logger.warning("Error feedback daemon is already running")
            return

        self.store.ensure_dirs()

        if self._instance_lock is not None:
            self._instance_lock.acquire()

        self._reconcile()

        self._stopped = False
        self._shutdown_event.clear()
        with self._state_lock:
            self.state = DaemonState(
                status=DaemonStatus.RUNNING,
                started_at=utc_now_iso(),
                pid=os.getpid(),
            )
        self.persist_state()

        logger.info(f"Error feedback daemon started, watching: {self.paths.pending}")

        if self.settings.watch_enabled:
            self._start_watcher()

        self.scheduler.start()
        # Sweep bundles that arrived while we were down
        self.scheduler.trigger("startup", immediate=True)

    def stop(self, wait: bool = False, timeout: Optional[float] = None) -> None:
        """
        Stop watcher and timers, mark stopped, persist.

        An in-flight batch is not interrupted unless wait=True, in which
        case this blocks until it finishes.
        """
        if not self.is_active:
            return

        self._stopped = True
        self._shutdown_event.set()

        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None

        self.scheduler.stop(wait=wait, timeout=timeout)

        with self._state_lock:
            self.state.status = DaemonStatus.STOPPED
        self.persist_state()

        if self._instance_lock is not None:
            self._instance_lock.release()

        logger.info("Error feedback daemon stopped")

    def serve_forever(self) -> None:
        """Block until SIGINT/SIGTERM, then stop. Call from the main thread."""
        def _signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            self._shutdown_event.set()

        signal.signal(signal.SIGINT, _signal_handler)
        signal.signal(signal.SIGTERM, _signal_handler)

        while self.is_active and not self._shutdown_event.wait(1.0):
            pass

        self.stop(wait=True, timeout=30.0)

    def run_once(self) -> Optional[BatchResult]:
        """Run a single batch without the scheduler or watcher."""
        self.store.ensure_dirs()
        self._reconcile()

        was_stopped = self._stopped
        self._stopped = False
        try:
            return self.process_batch()
        finally:
            self._stopped = was_stopped

    def get_state(self) -> DaemonState:
        with self._state_lock:
            return self.state.model_copy()

    def process_batch(self) -> Optional[BatchResult]:
        """
        Scheduler callback: run one batch and fold its counts into the state.

        Returns:
            BatchResult, or None if skipped (stopped, already in flight) or
            the run failed
        """
        if self._stopped:
            return None

        if not self._batch_guard.acquire(blocking=False):
            logger.debug("Batch already in flight, skipping")
            return None

        try:
            with self._state_lock:
                self.state.last_poll_at = utc_now_iso()

            try:
                result = self.runner.run_batch(stop_requested=lambda: self._stopped)
            except Exception as e:
                logger.error(f"Batch processing error: {e}")
                with self._state_lock:
                    self.state.status = DaemonStatus.ERROR
                return None

            with self._state_lock:
                self.state.bundles_processed += result.processed
                self.state.bundles_resolved += result.resolved
                self.state.bundles_failed += result.failed + result.errored
                if self.state.status == DaemonStatus.ERROR and not self._stopped:
                    self.state.status = DaemonStatus.RUNNING

            if result.found:
                logger.info(f"Batch complete: {result.to_dict()}")

            return result

        finally:
            self.persist_state()
            self._batch_guard.release()

    def persist_state(self) -> None:
        """Write the state file. Failures are logged, never raised."""
        with self._state_lock:
            record = self.state.to_record()
        try:
            AtomicFileWriter.write_json(self.paths.state_file, record)
        except OSError as e:
            logger.warning(f"Failed to persist daemon state: {e}")

    def _start_watcher(self) -> None:
        watcher = PendingBundleWatcher(self.paths.pending, self._on_bundle_event)
        try:
            watcher.start()
        except WatchError as e:
            logger.warning(f"Failed to start file watcher, falling back to polling: {e}")
            return
        self.watcher = watcher

    def _on_bundle_event(self, file_path: str) -> None:
        self.scheduler.trigger("watch")

    def _reconcile(self) -> None:
        try:
            removed = self.store.reconcile()
        except StorageError as e:
            logger.warning(f"Failed to reconcile pending bundles: {e}")
            return
        if removed:
            logger.info(f"Removed {removed} stale pending bundle(s) already in processed/")

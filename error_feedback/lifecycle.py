"""
Daemon lifecycle: start, stop, status and cleanup.

DaemonLifecycle is an explicit handle owned by the caller. It guards
against duplicate starts within the process; across processes, status
falls back to the persisted state file plus a PID liveness probe.
"""

import logging
import os
import signal
from typing import Optional

from error_feedback.constants import ERROR_FEEDBACK_CLEANUP_MAX_AGE
from error_feedback.daemon import ErrorFeedbackDaemon, read_daemon_state
from error_feedback.config import parse_max_age
from error_feedback.errors import StorageError
from error_feedback.models import DaemonSettings, DaemonState, DaemonStatus
from error_feedback.paths import BundlePaths
from error_feedback.store import BundleStore


logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_MAX_AGE_SECONDS = parse_max_age(ERROR_FEEDBACK_CLEANUP_MAX_AGE)


def is_process_alive(pid: Optional[int]) -> bool:
    """Check whether a process exists (signal 0 probe)."""
    if pid is None or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    except OSError:
        return False
    return True


class DaemonLifecycle:
    """
    Owns at most one active ErrorFeedbackDaemon.
    """

    def __init__(
        self,
        paths: Optional[BundlePaths] = None,
        settings: Optional[DaemonSettings] = None
    ):
        self.paths = paths or BundlePaths.from_env()
        self.settings = settings or DaemonSettings()
        self.store = BundleStore(self.paths)
        self._daemon: Optional[ErrorFeedbackDaemon] = None

    @property
    def active_daemon(self) -> Optional[ErrorFeedbackDaemon]:
        return self._daemon

    def start(self, **options) -> ErrorFeedbackDaemon:
        """
        Start the daemon, or return the one already running.

        Args:
            **options: Passed to ErrorFeedbackDaemon (processor, hooks,
                settings override)
        """
        if self._daemon is not None and self._daemon.is_active:
            logger.info("Error feedback daemon is already running")
            return self._daemon

        options.setdefault("settings", self.settings)
        daemon = ErrorFeedbackDaemon(paths=self.paths, **options)
        daemon.start()
        self._daemon = daemon
        return daemon

    def stop(self, wait: bool = False, timeout: Optional[float] = None) -> None:
        """Stop the active daemon; no-op if there is none."""
        if self._daemon is None:
            logger.info("No active error feedback daemon to stop")
            return

        self._daemon.stop(wait=wait, timeout=timeout)
        self._daemon = None

    def status(self) -> DaemonState:
        """
        Current daemon state.

        Prefers the in-process daemon. Otherwise reads the state file; a
        'running' record whose PID no longer exists is reported as
        'stopped' (the file itself is left alone).
        """
        if self._daemon is not None:
            return self._daemon.get_state()

        persisted = read_daemon_state(self.paths.state_file)
        if persisted is None:
            return DaemonState(status=DaemonStatus.STOPPED)

        if persisted.status == DaemonStatus.RUNNING and persisted.pid:
            if not is_process_alive(persisted.pid):
                logger.debug(f"Daemon PID {persisted.pid} is gone; reporting stopped")
                return persisted.model_copy(update={"status": DaemonStatus.STOPPED})

        return persisted

    def signal_stop(self) -> bool:
        """
        Ask a daemon running in another process to stop (SIGTERM).

        Returns:
            True if a signal was sent
        """
        persisted = read_daemon_state(self.paths.state_file)
        if persisted is None or persisted.status != DaemonStatus.RUNNING:
            return False

        pid = persisted.pid
        if not pid or pid == os.getpid() or not is_process_alive(pid):
            return False

        try:
            os.kill(pid, signal.SIGTERM)
        except OSError as e:
            logger.warning(f"Failed to signal daemon PID {pid}: {e}")
            return False

        logger.info(f"Sent SIGTERM to daemon PID {pid}")
        return True

    def ensure_dirs(self) -> None:
        self.store.ensure_dirs()

    def pending_count(self) -> int:
        try:
            return self.store.pending_count()
        except StorageError as e:
            logger.warning(f"Failed to count pending bundles: {e}")
            return 0

    def cleanup(self, max_age_seconds: float = DEFAULT_CLEANUP_MAX_AGE_SECONDS) -> int:
        """Delete processed bundles older than max_age_seconds (default 7 days)."""
        return self.store.prune(max_age_seconds)

"""
Error Feedback - filesystem-backed error bundle queue daemon.

Skills and agents drop error bundles into a pending directory; the daemon
watches it, relays each bundle to a pluggable processor and moves it to
processed/ (or back to pending/ for a bounded number of retries).

Architecture: no database - directory structure is the source of truth.
- error-bundles/pending/            - bundles waiting to be processed
- error-bundles/processed/          - resolved or failed bundles
- error-bundles/processed/invalid/  - quarantined bundles
"""

__version__ = "1.0.0"
__author__ = "OpenClaw Project"

from error_feedback.models import (
    ErrorBundle,
    ErrorBundleContext,
    ErrorBundleEntry,
    ErrorBundleResolution,
    ErrorBundleSeverity,
    ErrorBundleSource,
    DaemonSettings,
    DaemonState,
    DaemonStatus,
)
from error_feedback.errors import (
    ErrorFeedbackError,
    StorageError,
    BundleValidationError,
    ProcessorError,
    WatchError,
    LockError,
)
from error_feedback.paths import BundlePaths
from error_feedback.atomic import AtomicFileWriter, FileLock
from error_feedback.store import BundleStore, ReadResult, ReadStatus
from error_feedback.config import ConfigManager, DEFAULT_CONFIG_FILE, parse_max_age
from error_feedback.processor import BundleProcessor, default_processor
from error_feedback.bundle_runner import BundleRunner, BatchResult
from error_feedback.scheduler import BatchScheduler
from error_feedback.watchdog import PendingBundleWatcher
from error_feedback.daemon import ErrorFeedbackDaemon, read_daemon_state
from error_feedback.lifecycle import DaemonLifecycle, is_process_alive
from error_feedback.emitter import (
    write_error_bundle,
    emit_error_bundle,
    emit_skill_error_bundle,
    emit_cron_job_error_bundle,
)

__all__ = [
    # Models
    "ErrorBundle",
    "ErrorBundleContext",
    "ErrorBundleEntry",
    "ErrorBundleResolution",
    "ErrorBundleSeverity",
    "ErrorBundleSource",
    "DaemonSettings",
    "DaemonState",
    "DaemonStatus",
    # Errors
    "ErrorFeedbackError",
    "StorageError",
    "BundleValidationError",
    "ProcessorError",
    "WatchError",
    "LockError",
    # Config
    "BundlePaths",
    "ConfigManager",
    "DEFAULT_CONFIG_FILE",
    "parse_max_age",
    # Utilities
    "AtomicFileWriter",
    "FileLock",
    # Components
    "BundleStore",
    "ReadResult",
    "ReadStatus",
    "BundleProcessor",
    "default_processor",
    "BundleRunner",
    "BatchResult",
    "BatchScheduler",
    "PendingBundleWatcher",
    "ErrorFeedbackDaemon",
    "read_daemon_state",
    "DaemonLifecycle",
    "is_process_alive",
    # Emitters
    "write_error_bundle",
    "emit_error_bundle",
    "emit_skill_error_bundle",
    "emit_cron_job_error_bundle",
]

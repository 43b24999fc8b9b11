"""
Tests for error_feedback daemon module.

Covers run_once, state persistence, start/stop, watcher fallback and the
single-instance lock.
"""

import json
import os
import threading
from unittest.mock import patch

import pytest

from error_feedback.daemon import ErrorFeedbackDaemon, read_daemon_state
from error_feedback.errors import LockError, StorageError, WatchError
from error_feedback.models import DaemonStatus, ErrorBundleResolution


class TestReadDaemonState:
    """Tests for read_daemon_state."""

    def test_missing_file(self, temp_dir):
        assert read_daemon_state(temp_dir / "missing.json") is None

    def test_corrupt_file(self, temp_dir, caplog):
        """Test an unreadable state file is reported as absent."""
        state_file = temp_dir / "state.json"
        state_file.write_text("{nope")

        assert read_daemon_state(state_file) is None
        assert "Failed to read daemon state" in caplog.text

    def test_valid_file(self, temp_dir):
        state_file = temp_dir / "state.json"
        state_file.write_text(json.dumps({"status": "running", "pid": 42, "bundlesProcessed": 7}))

        state = read_daemon_state(state_file)

        assert state.status == DaemonStatus.RUNNING
        assert state.pid == 42
        assert state.bundles_processed == 7


class TestErrorFeedbackDaemon:
    """Tests for ErrorFeedbackDaemon."""

    @pytest.fixture
    def daemon(self, bundle_paths, fast_settings, resolving_processor):
        d = ErrorFeedbackDaemon(paths=bundle_paths, settings=fast_settings,
                                processor=resolving_processor)
        yield d
        d.stop(wait=True, timeout=2.0)

    def test_init(self, daemon, fast_settings):
        """Test a new daemon is inactive and wired to its settings."""
        assert daemon.is_active is False
        assert daemon.state.status == DaemonStatus.STOPPED
        assert daemon.runner.max_batch_size == fast_settings.max_batch_size
        assert daemon.scheduler.debounce_seconds == 0.02
        assert daemon.watcher is None

    def test_run_once_counts(self, daemon, store, make_bundle):
        """Test a single batch updates counters and persists state."""
        bundle = make_bundle()
        store.write(bundle)

        result = daemon.run_once()

        assert result.resolved == 1
        state = daemon.get_state()
        assert state.bundles_processed == 1
        assert state.bundles_resolved == 1
        assert state.bundles_failed == 0
        assert state.last_poll_at is not None

        persisted = read_daemon_state(daemon.paths.state_file)
        assert persisted.bundles_processed == 1
        assert daemon.is_active is False

    def test_run_once_counts_processor_errors_as_failed(self, bundle_paths, fast_settings, store, make_bundle):
        """Test a raising processor is failed but not processed."""
        store.write(make_bundle())

        def _processor(bundle):
            raise RuntimeError("boom")

        daemon = ErrorFeedbackDaemon(paths=bundle_paths, settings=fast_settings, processor=_processor)
        daemon.run_once()

        state = daemon.get_state()
        assert state.bundles_processed == 0
        assert state.bundles_failed == 1

    def test_run_once_reconciles_first(self, daemon, store, make_bundle, resolving_processor):
        """Test stale pending copies of processed bundles are dropped, not reprocessed."""
        bundle = make_bundle()
        store.write(bundle)
        store.write(bundle, store.paths.processed)

        result = daemon.run_once()

        assert result.found == 0
        assert resolving_processor.seen == []
        assert not store.paths.pending_path(bundle.id).exists()

    def test_run_once_fails_bundles_without_retry_budget(self, bundle_paths, fast_settings, store, make_bundle):
        """Test unresolved bundles with maxRetries=0 all land in processed/ as failed."""
        bundles = [make_bundle(max_retries=0) for _ in range(3)]
        for bundle in bundles:
            store.write(bundle)

        daemon = ErrorFeedbackDaemon(
            paths=bundle_paths,
            settings=fast_settings,
            processor=lambda b: ErrorBundleResolution(resolved=False, action="cannot fix"),
        )
        daemon.run_once()

        assert len(store.list_processed()) == 3
        assert store.list_pending() == []
        state = daemon.get_state()
        assert state.bundles_failed == 3
        assert state.bundles_resolved == 0
        assert state.bundles_processed == 3
        for bundle in bundles:
            stored = store.load(store.paths.processed_path(bundle.id))
            assert stored.processed is True
            assert stored.resolution.resolved is False

    def test_counters_accumulate(self, daemon, store, make_bundle):
        """Test counters are cumulative across runs."""
        store.write(make_bundle())
        daemon.run_once()
        store.write(make_bundle())
        daemon.run_once()

        assert daemon.get_state().bundles_resolved == 2

    def test_process_batch_skipped_when_stopped(self, daemon):
        """Test the scheduler callback does nothing on a stopped daemon."""
        assert daemon.process_batch() is None
        assert daemon.state.last_poll_at is None

    def test_listing_failure_sets_error_status(self, daemon, store, make_bundle):
        """Test a failing run flips status to error and a later run recovers."""
        daemon._stopped = False
        daemon.state.status = DaemonStatus.RUNNING

        with patch.object(daemon.store, "list_pending",
                          side_effect=StorageError(store.paths.pending, "EACCES")):
            assert daemon.process_batch() is None

        assert daemon.get_state().status == DaemonStatus.ERROR
        assert read_daemon_state(daemon.paths.state_file).status == DaemonStatus.ERROR

        store.write(make_bundle())
        result = daemon.process_batch()

        assert result.resolved == 1
        assert daemon.get_state().status == DaemonStatus.RUNNING
        daemon._stopped = True

    def test_persist_state_failure_is_logged(self, daemon, caplog):
        """Test a state write failure is logged, never raised."""
        with patch("error_feedback.daemon.AtomicFileWriter.write_json",
                   side_effect=OSError("read-only")):
            daemon.persist_state()

        assert "Failed to persist daemon state" in caplog.text

    def test_start_and_stop(self, daemon, store, make_bundle, wait_for):
        """Test start marks running, sweeps pending, and stop persists stopped."""
        bundle = make_bundle()
        store.write(bundle)

        daemon.start()

        assert daemon.is_active
        state = daemon.get_state()
        assert state.status == DaemonStatus.RUNNING
        assert state.pid == os.getpid()
        assert state.started_at is not None
        assert read_daemon_state(daemon.paths.state_file).status == DaemonStatus.RUNNING

        assert wait_for(lambda: store.paths.processed_path(bundle.id).exists())

        daemon.stop(wait=True, timeout=2.0)

        assert daemon.is_active is False
        persisted = read_daemon_state(daemon.paths.state_file)
        assert persisted.status == DaemonStatus.STOPPED
        assert persisted.bundles_resolved == 1

    def test_start_twice_is_noop(self, daemon, caplog):
        """Test a second start on an active daemon only warns."""
        daemon.start()
        started_at = daemon.get_state().started_at

        daemon.start()

        assert daemon.get_state().started_at == started_at
        assert "already running" in caplog.text

    def test_stop_when_not_started(self, daemon, bundle_paths):
        """Test stop on an inactive daemon does nothing."""
        daemon.stop()

        assert not bundle_paths.state_file.exists()

    def test_restart_while_batch_in_flight(self, bundle_paths, fast_settings, store, make_bundle, wait_for):
        """Test a daemon stopped mid-batch and started again keeps processing."""
        started = threading.Event()
        release = threading.Event()

        def _processor(bundle):
            started.set()
            release.wait(5.0)
            return ErrorBundleResolution(resolved=True, action="patched skill")

        daemon = ErrorFeedbackDaemon(paths=bundle_paths, settings=fast_settings, processor=_processor)
        first = make_bundle()
        store.write(first)

        daemon.start()
        try:
            assert started.wait(2.0)
            daemon.stop()
            daemon.start()

            assert daemon.is_active
            assert daemon.scheduler.running

            release.set()
            late = make_bundle()
            store.write(late)

            assert wait_for(lambda: store.paths.processed_path(first.id).exists())
            assert wait_for(lambda: store.paths.processed_path(late.id).exists())
        finally:
            release.set()
            daemon.stop(wait=True, timeout=2.0)

    def test_poll_picks_up_new_bundles(self, daemon, store, make_bundle, wait_for):
        """Test bundles written after start are found by polling."""
        daemon.start()
        bundle = make_bundle()
        store.write(bundle)

        assert wait_for(lambda: store.paths.processed_path(bundle.id).exists())

    def test_watcher_picks_up_new_bundles(self, bundle_paths, fast_settings, resolving_processor,
                                          store, make_bundle, wait_for):
        """Test bundles written after start are found via filesystem events."""
        settings = fast_settings.model_copy(update={"watch_enabled": True, "poll_interval_ms": 60000})
        daemon = ErrorFeedbackDaemon(paths=bundle_paths, settings=settings,
                                     processor=resolving_processor)
        daemon.start()
        try:
            assert daemon.watcher is not None
            assert wait_for(lambda: daemon.scheduler.run_count >= 1)

            bundle = make_bundle()
            store.write(bundle)

            assert wait_for(lambda: store.paths.processed_path(bundle.id).exists())
        finally:
            daemon.stop(wait=True, timeout=2.0)

        assert daemon.watcher is None

    def test_watcher_failure_falls_back_to_polling(self, bundle_paths, fast_settings, resolving_processor,
                                                   store, make_bundle, wait_for, caplog):
        """Test the daemon keeps working by polling when watching fails."""
        settings = fast_settings.model_copy(update={"watch_enabled": True})
        daemon = ErrorFeedbackDaemon(paths=bundle_paths, settings=settings,
                                     processor=resolving_processor)

        with patch("error_feedback.daemon.PendingBundleWatcher.start",
                   side_effect=WatchError(bundle_paths.pending, "inotify limit reached")):
            daemon.start()
        try:
            assert daemon.watcher is None
            assert "falling back to polling" in caplog.text

            bundle = make_bundle()
            store.write(bundle)
            assert wait_for(lambda: store.paths.processed_path(bundle.id).exists())
        finally:
            daemon.stop(wait=True, timeout=2.0)

    def test_serve_forever_stops_on_shutdown(self, daemon):
        """Test serve_forever installs signal handlers and stops on shutdown."""
        with patch("error_feedback.daemon.signal.signal") as mock_signal:
            daemon.start()
            threading.Timer(0.1, daemon._shutdown_event.set).start()

            daemon.serve_forever()

        assert mock_signal.call_count == 2
        assert daemon.is_active is False
        assert read_daemon_state(daemon.paths.state_file).status == DaemonStatus.STOPPED

    def test_single_instance_lock(self, bundle_paths, fast_settings, resolving_processor):
        """Test a second daemon on the same queue is refused when locking is on."""
        settings = fast_settings.model_copy(update={"single_instance_lock": True})
        first = ErrorFeedbackDaemon(paths=bundle_paths, settings=settings, processor=resolving_processor)
        second = ErrorFeedbackDaemon(paths=bundle_paths, settings=settings, processor=resolving_processor)

        first.start()
        try:
            with pytest.raises(LockError):
                second.start()
            assert second.is_active is False
        finally:
            first.stop(wait=True, timeout=2.0)

        second.start()
        second.stop(wait=True, timeout=2.0)

    def test_hooks_are_forwarded(self, bundle_paths, fast_settings, store, make_bundle, resolving_processor):
        """Test processing hooks reach the runner."""
        seen = []
        daemon = ErrorFeedbackDaemon(
            paths=bundle_paths,
            settings=fast_settings,
            processor=resolving_processor,
            on_bundle_processed=lambda bundle, resolution: seen.append(bundle.id),
        )
        bundle = make_bundle()
        store.write(bundle)

        daemon.run_once()

        assert seen == [bundle.id]

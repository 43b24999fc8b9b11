"""Test fixtures for error-feedback tests (Directory-Based Queue Architecture)."""

import json
import pytest
import tempfile
import shutil
import time
from pathlib import Path

from error_feedback.models import (
    DaemonSettings, ErrorBundle, ErrorBundleEntry, ErrorBundleResolution, ErrorBundleSource
)
from error_feedback.paths import BundlePaths
from error_feedback.store import BundleStore


def _wait_for(predicate, timeout=5.0, interval=0.02):
    """Poll predicate until it returns truthy or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def bundle_paths(temp_dir):
    """Queue paths rooted in the temp directory."""
    return BundlePaths.under(temp_dir)


@pytest.fixture
def store(bundle_paths):
    """Bundle store with pending/, processed/ and processed/invalid/ created."""
    bundle_store = BundleStore(bundle_paths)
    bundle_store.ensure_dirs()
    return bundle_store


@pytest.fixture
def make_bundle():
    """Factory for ErrorBundle instances with sensible defaults."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {
            "id": f"20260101T000000{counter['n']:06d}Z-test{counter['n']:08x}",
            "source": ErrorBundleSource(skill_name="deploy", agent_id="main"),
            "errors": [ErrorBundleEntry(message="deploy script exited with 1")],
            "max_retries": 3,
        }
        data.update(overrides)
        return ErrorBundle(**data)

    return _make


@pytest.fixture
def write_raw(bundle_paths):
    """Write an arbitrary file into pending/ (bypassing validation)."""
    def _write(name, content):
        bundle_paths.pending.mkdir(parents=True, exist_ok=True)
        path = bundle_paths.pending / name
        if not isinstance(content, str):
            content = json.dumps(content)
        path.write_text(content)
        return path

    return _write


@pytest.fixture
def fast_settings():
    """Settings with short timers and no inter-bundle delay."""
    return DaemonSettings(
        poll_interval_ms=50,
        debounce_ms=20,
        max_batch_size=10,
        inter_bundle_delay_ms=0,
        watch_enabled=False,
    )


@pytest.fixture
def resolving_processor():
    """Processor that resolves every bundle and records what it saw."""
    seen = []

    def _processor(bundle):
        seen.append(bundle.id)
        return ErrorBundleResolution(resolved=True, action="patched skill")

    _processor.seen = seen
    return _processor


@pytest.fixture
def retrying_processor():
    """Processor that never resolves and always asks for a retry."""
    def _processor(bundle):
        return ErrorBundleResolution(resolved=False, action="needs another look", retry_triggered=True)

    return _processor


@pytest.fixture
def wait_for():
    """Poll a predicate until it holds (for thread-driven behaviour)."""
    return _wait_for

"""
Path resolution for error bundles and daemon state.

Default layout:
- ~/.openclaw/error-bundles/pending/            - bundles waiting to be processed
- ~/.openclaw/error-bundles/processed/          - resolved or failed bundles
- ~/.openclaw/error-bundles/processed/invalid/  - quarantined, unreadable bundles
- ~/.openclaw/error-feedback-daemon.json        - persisted daemon state
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from error_feedback.constants import (
    BUNDLE_FILE_PREFIX,
    BUNDLE_FILE_SUFFIX,
    CONFIG_FILENAME,
    DAEMON_STATE_FILENAME,
    DEFAULT_STATE_DIR,
    ERROR_BUNDLES_DIRNAME,
    INVALID_DIRNAME,
    OPENCLAW_ERROR_BUNDLES_DIR_ENV,
    OPENCLAW_ERROR_FEEDBACK_CONFIG_ENV,
    OPENCLAW_ERROR_FEEDBACK_STATE_ENV,
    OPENCLAW_STATE_DIR_ENV,
    PENDING_DIRNAME,
    PROCESSED_DIRNAME,
)


def _override(env: Mapping[str, str], name: str) -> Optional[Path]:
    value = (env.get(name) or "").strip()
    if value:
        return Path(value).expanduser().resolve()
    return None


def resolve_state_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    """State directory, ``$OPENCLAW_STATE_DIR`` or ``~/.openclaw``."""
    env = os.environ if env is None else env
    return _override(env, OPENCLAW_STATE_DIR_ENV) or DEFAULT_STATE_DIR


def resolve_error_bundles_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    """Root directory for error bundles."""
    env = os.environ if env is None else env
    return _override(env, OPENCLAW_ERROR_BUNDLES_DIR_ENV) or (
        resolve_state_dir(env) / ERROR_BUNDLES_DIRNAME
    )


def resolve_daemon_state_path(env: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if env is None else env
    return _override(env, OPENCLAW_ERROR_FEEDBACK_STATE_ENV) or (
        resolve_state_dir(env) / DAEMON_STATE_FILENAME
    )


def resolve_config_path(env: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if env is None else env
    return _override(env, OPENCLAW_ERROR_FEEDBACK_CONFIG_ENV) or (
        resolve_state_dir(env) / CONFIG_FILENAME
    )


def build_bundle_filename(bundle_id: str) -> str:
    """Filename for a bundle: ``error-<id>.json``."""
    return f"{BUNDLE_FILE_PREFIX}{bundle_id}{BUNDLE_FILE_SUFFIX}"


def bundle_id_from_filename(name: str) -> Optional[str]:
    """Inverse of build_bundle_filename; None if the name doesn't follow the convention."""
    if not (name.startswith(BUNDLE_FILE_PREFIX) and name.endswith(BUNDLE_FILE_SUFFIX)):
        return None
    bundle_id = name[len(BUNDLE_FILE_PREFIX):-len(BUNDLE_FILE_SUFFIX)]
    return bundle_id or None


@dataclass(frozen=True)
class BundlePaths:
    """Resolved locations for one queue."""

    root: Path
    state_file: Path

    @property
    def pending(self) -> Path:
        return self.root / PENDING_DIRNAME

    @property
    def processed(self) -> Path:
        return self.root / PROCESSED_DIRNAME

    @property
    def invalid(self) -> Path:
        return self.processed / INVALID_DIRNAME

    @property
    def lock_file(self) -> Path:
        return self.root / ".daemon.lock"

    def pending_path(self, bundle_id: str) -> Path:
        return self.pending / build_bundle_filename(bundle_id)

    def processed_path(self, bundle_id: str) -> Path:
        return self.processed / build_bundle_filename(bundle_id)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "BundlePaths":
        """Resolve paths from environment overrides, falling back to defaults."""
        return cls(
            root=resolve_error_bundles_dir(env),
            state_file=resolve_daemon_state_path(env),
        )

    @classmethod
    def under(cls, root: Path) -> "BundlePaths":
        """All paths beneath a single directory (tests, throwaway queues)."""
        root = Path(root)
        return cls(root=root / ERROR_BUNDLES_DIRNAME, state_file=root / DAEMON_STATE_FILENAME)

"""
Environment variable names and default values for error-feedback.

All environment variables are optional and have sensible defaults.
"""

import os
from pathlib import Path

# Location overrides
OPENCLAW_STATE_DIR_ENV = "OPENCLAW_STATE_DIR"
OPENCLAW_ERROR_BUNDLES_DIR_ENV = "OPENCLAW_ERROR_BUNDLES_DIR"
OPENCLAW_ERROR_FEEDBACK_STATE_ENV = "OPENCLAW_ERROR_FEEDBACK_STATE"
OPENCLAW_ERROR_FEEDBACK_CONFIG_ENV = "OPENCLAW_ERROR_FEEDBACK_CONFIG"

# Default paths
DEFAULT_STATE_DIR = Path.home() / ".openclaw"
ERROR_BUNDLES_DIRNAME = "error-bundles"
PENDING_DIRNAME = "pending"
PROCESSED_DIRNAME = "processed"
INVALID_DIRNAME = "invalid"
DAEMON_STATE_FILENAME = "error-feedback-daemon.json"
CONFIG_FILENAME = "error-feedback.json"

# Bundle file naming: error-<id>.json
BUNDLE_FILE_PREFIX = "error-"
BUNDLE_FILE_SUFFIX = ".json"
BUNDLE_FILE_PATTERN = f"{BUNDLE_FILE_PREFIX}*{BUNDLE_FILE_SUFFIX}"
TEMP_FILE_SUFFIX = ".tmp"

BUNDLE_SCHEMA_VERSION = 1

# Daemon settings
ERROR_FEEDBACK_POLL_INTERVAL_MS = int(os.getenv("ERROR_FEEDBACK_POLL_INTERVAL_MS", "5000"))
ERROR_FEEDBACK_DEBOUNCE_MS = int(os.getenv("ERROR_FEEDBACK_DEBOUNCE_MS", "500"))
ERROR_FEEDBACK_MAX_BATCH_SIZE = int(os.getenv("ERROR_FEEDBACK_MAX_BATCH_SIZE", "10"))
ERROR_FEEDBACK_INTER_BUNDLE_DELAY_MS = int(os.getenv("ERROR_FEEDBACK_INTER_BUNDLE_DELAY_MS", "1000"))
ERROR_FEEDBACK_WATCH_ENABLED = os.getenv("ERROR_FEEDBACK_WATCH_ENABLED", "true").lower() == "true"
ERROR_FEEDBACK_MAX_RETRIES = int(os.getenv("ERROR_FEEDBACK_MAX_RETRIES", "3"))
ERROR_FEEDBACK_CLEANUP_MAX_AGE = os.getenv("ERROR_FEEDBACK_CLEANUP_MAX_AGE", "7d")
ERROR_FEEDBACK_SINGLE_INSTANCE_LOCK = os.getenv("ERROR_FEEDBACK_SINGLE_INSTANCE_LOCK", "false").lower() == "true"

# Watcher join timeout on shutdown
WATCHER_STOP_TIMEOUT = 5.0

"""
Data models for the error feedback daemon.

Error bundles are structured error reports written by skills, agents and
scheduled jobs when they fail. On disk they are camelCase JSON; in Python
the attributes are snake_case with camelCase aliases.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from error_feedback.constants import (
    BUNDLE_SCHEMA_VERSION,
    ERROR_FEEDBACK_CLEANUP_MAX_AGE,
    ERROR_FEEDBACK_DEBOUNCE_MS,
    ERROR_FEEDBACK_INTER_BUNDLE_DELAY_MS,
    ERROR_FEEDBACK_MAX_BATCH_SIZE,
    ERROR_FEEDBACK_MAX_RETRIES,
    ERROR_FEEDBACK_POLL_INTERVAL_MS,
    ERROR_FEEDBACK_SINGLE_INSTANCE_LOCK,
    ERROR_FEEDBACK_WATCH_ENABLED,
)


def utc_now_iso() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_bundle_id() -> str:
    """
    Generate a new bundle ID.

    IDs start with a UTC timestamp so that sorting bundle filenames
    lexicographically yields arrival order.
    """
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return f"{stamp}-{uuid.uuid4().hex[:12]}"


class WireModel(BaseModel):
    """Base for records persisted as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> Dict[str, Any]:
        """Serialize to a JSON-ready dict using the on-disk field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ErrorBundleSeverity(str, Enum):
    """Severity of a single error entry."""
    ERROR = "error"
    WARNING = "warning"
    FATAL = "fatal"


class ErrorBundleSource(WireModel):
    """Provenance of a bundle: what produced the error."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    skill_name: Optional[str] = None
    agent_id: Optional[str] = None
    session_key: Optional[str] = None
    cron_job_id: Optional[str] = None
    channel: Optional[str] = None


class ErrorBundleContext(WireModel):
    """Execution context surrounding the error."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    command: Optional[str] = None
    workspace_dir: Optional[str] = None
    environment: Optional[Dict[str, str]] = None
    related_files: Optional[List[str]] = None
    skill_content: Optional[str] = None


class ErrorBundleEntry(WireModel):
    """One error inside a bundle."""

    message: str
    stack: Optional[str] = None
    severity: ErrorBundleSeverity = ErrorBundleSeverity.ERROR
    code: Optional[str] = None


class ErrorBundleResolution(WireModel):
    """Outcome of processing a bundle."""

    resolved: bool
    action: str = ""
    modified_files: Optional[List[str]] = None
    retry_triggered: bool = False


class ErrorBundle(WireModel):
    """
    A durable unit of work.

    The ID doubles as the filename key (``error-<id>.json``), so it may not
    contain path separators.
    """

    id: str = Field(min_length=1)
    created_at: str = Field(default_factory=utc_now_iso)
    version: Literal[1] = BUNDLE_SCHEMA_VERSION
    source: ErrorBundleSource = Field(default_factory=ErrorBundleSource)
    context: ErrorBundleContext = Field(default_factory=ErrorBundleContext)
    errors: List[ErrorBundleEntry] = Field(default_factory=list)
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=ERROR_FEEDBACK_MAX_RETRIES, ge=0)
    processed: bool = False
    processed_at: Optional[str] = None
    resolution: Optional[ErrorBundleResolution] = None

    @field_validator("id")
    @classmethod
    def _id_is_filename_safe(cls, value: str) -> str:
        if "/" in value or "\\" in value or value in (".", ".."):
            raise ValueError("id must not contain path separators")
        return value

    @model_validator(mode="after")
    def _retry_count_within_budget(self) -> "ErrorBundle":
        if self.retry_count > self.max_retries:
            raise ValueError(
                f"retryCount {self.retry_count} exceeds maxRetries {self.max_retries}"
            )
        return self

    @property
    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries


class DaemonStatus(str, Enum):
    """Lifecycle status of the daemon."""
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class DaemonState(WireModel):
    """Daemon status and counters, persisted after every batch run."""

    status: DaemonStatus = DaemonStatus.STOPPED
    started_at: Optional[str] = None
    last_poll_at: Optional[str] = None
    bundles_processed: int = 0
    bundles_resolved: int = 0
    bundles_failed: int = 0
    pid: Optional[int] = None


class DaemonSettings(BaseModel):
    """Daemon tunables, loaded from the settings file."""

    poll_interval_ms: int = Field(default=ERROR_FEEDBACK_POLL_INTERVAL_MS, gt=0)
    debounce_ms: int = Field(default=ERROR_FEEDBACK_DEBOUNCE_MS, ge=0)
    max_batch_size: int = Field(default=ERROR_FEEDBACK_MAX_BATCH_SIZE, gt=0)
    inter_bundle_delay_ms: int = Field(default=ERROR_FEEDBACK_INTER_BUNDLE_DELAY_MS, ge=0)
    watch_enabled: bool = ERROR_FEEDBACK_WATCH_ENABLED
    default_max_retries: int = Field(default=ERROR_FEEDBACK_MAX_RETRIES, ge=0)
    cleanup_max_age: str = Field(default=ERROR_FEEDBACK_CLEANUP_MAX_AGE, pattern=r"^\d+[dhm]$")
    single_instance_lock: bool = ERROR_FEEDBACK_SINGLE_INSTANCE_LOCK


class SettingsFile(BaseModel):
    """On-disk layout of the settings file."""

    version: str = "1.0"
    settings: DaemonSettings = Field(default_factory=DaemonSettings)

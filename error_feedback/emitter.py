"""
Bundle emitter: the producer side of the queue.

Skills, agents and scheduled jobs call these helpers when they fail. A
bundle is serialized and atomically created in pending/, where the daemon
picks it up.
"""

import errno
import logging
import traceback
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from error_feedback.constants import ERROR_FEEDBACK_MAX_RETRIES
from error_feedback.errors import describe_error
from error_feedback.models import (
    ErrorBundle,
    ErrorBundleContext,
    ErrorBundleEntry,
    ErrorBundleSeverity,
    ErrorBundleSource,
    new_bundle_id,
)
from error_feedback.paths import BundlePaths
from error_feedback.store import BundleStore


logger = logging.getLogger(__name__)

ErrorLike = Union[BaseException, str]
ErrorInput = Union[ErrorLike, ErrorBundleEntry, Tuple[ErrorLike, ErrorBundleSeverity]]


def extract_error_code(error: ErrorLike) -> Optional[str]:
    """ENOENT-style code for OS errors, or an exception's own ``code`` attribute."""
    if isinstance(error, OSError) and error.errno in errno.errorcode:
        return errno.errorcode[error.errno]

    code = getattr(error, "code", None)
    if isinstance(code, (str, int)) and not isinstance(code, bool):
        return str(code)
    return None


def to_error_entry(
    error: ErrorLike,
    severity: ErrorBundleSeverity = ErrorBundleSeverity.ERROR
) -> ErrorBundleEntry:
    """Convert a raw error into an ErrorBundleEntry."""
    if isinstance(error, BaseException):
        stack = None
        if error.__traceback__ is not None:
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return ErrorBundleEntry(
            message=describe_error(error),
            stack=stack,
            severity=severity,
            code=extract_error_code(error),
        )

    return ErrorBundleEntry(message=str(error), severity=severity)


def _normalize_errors(errors: Iterable[ErrorInput]) -> List[ErrorBundleEntry]:
    entries = []
    for item in errors:
        if isinstance(item, ErrorBundleEntry):
            entries.append(item)
        elif isinstance(item, tuple):
            error, severity = item
            entries.append(to_error_entry(error, ErrorBundleSeverity(severity)))
        else:
            entries.append(to_error_entry(item))
    return entries


def write_error_bundle(
    source: Union[ErrorBundleSource, Mapping[str, Any]],
    errors: Iterable[ErrorInput],
    context: Union[ErrorBundleContext, Mapping[str, Any], None] = None,
    max_retries: int = ERROR_FEEDBACK_MAX_RETRIES,
    store: Optional[BundleStore] = None
) -> ErrorBundle:
    """
    Create a new bundle in pending/.

    Args:
        source: What produced the error (skill, agent, session, cron job)
        errors: Exceptions, messages, (error, severity) pairs or entries
        context: Execution context (command, workspace, files, ...)
        max_retries: Retry ceiling for this bundle
        store: Target store (default: resolved from env)

    Returns:
        The written bundle

    Raises:
        StorageError: if the bundle cannot be written
    """
    store = store or BundleStore(BundlePaths.from_env())

    bundle = ErrorBundle(
        id=new_bundle_id(),
        source=ErrorBundleSource.model_validate(source or {}),
        context=ErrorBundleContext.model_validate(context or {}),
        errors=_normalize_errors(errors),
        max_retries=max_retries,
    )

    store.write(bundle)

    logger.info(
        f"Error bundle written: {bundle.id} ({len(bundle.errors)} error(s)), "
        f"skill={bundle.source.skill_name} agent={bundle.source.agent_id}"
    )

    return bundle


def emit_error_bundle(
    source: Union[ErrorBundleSource, Mapping[str, Any]],
    error: Union[ErrorLike, ErrorBundleEntry],
    context: Union[ErrorBundleContext, Mapping[str, Any], None] = None,
    severity: ErrorBundleSeverity = ErrorBundleSeverity.ERROR,
    store: Optional[BundleStore] = None
) -> Optional[ErrorBundle]:
    """
    Best-effort bundle emission for one error.

    A prepared ErrorBundleEntry is written as is and keeps its own severity.

    Never raises: a failure to write is logged so that reporting an error
    cannot disturb the caller's own error handling.
    """
    try:
        return write_error_bundle(
            source=source,
            errors=[error if isinstance(error, ErrorBundleEntry) else (error, severity)],
            context=context,
            store=store,
        )
    except Exception as e:
        logger.warning(f"Failed to emit error bundle: {describe_error(e)}")
        return None


def emit_skill_error_bundle(
    skill_name: str,
    error: ErrorLike,
    agent_id: Optional[str] = None,
    session_key: Optional[str] = None,
    workspace_dir: Optional[str] = None,
    command: Optional[str] = None,
    skill_content: Optional[str] = None,
    related_files: Optional[List[str]] = None,
    severity: ErrorBundleSeverity = ErrorBundleSeverity.ERROR,
    store: Optional[BundleStore] = None
) -> Optional[ErrorBundle]:
    """Emit a bundle for a failed skill execution."""
    return emit_error_bundle(
        source=ErrorBundleSource(
            skill_name=skill_name,
            agent_id=agent_id,
            session_key=session_key,
        ),
        context=ErrorBundleContext(
            command=command,
            workspace_dir=workspace_dir,
            skill_content=skill_content,
            related_files=related_files,
        ),
        error=error,
        severity=severity,
        store=store,
    )


def emit_cron_job_error_bundle(
    job_id: str,
    job_name: str,
    error: str,
    agent_id: Optional[str] = None,
    session_key: Optional[str] = None,
    message: Optional[str] = None,
    workspace_dir: Optional[str] = None,
    store: Optional[BundleStore] = None
) -> Optional[ErrorBundle]:
    """Emit a bundle for a failed scheduled job."""
    # Job failures arrive as text; record where they were reported from
    entry = ErrorBundleEntry(message=error, stack="".join(traceback.format_stack()))
    return emit_error_bundle(
        source=ErrorBundleSource(
            skill_name=job_name,
            agent_id=agent_id,
            session_key=session_key,
            cron_job_id=job_id,
        ),
        context=ErrorBundleContext(command=message, workspace_dir=workspace_dir),
        error=entry,
        store=store,
    )

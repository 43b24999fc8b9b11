"""
Bundle processors.

A processor inspects one bundle and decides its resolution. It may be a
plain function or a coroutine function, and may return an
ErrorBundleResolution or an equivalent dict.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Union

from error_feedback.errors import ProcessorError, describe_error
from error_feedback.models import ErrorBundle, ErrorBundleResolution


logger = logging.getLogger(__name__)

ProcessorResult = Union[ErrorBundleResolution, Dict[str, Any]]
BundleProcessor = Callable[[ErrorBundle], Union[ProcessorResult, Awaitable[ProcessorResult]]]

STACK_PREVIEW_LINES = 3


def format_bundle_summary(bundle: ErrorBundle) -> str:
    """Render a bundle for an operator reading the daemon's output."""
    lines = [
        f"[error-feedback] Error bundle {bundle.id} "
        f"(attempt {bundle.retry_count + 1}/{bundle.max_retries})",
        f"  created: {bundle.created_at}",
    ]

    source, context = bundle.source, bundle.context
    if source.skill_name:
        lines.append(f"  skill: {source.skill_name}")
    if source.agent_id:
        lines.append(f"  agent: {source.agent_id}")
    if source.cron_job_id:
        lines.append(f"  cron job: {source.cron_job_id}")
    if context.workspace_dir:
        lines.append(f"  workspace: {context.workspace_dir}")
    if context.command:
        lines.append(f"  command: {context.command}")
    if context.related_files:
        lines.append(f"  files: {', '.join(context.related_files)}")

    lines.append("  errors:")
    for index, entry in enumerate(bundle.errors, start=1):
        line = f"  [{index}] {entry.severity.value}: {entry.message}"
        if entry.code:
            line += f" ({entry.code})"
        lines.append(line)
        if entry.stack:
            stack_lines: List[str] = [s for s in entry.stack.splitlines() if s.strip()]
            for stack_line in stack_lines[-STACK_PREVIEW_LINES:]:
                lines.append(f"      {stack_line.strip()}")

    return "\n".join(lines)


def default_processor(bundle: ErrorBundle) -> ErrorBundleResolution:
    """
    Relay the bundle to the operator and ask for a retry.

    Prints a summary to stdout (and the skill content, if captured) so the
    operator session can pick it up. Requests a retry while the bundle is
    still under its retry ceiling.
    """
    summary = format_bundle_summary(bundle)
    logger.info(summary)
    print(summary, flush=True)

    if bundle.context.skill_content:
        print(
            f"\n[error-feedback] Skill content at time of error:\n{bundle.context.skill_content}",
            flush=True
        )

    return ErrorBundleResolution(
        resolved=False,
        action="relayed to operator for analysis",
        retry_triggered=bundle.can_retry,
    )


async def _await_result(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


def invoke_processor(processor: BundleProcessor, bundle: ErrorBundle) -> ErrorBundleResolution:
    """
    Call a processor and normalize its result.

    The processor gets a deep copy so it cannot mutate the queued record.

    Raises:
        ProcessorError: the processor raised, or returned something that
            isn't a resolution
    """
    try:
        result = processor(bundle.model_copy(deep=True))

        if inspect.isawaitable(result):
            result = asyncio.run(_await_result(result))

        if isinstance(result, ErrorBundleResolution):
            return result
        if isinstance(result, dict):
            return ErrorBundleResolution.model_validate(result)

        raise TypeError(f"processor returned {type(result).__name__}, expected a resolution")

    except Exception as e:
        raise ProcessorError(bundle.id, describe_error(e)) from e

"""
Bundle runner: the per-batch processing engine.

Each run takes up to max_batch_size pending bundles in arrival order and
drives every one through:

    read -> (invalid) -> quarantine
    read -> already processed -> processed/          (catch-up)
    read -> processor -> resolved                   -> processed/
                      -> unresolved, retry allowed  -> back to pending/
                      -> unresolved otherwise       -> processed/
                      -> processor raised           -> processed/

A failing bundle never aborts the run.
"""

import logging
import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Optional

from error_feedback.constants import ERROR_FEEDBACK_INTER_BUNDLE_DELAY_MS, ERROR_FEEDBACK_MAX_BATCH_SIZE
from error_feedback.errors import ProcessorError, StorageError
from error_feedback.models import ErrorBundle, ErrorBundleResolution
from error_feedback.processor import BundleProcessor, default_processor, invoke_processor
from error_feedback.store import BundleStore


logger = logging.getLogger(__name__)

BundleProcessedHook = Callable[[ErrorBundle, ErrorBundleResolution], None]
ProcessErrorHook = Callable[[ErrorBundle, BaseException], None]


@dataclass
class BatchResult:
    """Outcome counts for one batch run."""

    found: int = 0
    resolved: int = 0
    failed: int = 0
    retried: int = 0
    errored: int = 0
    quarantined: int = 0
    caught_up: int = 0
    storage_errors: int = 0
    remaining: int = 0

    @property
    def processed(self) -> int:
        """Bundles the processor returned a resolution for."""
        return self.resolved + self.failed + self.retried

    def to_dict(self) -> Dict[str, int]:
        data = asdict(self)
        data["processed"] = self.processed
        return data


class BundleRunner:
    """
    Processes pending bundles with error containment per bundle.
    """

    def __init__(
        self,
        store: BundleStore,
        processor: Optional[BundleProcessor] = None,
        max_batch_size: int = ERROR_FEEDBACK_MAX_BATCH_SIZE,
        inter_bundle_delay_ms: int = ERROR_FEEDBACK_INTER_BUNDLE_DELAY_MS,
        on_bundle_processed: Optional[BundleProcessedHook] = None,
        on_process_error: Optional[ProcessErrorHook] = None
    ):
        """
        Initialize runner.

        Args:
            store: Bundle store for the queue directories
            processor: Bundle processor (default: relay to operator)
            max_batch_size: Bundles handled per run; the rest wait
            inter_bundle_delay_ms: Pause between bundles in a run
            on_bundle_processed: Called after a bundle reaches processed/
            on_process_error: Called when the processor raises
        """
        self.store = store
        self.processor = processor or default_processor
        self.max_batch_size = max_batch_size
        self.inter_bundle_delay_seconds = inter_bundle_delay_ms / 1000.0
        self.on_bundle_processed = on_bundle_processed
        self.on_process_error = on_process_error

    def run_batch(self, stop_requested: Optional[Callable[[], bool]] = None) -> BatchResult:
        """
        Run one batch.

        Args:
            stop_requested: Checked before each bundle; True ends the run early

        Returns:
            BatchResult with per-outcome counts

        Raises:
            StorageError: if the pending directory cannot be listed
        """
        result = BatchResult()

        pending_files = self.store.list_pending()
        result.found = len(pending_files)
        if not pending_files:
            return result

        logger.info(f"Found {len(pending_files)} pending error bundle(s)")

        batch = pending_files[:self.max_batch_size]
        result.remaining = len(pending_files) - len(batch)

        for index, file_path in enumerate(batch):
            if stop_requested is not None and stop_requested():
                result.remaining += len(batch) - index
                break

            read = self.store.read(file_path)

            if not read.ok:
                logger.warning(f"Invalid error bundle at {file_path}: {read.reason}")
                if self.store.quarantine(file_path) is not None:
                    result.quarantined += 1
                continue

            bundle = read.bundle

            try:
                if bundle.processed:
                    # Stale leftover from an interrupted move
                    self.store.move_to_processed(bundle)
                    result.caught_up += 1
                    continue

                self._process_bundle(bundle, result)
            except StorageError as e:
                result.storage_errors += 1
                logger.error(f"Storage failure while handling bundle {bundle.id}: {e}")

            if index < len(batch) - 1 and self.inter_bundle_delay_seconds > 0:
                time.sleep(self.inter_bundle_delay_seconds)

        return result

    def _process_bundle(self, bundle: ErrorBundle, result: BatchResult) -> None:
        logger.info(f"Processing error bundle: {bundle.id}")

        try:
            resolution = invoke_processor(self.processor, bundle)
        except ProcessorError as e:
            self._contain_processor_error(bundle, e, result)
            return

        bundle.resolution = resolution

        if resolution.resolved:
            result.resolved += 1
            logger.info(f"Bundle {bundle.id} resolved: {resolution.action}")

        elif resolution.retry_triggered and bundle.can_retry:
            bundle.retry_count += 1
            self.store.save_pending(bundle)
            result.retried += 1
            logger.info(
                f"Bundle {bundle.id} retry triggered "
                f"({bundle.retry_count}/{bundle.max_retries}): {resolution.action}"
            )
            return

        else:
            result.failed += 1
            logger.warning(f"Bundle {bundle.id} not resolved: {resolution.action}")

        processed = self.store.move_to_processed(bundle)
        self._notify_processed(processed, resolution)

    def _contain_processor_error(
        self,
        bundle: ErrorBundle,
        error: ProcessorError,
        result: BatchResult
    ) -> None:
        result.errored += 1
        logger.error(f"Failed to process bundle {bundle.id}: {error.reason}")

        if self.on_process_error is not None:
            try:
                self.on_process_error(bundle, error.__cause__ or error)
            except Exception as hook_error:
                logger.warning(f"on_process_error hook failed: {hook_error}")

        bundle.resolution = ErrorBundleResolution(
            resolved=False,
            action=f"processing failed: {error.reason}",
            retry_triggered=False,
        )

        try:
            self.store.move_to_processed(bundle)
        except StorageError as e:
            logger.error(f"Failed to move errored bundle {bundle.id} to processed: {e}")

    def _notify_processed(self, bundle: ErrorBundle, resolution: ErrorBundleResolution) -> None:
        if self.on_bundle_processed is None:
            return
        try:
            self.on_bundle_processed(bundle, resolution)
        except Exception as e:
            logger.warning(f"on_bundle_processed hook failed: {e}")

"""
Batch scheduler: one trigger channel, two producers, one consumer.

Producers (the watchdog callback and the poll thread) put triggers on a
queue. A single consumer thread debounces them and runs the batch callback,
so at most one run is ever in flight. Triggers that arrive during a run
stay queued and collapse into exactly one follow-up run.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from error_feedback.constants import ERROR_FEEDBACK_DEBOUNCE_MS, ERROR_FEEDBACK_POLL_INTERVAL_MS


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Trigger:
    reason: str
    immediate: bool = False


_STOP = object()


class BatchScheduler:
    """
    Debounced, single-flight batch runner.

    Every trigger restarts the debounce window; the batch starts only
    once the window passes quietly. Immediate triggers skip the window.
    """

    def __init__(
        self,
        run_batch: Callable[[], Any],
        debounce_ms: int = ERROR_FEEDBACK_DEBOUNCE_MS,
        poll_interval_ms: int = ERROR_FEEDBACK_POLL_INTERVAL_MS
    ):
        """
        Initialize scheduler.

        Args:
            run_batch: Callback for one batch run
            debounce_ms: Quiet period required before a run starts
            poll_interval_ms: Interval of the fallback poll trigger
        """
        self.run_batch = run_batch
        self.debounce_seconds = debounce_ms / 1000.0
        self.poll_interval_seconds = poll_interval_ms / 1000.0

        self._triggers: "queue.Queue[Any]" = queue.Queue()
        self._stop_event = threading.Event()
        self._idle = threading.Event()
        self._idle.set()

        self._consumer: Optional[threading.Thread] = None
        self._poller: Optional[threading.Thread] = None

        self.run_count = 0

    @property
    def running(self) -> bool:
        return self._consumer is not None and self._consumer.is_alive()

    @property
    def in_flight(self) -> bool:
        return not self._idle.is_set()

    def start(self) -> None:
        """
        Start the consumer and poll threads.

        Each start gets a fresh trigger queue and stop event. A consumer left
        over from a previous stop(wait=False) keeps its own queue and exits
        after its in-flight run; the new consumer waits for it before running
        anything.
        """
        if self.running and not self._stop_event.is_set():
            return

        previous = self._consumer if self.running else None

        self._stop_event = threading.Event()
        self._triggers = queue.Queue()

        self._consumer = threading.Thread(
            target=self._consume_loop,
            args=(self._triggers, self._stop_event, previous),
            name="error-feedback-scheduler",
            daemon=True
        )
        self._poller = threading.Thread(
            target=self._poll_loop,
            args=(self._stop_event,),
            name="error-feedback-poll",
            daemon=True
        )
        self._consumer.start()
        self._poller.start()

        logger.debug(
            f"Scheduler started (debounce {self.debounce_seconds}s, "
            f"poll every {self.poll_interval_seconds}s)"
        )

    def stop(self, wait: bool = False, timeout: Optional[float] = None) -> None:
        """
        Stop accepting triggers and halt the poll timer.

        An in-flight run is not interrupted; pass wait=True to block until
        it has finished.
        """
        self._stop_event.set()
        self._triggers.put(_STOP)

        if self._poller is not None:
            self._poller.join(timeout=1.0)
            self._poller = None

        if wait and self._consumer is not None:
            self._consumer.join(timeout=timeout)

    def trigger(self, reason: str = "event", immediate: bool = False) -> None:
        """Request a batch run. Ignored once stopped."""
        if self._stop_event.is_set():
            return
        self._triggers.put(Trigger(reason=reason, immediate=immediate))

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no run is in flight. Returns False on timeout."""
        return self._idle.wait(timeout)

    def _poll_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.poll_interval_seconds):
            self.trigger("poll")

    def _consume_loop(
        self,
        triggers: "queue.Queue[Any]",
        stop_event: threading.Event,
        previous: Optional[threading.Thread] = None
    ) -> None:
        if previous is not None:
            # Single flight across restarts: let the old run finish first
            previous.join()

        while not stop_event.is_set():
            item = triggers.get()
            if item is _STOP:
                break

            if not item.immediate and not self._wait_quiet(triggers):
                break

            if stop_event.is_set():
                break

            self._run(item.reason)

    def _wait_quiet(self, triggers: "queue.Queue[Any]") -> bool:
        """
        Swallow triggers until a full debounce window passes without one.

        Returns:
            False if a stop arrived meanwhile
        """
        while True:
            try:
                item = triggers.get(timeout=self.debounce_seconds)
            except queue.Empty:
                return True

            if item is _STOP:
                return False
            if item.immediate:
                return True

    def _run(self, reason: str) -> None:
        self._idle.clear()
        try:
            logger.debug(f"Batch run starting ({reason})")
            self.run_batch()
        except Exception as e:
            logger.error(f"Batch run failed: {e}", exc_info=True)
        finally:
            self.run_count += 1
            self._idle.set()

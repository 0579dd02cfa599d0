"""
Evaluation scheduler: runs reconciliation passes over all subscribers.

Scheduled ticks are skip-if-running: a tick that finds a pass in progress is
dropped. The on-demand trigger waits for the running pass and then runs its
own, so it always reports on a complete pass.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from power_watch.log import log_error, log_event
from power_watch.models import SubscriberRecord
from power_watch.reconciler import StateReconciler
from power_watch.state_store import SubscriberStore


@dataclass
class PassResult:
    checked: int = 0
    transitions: int = 0
    failures: int = 0
    duration_seconds: float = 0.0


class EvaluationScheduler:
    """Fans a reconciliation pass out over a bounded worker pool."""

    def __init__(
        self,
        store: SubscriberStore,
        reconciler: StateReconciler,
        concurrency: int = 20,
        interval: float = 60,
        startup_delay: float = 5,
        liveness_source: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            store: Subscriber persistence
            reconciler: Per-subscriber decision procedure
            concurrency: Maximum subscribers evaluated at once
            interval: Seconds between scheduled passes
            startup_delay: Seconds before the first pass in run_forever()
            liveness_source: Optional callable polled before each pass (Tuya devices)
            clock: Monotonic time source
        """
        self.store = store
        self.reconciler = reconciler
        self.concurrency = max(1, concurrency)
        self.interval = interval
        self.startup_delay = startup_delay
        self.liveness_source = liveness_source
        self._clock = clock
        self._pass_lock = threading.Lock()

    def _evaluate_one(self, record: SubscriberRecord) -> Optional[bool]:
        try:
            return self.reconciler.evaluate(record)
        except Exception as e:
            log_error("subscriber_evaluation_failed", e, subscriber_id=record.subscriber_id)
            return None

    def run_pass(self, wait: bool = False) -> Optional[PassResult]:
        """
        Evaluate every non-suppressed subscriber once.

        Args:
            wait: Block until a running pass finishes instead of skipping

        Returns:
            PassResult, or None if skipped because another pass was running
        """
        if not self._pass_lock.acquire(blocking=wait):
            log_event("evaluation_pass_skipped", reason="pass_in_progress")
            return None

        started = self._clock()
        try:
            if self.liveness_source is not None:
                try:
                    self.liveness_source()
                except Exception as e:
                    log_error("liveness_source_failed", e)

            records = [r for r in self.store.get_all() if not r.suppressed]
            result = PassResult(checked=len(records))

            with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="evaluate") as pool:
                for outcome in pool.map(self._evaluate_one, records):
                    if outcome is None:
                        result.failures += 1
                    elif outcome:
                        result.transitions += 1

            result.duration_seconds = round(self._clock() - started, 3)
            log_event(
                "evaluation_pass_completed",
                checked=result.checked,
                transitions=result.transitions,
                failures=result.failures,
                duration_seconds=result.duration_seconds,
            )
            return result
        finally:
            self._pass_lock.release()

    def trigger(self) -> PassResult:
        """On-demand pass; waits for any running pass first."""
        result = self.run_pass(wait=True)
        if result is None:
            raise RuntimeError("evaluation pass did not run")
        return result

    def _tick(self) -> None:
        try:
            self.run_pass(wait=False)
        except Exception as e:
            log_error("evaluation_pass_failed", e)

    def run_forever(self, stop_event: threading.Event) -> None:
        """
        Run passes on a fixed wall-clock cadence until stop_event is set.

        Each tick runs in its own thread, so an overlong pass never delays the
        next tick (which is then skipped by run_pass).
        """
        log_event(
            "scheduler_started",
            interval=self.interval,
            startup_delay=self.startup_delay,
            concurrency=self.concurrency,
        )
        if stop_event.wait(self.startup_delay):
            return

        next_tick = self._clock()
        while not stop_event.is_set():
            threading.Thread(target=self._tick, name="evaluation-tick", daemon=True).start()
            next_tick += self.interval
            # Coalesce missed ticks instead of bursting
            while next_tick <= self._clock():
                next_tick += self.interval
            stop_event.wait(max(0.0, next_tick - self._clock()))

        log_event("scheduler_stopped")

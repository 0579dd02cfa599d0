"""
Outbound notification dispatcher.

All Telegram calls go through one queue drained in batches (at most
`batch_size` concurrent calls, then a fixed pause) to stay under the Bot API
rate limit. Callers block until their own call completes, so a subscriber's
read -> decide -> write -> notify sequence stays ordered.
"""

import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional

from power_watch.log import log_error, log_event
from power_watch.notifier import MessageNotModifiedError, TelegramError, TelegramNotifier
from power_watch.ttl_cache import TTLCache

# Edit failures that mean the pinned message is gone and must be re-sent
REPLACEABLE_EDIT_ERRORS = ("message to edit not found", "message can't be edited")


class _Job:
    __slots__ = ("fn", "args", "future")

    def __init__(self, fn: Callable[..., Any], args: tuple):
        self.fn = fn
        self.args = args
        self.future: Future = Future()


class NotificationDispatcher:
    """Rate-limited, de-duplicating sender with pinned status maintenance."""

    def __init__(
        self,
        notifier: TelegramNotifier,
        batch_size: int = 25,
        batch_pause: float = 1.0,
        dedup_window: float = 10,
        pinned_refresh_interval: float = 30,
        call_timeout: float = 60,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.notifier = notifier
        self.batch_size = max(1, batch_size)
        self.batch_pause = batch_pause
        self.call_timeout = call_timeout
        self._sleep = sleep

        self._queue: "queue.Queue[_Job]" = queue.Queue()
        self._executor = ThreadPoolExecutor(max_workers=self.batch_size, thread_name_prefix="tg-send")
        self._worker: Optional[threading.Thread] = None
        self._worker_lock = threading.Lock()
        self._stopping = threading.Event()

        # chat_id -> last text sent
        self._recent: TTLCache[str] = TTLCache(dedup_window, clock=clock)
        self._recent_lock = threading.Lock()
        # chat_id -> last pinned refresh
        self._pinned_throttle: TTLCache[bool] = TTLCache(pinned_refresh_interval, clock=clock)

    # ------------------------------------------------------------------ queue

    def _ensure_worker(self) -> None:
        with self._worker_lock:
            if self._worker is None or not self._worker.is_alive():
                self._stopping.clear()
                self._worker = threading.Thread(target=self._drain, name="tg-dispatch", daemon=True)
                self._worker.start()

    def _drain(self) -> None:
        while not self._stopping.is_set():
            try:
                first = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue

            batch = [first]
            while len(batch) < self.batch_size:
                try:
                    batch.append(self._queue.get_nowait())
                except queue.Empty:
                    break

            wait([self._executor.submit(self._execute, job) for job in batch])
            self._sleep(self.batch_pause)

    @staticmethod
    def _execute(job: _Job) -> None:
        if not job.future.set_running_or_notify_cancel():
            return
        try:
            job.future.set_result(job.fn(*job.args))
        except BaseException as e:
            job.future.set_exception(e)

    def _submit(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Queue one API call and wait for its result (re-raises its exception)."""
        job = _Job(fn, args)
        self._ensure_worker()
        self._queue.put(job)
        return job.future.result(timeout=self.call_timeout)

    def shutdown(self) -> None:
        self._stopping.set()
        if self._worker is not None:
            self._worker.join(timeout=5)
        self._executor.shutdown(wait=False)

    # --------------------------------------------------------------- messages

    def send(self, chat_id: str, text: str, dedup: bool = True) -> Optional[int]:
        """
        Send a message to a chat.

        Args:
            chat_id: Telegram chat id
            text: HTML message text
            dedup: Drop the message if the same text went to this chat within the
                dedup window. Replies to user commands pass False.

        Returns:
            Telegram message id, or None if suppressed or failed
        """
        chat_id = str(chat_id)
        if dedup:
            with self._recent_lock:
                if self._recent.get(chat_id) == text:
                    log_event("notification_deduplicated", chat_id=chat_id)
                    return None
                self._recent.set(chat_id, text)

        try:
            message_id = self._submit(self.notifier.send_message, chat_id, text)
        except Exception as e:
            if dedup:
                with self._recent_lock:
                    if self._recent.get(chat_id) == text:
                        self._recent.invalidate(chat_id)
            log_error("notification_failed", e, chat_id=chat_id)
            return None

        log_event("notification_sent", chat_id=chat_id, message_id=message_id, text=text)
        return message_id

    def refresh_pinned(
        self,
        chat_id: str,
        message_ref: Optional[int],
        text: str,
        force: bool = False,
    ) -> Optional[int]:
        """
        Keep one live status message per chat up to date.

        Edits the existing message in place; sends and pins a new one when there
        is none (or it was deleted). Throttled per chat unless forced.

        Returns:
            The current pinned message id (may be unchanged or None)
        """
        chat_id = str(chat_id)
        if force:
            self._pinned_throttle.set(chat_id, True)
        elif not self._pinned_throttle.check_and_mark(chat_id, True):
            return message_ref

        if message_ref is not None:
            try:
                self._submit(self.notifier.edit_message, chat_id, message_ref, text)
                return message_ref
            except MessageNotModifiedError:
                return message_ref
            except TelegramError as e:
                if not any(marker in e.description for marker in REPLACEABLE_EDIT_ERRORS):
                    log_error("pinned_edit_failed", e, chat_id=chat_id, message_id=message_ref)
                    return message_ref
                log_event("pinned_message_missing", level="warning", chat_id=chat_id, message_id=message_ref)
            except Exception as e:
                log_error("pinned_edit_failed", e, chat_id=chat_id, message_id=message_ref)
                return message_ref

        try:
            new_ref = self._submit(self.notifier.send_message, chat_id, text)
        except Exception as e:
            log_error("pinned_send_failed", e, chat_id=chat_id)
            return message_ref

        try:
            self._submit(self.notifier.pin_message, chat_id, new_ref)
        except Exception as e:
            log_event("pinned_pin_failed", level="warning", chat_id=chat_id, message_id=new_ref, error=str(e))

        log_event("pinned_message_created", chat_id=chat_id, message_id=new_ref)
        return new_ref

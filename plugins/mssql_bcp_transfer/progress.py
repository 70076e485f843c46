"""
Progress Reporting Module

Message passing between a running transfer job and its caller.

A job runs on one dedicated worker thread and reports through a ProgressSink:
any number of progress lines, then exactly one completion carrying the
TransferResult. Callers (a GUI, a CLI, an Airflow task) own all UI state and
only ever see events delivered to their sink.

Sinks provided here:
- LoggingProgressSink: writes lines to a logger
- QueueProgressSink: posts ProgressEvents to a queue.Queue for a UI thread
- CoalescingProgressSink: batches lines arriving within a short window

run_job_async() starts the worker thread and holds the completion until a
minimum duration has passed, so fast jobs do not flash a progress indicator.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol
import logging
import queue
import threading
import time

from mssql_bcp_transfer.transfer_config import get_transfer_config
from mssql_bcp_transfer.transfer_error import redact_message

logger = logging.getLogger(__name__)

ProgressFun = Callable[[str], None]


@dataclass(frozen=True)
class TransferResult:
    """Terminal outcome of a transfer job."""
    success: bool
    message: str = ''

    @classmethod
    def succeeded(cls, message: str = '') -> 'TransferResult':
        return cls(success=True, message=message)

    @classmethod
    def failure(cls, message: str) -> 'TransferResult':
        return cls(success=False, message=redact_message(str(message)))


@dataclass(frozen=True)
class ProgressEvent:
    """One message from a job: a block of progress text, or the final result."""
    kind: str
    text: str = ''
    result: Optional[TransferResult] = None

    PROGRESS = 'progress'
    COMPLETE = 'complete'

    @classmethod
    def progress_text(cls, text: str) -> 'ProgressEvent':
        return cls(kind=cls.PROGRESS, text=text)

    @classmethod
    def completed(cls, result: TransferResult) -> 'ProgressEvent':
        return cls(kind=cls.COMPLETE, result=result)

    @property
    def is_complete(self) -> bool:
        return self.kind == self.COMPLETE


class ProgressSink(Protocol):
    """Receiver of job progress; complete() is always the last call for a job."""

    def progress(self, line: str) -> None:
        ...

    def complete(self, result: TransferResult) -> None:
        ...


class LoggingProgressSink:
    """Write progress lines and the result to a logger."""

    def __init__(self, target_logger: Optional[logging.Logger] = None):
        self.logger = target_logger or logger

    def progress(self, line: str) -> None:
        self.logger.info(line)

    def complete(self, result: TransferResult) -> None:
        if result.success:
            self.logger.info(f"Transfer succeeded {result.message}".rstrip())
        else:
            self.logger.error(f"Transfer failed: {result.message}")


class QueueProgressSink:
    """Post ProgressEvents to a queue consumed by the caller's thread."""

    def __init__(self, events: Optional[queue.Queue] = None):
        self.events = events if events is not None else queue.Queue()

    def progress(self, line: str) -> None:
        self.events.put(ProgressEvent.progress_text(line))

    def complete(self, result: TransferResult) -> None:
        self.events.put(ProgressEvent.completed(result))


class CoalescingProgressSink:
    """
    Batch progress lines so a slow consumer gets fewer, larger updates.

    Lines are buffered and forwarded joined by newlines once the window
    since the previous forward has elapsed. A line that arrives inside the
    window arms a timer, so it is delivered at the end of the window even
    when no further line follows (e.g. before a long silent bcp step).
    Buffered lines are always flushed before the completion is forwarded.
    """

    def __init__(self, target: ProgressSink, window: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic,
                 timer_factory: Callable[..., threading.Timer] = threading.Timer):
        if window is None:
            window = get_transfer_config().progress_coalesce_ms / 1000.0
        self.target = target
        self.window = window
        self.clock = clock
        self.timer_factory = timer_factory
        self._pending: List[str] = []
        self._last_flush = clock()
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.RLock()

    def progress(self, line: str) -> None:
        with self._lock:
            self._pending.append(line)
            elapsed = self.clock() - self._last_flush
            if elapsed >= self.window:
                self._flush_pending()
            elif self._timer is None:
                timer = self.timer_factory(self.window - elapsed, lambda: self._on_timer(timer))
                timer.daemon = True
                self._timer = timer
                timer.start()

    def _on_timer(self, timer: threading.Timer) -> None:
        with self._lock:
            # a flush since arming already delivered the lines
            if timer is not self._timer:
                return
            self._timer = None
            self._flush_pending()

    def _flush_pending(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._pending:
            text = "\n".join(self._pending)
            self._pending = []
            self.target.progress(text)
        self._last_flush = self.clock()

    def flush(self) -> None:
        with self._lock:
            self._flush_pending()

    def complete(self, result: TransferResult) -> None:
        with self._lock:
            self._flush_pending()
            self.target.complete(result)


class JobHandle:
    """Handle to a job running on its worker thread."""

    def __init__(self, name: str):
        self.name = name
        self.thread: Optional[threading.Thread] = None
        self._result: Optional[TransferResult] = None
        self._done = threading.Event()

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> Optional[TransferResult]:
        """Block until the job completes; returns None on timeout."""
        if not self._done.wait(timeout):
            return None
        return self._result

    def _finish(self, result: TransferResult) -> None:
        self._result = result
        self._done.set()


def run_job_async(
    job_fn: Callable[[ProgressFun], TransferResult],
    sink: ProgressSink,
    min_duration: Optional[float] = None,
    name: str = "transfer-job",
) -> JobHandle:
    """
    Run a job on a dedicated worker thread.

    Args:
        job_fn: Callable taking a progress function and returning the result
        sink: Receives progress lines and, last, the completion
        min_duration: Seconds the job must appear to take, defaults to
            MIN_JOB_DURATION_MS
        name: Worker thread name

    Returns:
        JobHandle for waiting on the result
    """
    if min_duration is None:
        min_duration = get_transfer_config().min_job_duration_ms / 1000.0

    handle = JobHandle(name)

    def worker():
        start = time.monotonic()
        try:
            result = job_fn(sink.progress)
        except Exception as e:
            logger.exception(f"Job {name} failed with unexpected error")
            result = TransferResult.failure(str(e))

        remaining = min_duration - (time.monotonic() - start)
        if remaining > 0:
            time.sleep(remaining)

        try:
            sink.complete(result)
        finally:
            handle._finish(result)

    handle.thread = threading.Thread(target=worker, name=name, daemon=True)
    handle.thread.start()
    return handle

"""Client-side audit event batching with active/idle time tracking.

Events are redacted, queued and delivered in batches when the queue
fills, on a timer, and once more at teardown. Delivery failures re-queue
the batch; the queue is capped at twice the batch size and keeps the most
recent events.
"""

import atexit
import logging
import platform
import shutil
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol

from auditchain_sdk import __version__
from auditchain_sdk.redaction import build_denylist, redact

logger = logging.getLogger(__name__)

SESSION_STARTED = "SESSION_STARTED"
SESSION_ENDED = "SESSION_ENDED"


class Transport(Protocol):
    """What the batcher needs from a client; AuditClient satisfies it."""

    def send_events(self, events: list[dict[str, Any]]) -> Any:
        ...

    def send_events_nowait(self, events: list[dict[str, Any]]) -> None:
        ...


def _isoformat(epoch_seconds: float) -> str:
    ts = datetime.fromtimestamp(epoch_seconds, timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S") + f".{ts.microsecond // 1000:03d}Z"


def default_environment() -> dict[str, Any]:
    """Non-PII description of the running client."""
    size = shutil.get_terminal_size()
    return {
        "userAgent": (
            f"auditchain-sdk/{__version__} python/{platform.python_version()} "
            f"{platform.system()}"
        ),
        "screenWidth": size.columns,
        "screenHeight": size.lines,
    }


@dataclass
class SessionMetrics:
    """Active/idle accounting of a session. Durations are in seconds."""

    total_active_time: float
    total_idle_time: float
    event_count: int
    session_start: str
    last_activity: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalActiveTime": self.total_active_time,
            "totalIdleTime": self.total_idle_time,
            "eventCount": self.event_count,
            "sessionStart": self.session_start,
            "lastActivity": self.last_activity,
        }


class _RepeatingTimer(threading.Thread):
    def __init__(self, interval: float, callback: Callable[[], Any], name: str):
        super().__init__(name=name, daemon=True)
        self.interval = interval
        self.callback = callback
        self.stopped = threading.Event()

    def run(self) -> None:
        while not self.stopped.wait(self.interval):
            try:
                self.callback()
            except Exception:
                logger.exception(f"{self.name} callback failed")

    def stop(self) -> None:
        self.stopped.set()


class EventBatcher:
    """Collects one session's audit events and delivers them in batches."""

    def __init__(
        self,
        transport: Transport,
        session_id: str,
        user_id: Optional[str] = None,
        iep_id: Optional[str] = None,
        *,
        batch_size: int = 10,
        flush_interval: float = 30.0,
        idle_threshold: float = 300.0,
        idle_check_interval: float = 60.0,
        extra_pii_keys: Optional[Iterable[str]] = None,
        environment: Optional[Mapping[str, Any]] = None,
        clock: Callable[[], float] = time.time,
    ):
        if not session_id:
            raise ValueError("session_id is required")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        self.transport = transport
        self.session_id = session_id
        self.user_id = user_id
        self.iep_id = iep_id
        self.batch_size = batch_size
        self.max_queue = 2 * batch_size
        self.flush_interval = flush_interval
        self.idle_threshold = idle_threshold
        self.idle_check_interval = idle_check_interval
        self.denylist = build_denylist(extra_pii_keys)
        self.clock = clock

        self._lock = threading.Lock()
        # Held while a batch is in flight; at most one delivery at a time
        self._flush_lock = threading.Lock()
        self._queue: list[dict[str, Any]] = []
        self._timers: list[_RepeatingTimer] = []
        self._ended = False

        now = clock()
        self._session_start = now
        self._last_activity = now
        self._idle = False
        self._idle_start: Optional[float] = None
        self._total_idle = 0.0
        self._event_count = 0

        self.log_event(SESSION_STARTED, dict(environment) if environment is not None else default_environment())

    @property
    def pending(self) -> int:
        """Number of queued, undelivered events."""
        with self._lock:
            return len(self._queue)

    def log_event(self, event_type: str, metadata: Optional[Mapping[str, Any]] = None) -> None:
        """Queue an event; flushes when the queue reaches the batch size."""
        if not event_type:
            raise ValueError("event_type is required")

        with self._lock:
            now = self.clock()
            self._queue.append(self._build_event(event_type, redact(metadata, self.denylist), now))
            if len(self._queue) > self.max_queue:
                # Delivery is failing or in flight; evict the oldest
                del self._queue[0]
            self._event_count += 1

            self._check_idle(now)
            if self._idle:
                self._total_idle += now - self._idle_start
                self._idle = False
                self._idle_start = None
            self._last_activity = now

            full = len(self._queue) >= self.batch_size

        if full:
            self.flush()

    def flush(self) -> int:
        """Deliver everything queued. Returns the number of events delivered.

        Failures are logged and the batch re-queued, never raised. While
        another flush has a batch in flight this returns 0 and leaves the
        queue alone, so a re-queued batch is always older than the queue.
        """
        if not self._flush_lock.acquire(blocking=False):
            return 0
        try:
            with self._lock:
                batch, self._queue = self._queue, []
            if not batch:
                return 0

            try:
                self.transport.send_events(batch)
            except Exception as e:
                with self._lock:
                    combined = batch + self._queue
                    dropped = max(0, len(combined) - self.max_queue)
                    self._queue = combined[dropped:]
                logger.warning(
                    f"Audit batch of {len(batch)} events not delivered, re-queued "
                    f"(dropped {dropped} oldest): {e}"
                )
                return 0
            return len(batch)
        finally:
            self._flush_lock.release()

    def check_idle(self) -> bool:
        """Mark the session idle once the idle threshold has passed. Returns the idle state."""
        with self._lock:
            self._check_idle(self.clock())
            return self._idle

    def get_session_metrics(self) -> SessionMetrics:
        """Snapshot active/idle totals, counting an open idle interval provisionally."""
        with self._lock:
            return self._metrics(self.clock())

    def start(self, register_atexit: bool = True) -> "EventBatcher":
        """Start the idle-check and flush timers."""
        if self._timers:
            return self
        self._timers = [
            _RepeatingTimer(self.idle_check_interval, self.check_idle, "auditchain-idle-check"),
            _RepeatingTimer(self.flush_interval, self.flush, "auditchain-flush"),
        ]
        for timer in self._timers:
            timer.start()
        if register_atexit:
            atexit.register(self.end_session)
        return self

    def stop(self) -> None:
        """Stop the timers without ending the session."""
        for timer in self._timers:
            timer.stop()
        self._timers = []

    def end_session(self) -> None:
        """Queue SESSION_ENDED and hand the whole queue to the non-blocking transport.

        Safe to call more than once; only the first call sends.
        """
        with self._lock:
            if self._ended:
                return
            self._ended = True
            now = self.clock()
            metrics = self._metrics(now)
            self._queue.append(
                self._build_event(
                    SESSION_ENDED,
                    {
                        "activeTimeMs": int(metrics.total_active_time * 1000),
                        "idleTimeMs": int(metrics.total_idle_time * 1000),
                        "activeTimeMinutes": round(metrics.total_active_time / 60),
                        "idleTimeMinutes": round(metrics.total_idle_time / 60),
                        "totalEventsLogged": metrics.event_count,
                    },
                    now,
                )
            )
            batch, self._queue = self._queue, []

        self.stop()
        try:
            self.transport.send_events_nowait(batch)
        except Exception as e:
            logger.warning(f"Teardown hand-off of {len(batch)} audit events failed: {e}")

    def __enter__(self) -> "EventBatcher":
        return self.start(register_atexit=False)

    def __exit__(self, *exc_info) -> None:
        self.end_session()

    # Callers hold self._lock for the helpers below

    def _build_event(self, event_type: str, metadata: dict[str, Any], now: float) -> dict[str, Any]:
        event = {
            "eventType": event_type,
            "metadata": metadata,
            "timestamp": _isoformat(now),
            "sessionId": self.session_id,
        }
        if self.user_id is not None:
            event["userId"] = self.user_id
        if self.iep_id is not None:
            event["iepId"] = self.iep_id
        return event

    def _check_idle(self, now: float) -> None:
        if not self._idle and now - self._last_activity >= self.idle_threshold:
            self._idle = True
            # Idle time starts where the threshold was crossed, not at detection
            self._idle_start = self._last_activity + self.idle_threshold

    def _metrics(self, now: float) -> SessionMetrics:
        self._check_idle(now)
        idle = self._total_idle
        if self._idle:
            idle += now - self._idle_start
        return SessionMetrics(
            total_active_time=max(0.0, now - self._session_start - idle),
            total_idle_time=idle,
            event_count=self._event_count,
            session_start=_isoformat(self._session_start),
            last_activity=_isoformat(self._last_activity),
        )

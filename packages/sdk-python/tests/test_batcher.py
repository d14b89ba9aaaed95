"""Tests for the event batcher."""

import threading
import time

import pytest

from auditchain_sdk.batcher import SESSION_ENDED, SESSION_STARTED, EventBatcher
from auditchain_sdk.exceptions import TransportFailure


def make_batcher(transport, clock, **kwargs):
    kwargs.setdefault("environment", {"userAgent": "test"})
    return EventBatcher(transport, "session-1", clock=clock, **kwargs)


def test_session_started_is_queued_on_construction(transport, clock):
    batcher = make_batcher(transport, clock, user_id="u1")
    assert batcher.pending == 1
    batcher.flush()

    (event,) = transport.delivered
    assert event == {
        "eventType": SESSION_STARTED,
        "metadata": {"userAgent": "test"},
        "timestamp": "2024-01-01T00:00:00.000Z",
        "sessionId": "session-1",
        "userId": "u1",
    }


def test_unset_correlation_ids_are_omitted(transport, clock):
    batcher = make_batcher(transport, clock)
    batcher.flush()
    assert "userId" not in transport.delivered[0]
    assert "iepId" not in transport.delivered[0]


def test_empty_event_type_rejected(transport, clock):
    batcher = make_batcher(transport, clock)
    with pytest.raises(ValueError):
        batcher.log_event("")


def test_pii_is_redacted_before_queueing(transport, clock):
    batcher = make_batcher(transport, clock, extra_pii_keys=["schoolId"])
    batcher.log_event("FORM_SUBMIT", {"studentName": "Ada", "EMAIL": "a@b.c", "schoolId": 4, "step": 2})
    batcher.flush()
    assert transport.delivered[-1]["metadata"] == {"step": 2}


def test_full_queue_flushes(transport, clock):
    batcher = make_batcher(transport, clock)
    batcher.flush()
    transport.batches.clear()

    for i in range(9):
        batcher.log_event("CLICK", {"i": i})
    assert transport.batches == []

    batcher.log_event("CLICK", {"i": 9})
    assert len(transport.batches) == 1
    assert [e["metadata"]["i"] for e in transport.batches[0]] == list(range(10))
    assert batcher.pending == 0


def test_flush_empty_queue_sends_nothing(transport, clock):
    batcher = make_batcher(transport, clock)
    batcher.flush()
    assert batcher.flush() == 0
    assert transport.attempts == 1


def test_failed_flush_requeues(transport_cls, clock):
    transport = transport_cls(failures=1)
    batcher = make_batcher(transport, clock)
    batcher.log_event("CLICK")

    assert batcher.flush() == 0
    assert batcher.pending == 2

    assert batcher.flush() == 2
    assert [e["eventType"] for e in transport.delivered] == [SESSION_STARTED, "CLICK"]


def test_requeue_keeps_most_recent_events(transport_cls, clock):
    transport = transport_cls(failures=1000)
    batcher = make_batcher(transport, clock, batch_size=10)
    for i in range(40):
        batcher.log_event("CLICK", {"i": i})

    assert batcher.pending == 20

    transport.failures = 0
    assert batcher.flush() == 20
    assert [e["metadata"]["i"] for e in transport.delivered] == list(range(20, 40))


def test_events_logged_during_failed_send_are_kept(transport_cls, clock):
    batcher = None

    class LoggingDuringSend(transport_cls):
        logged = False

        def send_events(self, events):
            if not self.logged:
                self.logged = True
                batcher.log_event("LATE")
            return super().send_events(events)

    transport = LoggingDuringSend(failures=1)
    batcher = make_batcher(transport, clock)
    assert batcher.flush() == 0

    assert batcher.flush() == 2
    assert [e["eventType"] for e in transport.delivered] == [SESSION_STARTED, "LATE"]

def test_overlapping_flush_keeps_newest_events(transport_cls, clock):
    class SlowFailingOnce(transport_cls):
        def __init__(self):
            super().__init__()
            self.in_flight = threading.Event()
            self.release = threading.Event()
            self.calls = 0

        def send_events(self, events):
            self.calls += 1
            if self.calls == 1:
                self.in_flight.set()
                self.release.wait(5)
                raise TransportFailure("endpoint down")
            return super().send_events(events)

    transport = SlowFailingOnce()
    batcher = make_batcher(transport, clock, batch_size=10)
    for i in range(8):
        batcher.log_event("OLD", {"i": i})

    background = threading.Thread(target=batcher.flush)
    background.start()
    assert transport.in_flight.wait(5)

    for i in range(15):
        batcher.log_event("NEW", {"i": i})
    assert batcher.flush() == 0
    assert transport.calls == 1

    transport.release.set()
    background.join(5)

    assert batcher.pending == 20
    assert batcher.flush() == 20
    delivered = [(e["eventType"], e["metadata"].get("i")) for e in transport.delivered]
    assert delivered == [("OLD", i) for i in range(3, 8)] + [("NEW", i) for i in range(15)]


def test_queue_stays_bounded_while_batch_in_flight(transport_cls, clock):
    release = threading.Event()

    class Stalled(transport_cls):
        def send_events(self, events):
            release.wait(5)
            return super().send_events(events)

    transport = Stalled()
    batcher = make_batcher(transport, clock, batch_size=10)
    background = threading.Thread(target=batcher.flush)
    background.start()
    try:
        for i in range(50):
            batcher.log_event("CLICK", {"i": i})
        assert batcher.pending == 20
    finally:
        release.set()
        background.join(5)



def test_idle_time_starts_at_threshold(transport, clock):
    batcher = make_batcher(transport, clock, idle_threshold=300)
    clock.advance(360)
    batcher.log_event("CLICK")

    metrics = batcher.get_session_metrics()
    assert metrics.total_idle_time == pytest.approx(60)
    assert metrics.total_active_time == pytest.approx(300)
    assert metrics.event_count == 2


def test_active_plus_idle_equals_elapsed(transport, clock):
    batcher = make_batcher(transport, clock, idle_threshold=300)
    for step in (10, 400, 20, 700, 5):
        clock.advance(step)
        batcher.log_event("CLICK")
    clock.advance(1000)

    metrics = batcher.get_session_metrics()
    assert metrics.total_active_time + metrics.total_idle_time == pytest.approx(2135)


def test_open_idle_interval_counted_provisionally(transport, clock):
    batcher = make_batcher(transport, clock, idle_threshold=300)
    clock.advance(200)
    assert batcher.check_idle() is False

    clock.advance(400)
    assert batcher.check_idle() is True
    metrics = batcher.get_session_metrics()
    assert metrics.total_idle_time == pytest.approx(300)
    assert metrics.total_active_time == pytest.approx(300)
    assert metrics.to_dict()["lastActivity"] == "2024-01-01T00:00:00.000Z"


def test_end_session_hands_off_queue(transport, clock):
    batcher = make_batcher(transport, clock, idle_threshold=300)
    batcher.log_event("CLICK")
    clock.advance(360)
    batcher.end_session()

    assert transport.batches == []
    (batch,) = transport.nowait_batches
    assert [e["eventType"] for e in batch] == [SESSION_STARTED, "CLICK", SESSION_ENDED]
    assert batch[-1]["metadata"] == {
        "activeTimeMs": 300000,
        "idleTimeMs": 60000,
        "activeTimeMinutes": 5,
        "idleTimeMinutes": 1,
        "totalEventsLogged": 2,
    }
    assert batcher.pending == 0


def test_end_session_is_idempotent(transport, clock):
    batcher = make_batcher(transport, clock)
    batcher.end_session()
    batcher.end_session()
    assert len(transport.nowait_batches) == 1


def test_end_session_swallows_transport_errors(transport_cls, clock, caplog):
    class Broken(transport_cls):
        def send_events_nowait(self, events):
            raise RuntimeError("no network")

    batcher = make_batcher(Broken(), clock)
    batcher.end_session()
    assert "Teardown hand-off" in caplog.text


def test_timers_flush_periodically(transport):
    batcher = EventBatcher(
        transport,
        "session-1",
        flush_interval=0.01,
        idle_check_interval=0.01,
        environment={},
    )
    batcher.start(register_atexit=False)
    try:
        deadline = time.monotonic() + 2
        while not transport.batches and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        batcher.stop()

    assert transport.delivered[0]["eventType"] == SESSION_STARTED


def test_context_manager_ends_session(transport, clock):
    with make_batcher(transport, clock, flush_interval=60) as batcher:
        batcher.log_event("CLICK")
    assert transport.nowait_batches[0][-1]["eventType"] == SESSION_ENDED

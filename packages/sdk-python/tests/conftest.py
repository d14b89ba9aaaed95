"""Pytest fixtures for the SDK."""

import pytest

from auditchain_sdk.exceptions import TransportFailure


class FakeClock:
    """Manually advanced clock, in epoch seconds."""

    def __init__(self, start: float = 1_704_067_200.0):  # 2024-01-01T00:00:00Z
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Records delivered batches. Fails the next ``failures`` sends."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.batches = []
        self.nowait_batches = []
        self.attempts = 0

    def send_events(self, events):
        self.attempts += 1
        if self.failures:
            self.failures -= 1
            raise TransportFailure("endpoint down")
        self.batches.append(list(events))
        return {"success": True, "logged": len(events)}

    def send_events_nowait(self, events):
        self.nowait_batches.append(list(events))

    @property
    def delivered(self):
        return [event for batch in self.batches for event in batch]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport_cls():
    return FakeTransport


@pytest.fixture
def transport():
    return FakeTransport()

"""Shared fixtures for toggles tests."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable

import pytest
from k1s0_toggles import EventKind, TogglesConfig, TogglesEvent

BASE_URL = "https://toggles.example.com"


class FakeClock:
    """手動で進める単調時計。"""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingHandler:
    """受け取ったイベントを記録するハンドラー。"""

    def __init__(self, kinds: Iterable[EventKind] | None = None) -> None:
        self.kinds = frozenset(kinds) if kinds is not None else None
        self.events: list[TogglesEvent] = []
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)

    def handles(self, kind: EventKind) -> bool:
        return self.kinds is None or kind in self.kinds

    def handle(self, event: TogglesEvent) -> None:
        with self._changed:
            self.events.append(event)
            self._changed.notify_all()

    def of_kind(self, kind: EventKind) -> list[TogglesEvent]:
        with self._lock:
            return [e for e in self.events if e.kind is kind]

    def wait_for(self, predicate: Callable[[list[TogglesEvent]], bool], timeout: float = 5.0) -> bool:
        with self._changed:
            return self._changed.wait_for(lambda: predicate(self.events), timeout)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorder() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def make_recorder() -> type[RecordingHandler]:
    return RecordingHandler


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def config() -> TogglesConfig:
    return TogglesConfig(
        client_id="my-app",
        client_secret="my-secret",
        base_token_url=BASE_URL,
        base_toggles_url=BASE_URL,
        stage="development",
        max_retries=3,
        retry_delay_seconds=0.5,
        cache_ttl_seconds=100.0,
        event_poll_interval_seconds=0.05,
    )

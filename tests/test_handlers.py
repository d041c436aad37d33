"""標準イベントハンドラーのユニットテスト"""

import pytest
from k1s0_toggles import (
    AuthenticatedEvent,
    ErrorEvent,
    EvaluatedEvent,
    EventKind,
    EventObserver,
    FeatureState,
    FetchedEvent,
    FetchError,
    FlagSnapshot,
    LoggingEventHandler,
    MetricsEventHandler,
    MetricsPublishedEvent,
    ReadyEvent,
    TogglesErrorCodes,
    TogglesEvent,
)
from structlog.testing import capture_logs


class ListPublisher:
    def __init__(self) -> None:
        self.events: list[TogglesEvent] = []

    def publish(self, event: TogglesEvent) -> None:
        self.events.append(event)


def test_observer_dispatches_by_kind() -> None:
    """EventObserver が種別ごとの on_* に振り分けること。"""
    seen: list[str] = []

    class Observer(EventObserver):
        def on_ready(self, event: ReadyEvent) -> None:
            seen.append("ready")

        def on_error(self, event: ErrorEvent) -> None:
            seen.append("error")

    observer = Observer()
    observer.handle(ReadyEvent())
    observer.handle(ErrorEvent(message="boom"))
    observer.handle(EvaluatedEvent(feature="f", result=True))
    assert seen == ["ready", "error"]
    assert all(observer.handles(kind) for kind in EventKind)


def test_event_kinds() -> None:
    assert ReadyEvent.kind is EventKind.READY
    assert ErrorEvent(message="x").kind is EventKind.ERROR
    assert MetricsPublishedEvent().kind is EventKind.METRICS_PUBLISHED
    event = AuthenticatedEvent(client_id="app")
    assert event.id
    assert event.occurred_at.tzinfo is not None


def test_logging_handler_logs_events() -> None:
    handler = LoggingEventHandler()
    snapshot = FlagSnapshot(stage="development", features={"a": FeatureState(enabled=True)})
    with capture_logs() as logs:
        handler.handle(AuthenticatedEvent(client_id="app"))
        handler.handle(FetchedEvent(snapshot=snapshot))
        handler.handle(ErrorEvent(message="fetch failed", cause=ValueError("x")))
        handler.handle(ReadyEvent())
    assert [entry["event"] for entry in logs] == [
        "toggles client authenticated",
        "remote toggles fetched",
        "fetch failed",
        "toggles client ready",
    ]
    assert logs[0]["client_id"] == "app"
    assert logs[1]["features"] == 1
    assert logs[2]["log_level"] == "warning"
    assert logs[2]["cause"] == "ValueError"


def test_metrics_handler_interest() -> None:
    handler = MetricsEventHandler()
    assert handler.handles(EventKind.EVALUATED) is True
    assert handler.handles(EventKind.READY) is False
    assert handler.handles(EventKind.METRICS_PUBLISHED) is False


def test_metrics_handler_counts_evaluations() -> None:
    """評価結果が true/false ごとに集計されること。"""
    handler = MetricsEventHandler()
    handler.handle(EvaluatedEvent(feature="dark-mode", result=True))
    handler.handle(EvaluatedEvent(feature="dark-mode", result=True))
    handler.handle(EvaluatedEvent(feature="dark-mode", result=False, default_used=True))
    handler.handle(EvaluatedEvent(feature="beta", result=False))
    assert handler.counts() == {
        "dark-mode": {"true": 2, "false": 1},
        "beta": {"true": 0, "false": 1},
    }


def test_metrics_handler_records_other_kinds() -> None:
    handler = MetricsEventHandler()
    error = FetchError(code=TogglesErrorCodes.SERVER_ERROR, message="boom")
    handler.handle(ErrorEvent(message=str(error), cause=error))
    handler.handle(FetchedEvent(snapshot=FlagSnapshot()))
    handler.handle(AuthenticatedEvent(client_id="app"))
    assert handler.counts() == {}


def test_metrics_flush_publishes_and_resets() -> None:
    """flush() が MetricsPublished イベントを発行し、集計をリセットすること。"""
    publisher = ListPublisher()
    handler = MetricsEventHandler(publisher)
    handler.handle(EvaluatedEvent(feature="f", result=True))
    event = handler.flush()
    assert event.counts == {"f": {"true": 1, "false": 0}}
    assert publisher.events == [event]
    assert handler.counts() == {}


def test_metrics_flush_without_publisher() -> None:
    handler = MetricsEventHandler()
    event = handler.flush()
    assert event.counts == {}


def test_metrics_published_counts_are_read_only() -> None:
    """発行後の集計結果は購読者から書き換えられないこと。"""
    source = {"f": {"true": 1, "false": 0}}
    event = MetricsPublishedEvent(counts=source)
    source["f"]["true"] = 99
    source["g"] = {"true": 0, "false": 0}
    assert event.counts == {"f": {"true": 1, "false": 0}}
    with pytest.raises(TypeError):
        event.counts["f"] = {}  # type: ignore[index]
    with pytest.raises(TypeError):
        event.counts["f"]["true"] = 5  # type: ignore[index]

"""標準で登録されるイベントハンドラー"""

from __future__ import annotations

import threading
from typing import ClassVar

import structlog

from . import metrics
from .events import (
    AuthenticatedEvent,
    ErrorEvent,
    EvaluatedEvent,
    EventKind,
    EventObserver,
    EventPublisher,
    FetchedEvent,
    MetricsPublishedEvent,
    ReadyEvent,
)
from .exceptions import TogglesError

logger = structlog.get_logger(__name__)


class LoggingEventHandler(EventObserver):
    """すべてのイベントを structlog に出力するハンドラー。"""

    def on_authenticated(self, event: AuthenticatedEvent) -> None:
        logger.info(
            "toggles client authenticated",
            client_id=event.client_id,
            authenticated_at=event.authenticated_at.isoformat(),
        )

    def on_fetched(self, event: FetchedEvent) -> None:
        logger.info(
            "remote toggles fetched",
            stage=event.snapshot.stage,
            features=len(event.snapshot.features),
            fetched_at=event.occurred_at.isoformat(),
        )

    def on_evaluated(self, event: EvaluatedEvent) -> None:
        logger.debug(
            "toggle evaluated",
            feature=event.feature,
            result=event.result,
            default_used=event.default_used,
        )

    def on_error(self, event: ErrorEvent) -> None:
        logger.warning(
            event.message,
            cause=type(event.cause).__name__ if event.cause is not None else None,
        )

    def on_ready(self, event: ReadyEvent) -> None:
        logger.info("toggles client ready", ready_at=event.ready_at.isoformat())

    def on_metrics(self, event: MetricsPublishedEvent) -> None:
        logger.info("toggles metrics published", features=len(event.counts))


class MetricsEventHandler(EventObserver):
    """評価結果を集計し、OpenTelemetry カウンターに記録するハンドラー。

    flush() で集計結果を MetricsPublished イベントとして発行し、集計をリセットする。
    """

    interested_kinds: ClassVar[frozenset[EventKind]] = frozenset(
        {
            EventKind.EVALUATED,
            EventKind.FETCHED,
            EventKind.ERROR,
            EventKind.AUTHENTICATED,
        }
    )

    def __init__(self, publisher: EventPublisher | None = None) -> None:
        self._publisher = publisher
        self._counts: dict[str, dict[str, int]] = {}
        self._lock = threading.Lock()

    def bind(self, publisher: EventPublisher) -> None:
        self._publisher = publisher

    def counts(self) -> dict[str, dict[str, int]]:
        with self._lock:
            return {feature: dict(buckets) for feature, buckets in self._counts.items()}

    def on_evaluated(self, event: EvaluatedEvent) -> None:
        bucket = "true" if event.result else "false"
        with self._lock:
            buckets = self._counts.setdefault(event.feature, {"true": 0, "false": 0})
            buckets[bucket] += 1
        metrics.evaluations_total.add(
            1,
            {"feature": event.feature, "result": bucket, "default_used": event.default_used},
        )

    def on_fetched(self, event: FetchedEvent) -> None:
        metrics.fetch_total.add(1, {"stage": event.snapshot.stage or ""})

    def on_error(self, event: ErrorEvent) -> None:
        cause = event.cause
        if isinstance(cause, TogglesError):
            attributes = {"code": cause.code, "retryable": cause.retryable}
        else:
            attributes = {"code": "UNKNOWN", "retryable": False}
        metrics.fetch_errors_total.add(1, attributes)

    def on_authenticated(self, event: AuthenticatedEvent) -> None:
        metrics.token_renewals_total.add(1)

    def flush(self) -> MetricsPublishedEvent:
        """集計を MetricsPublished イベントとして発行する。"""
        with self._lock:
            counts = self._counts
            self._counts = {}
        event = MetricsPublishedEvent(counts=counts)
        if self._publisher is not None:
            self._publisher.publish(event)
        return event

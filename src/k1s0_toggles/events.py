"""toggles クライアントのイベント定義"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import ClassVar, Protocol, runtime_checkable

from .models import FlagSnapshot


class EventKind(Enum):
    """イベント種別。"""

    AUTHENTICATED = "authenticated"
    FETCHED = "fetched"
    EVALUATED = "evaluated"
    ERROR = "error"
    READY = "ready"
    METRICS_PUBLISHED = "metrics_published"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class TogglesEvent:
    """バスに発行されるイベントの基底クラス。"""

    kind: ClassVar[EventKind]

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=_now)


@dataclass(frozen=True, kw_only=True)
class AuthenticatedEvent(TogglesEvent):
    kind: ClassVar[EventKind] = EventKind.AUTHENTICATED

    client_id: str
    authenticated_at: datetime = field(default_factory=_now)


@dataclass(frozen=True, kw_only=True)
class FetchedEvent(TogglesEvent):
    kind: ClassVar[EventKind] = EventKind.FETCHED

    snapshot: FlagSnapshot


@dataclass(frozen=True, kw_only=True)
class EvaluatedEvent(TogglesEvent):
    kind: ClassVar[EventKind] = EventKind.EVALUATED

    feature: str
    result: bool
    default_used: bool = False


@dataclass(frozen=True, kw_only=True)
class ErrorEvent(TogglesEvent):
    kind: ClassVar[EventKind] = EventKind.ERROR

    message: str
    cause: BaseException | None = None


@dataclass(frozen=True, kw_only=True)
class ReadyEvent(TogglesEvent):
    kind: ClassVar[EventKind] = EventKind.READY

    ready_at: datetime = field(default_factory=_now)


@dataclass(frozen=True, kw_only=True)
class MetricsPublishedEvent(TogglesEvent):
    kind: ClassVar[EventKind] = EventKind.METRICS_PUBLISHED

    # feature -> {"true": n, "false": m}
    counts: Mapping[str, Mapping[str, int]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # counts は読み取り専用
        frozen = {feature: MappingProxyType(dict(buckets)) for feature, buckets in self.counts.items()}
        object.__setattr__(self, "counts", MappingProxyType(frozen))


@runtime_checkable
class EventHandler(Protocol):
    """イベントハンドラープロトコル。"""

    def handles(self, kind: EventKind) -> bool: ...

    def handle(self, event: TogglesEvent) -> None: ...


@runtime_checkable
class EventPublisher(Protocol):
    """イベント発行側プロトコル。"""

    def publish(self, event: TogglesEvent) -> None: ...


class EventObserver:
    """イベント種別ごとの on_* メソッドに振り分けるハンドラー基底クラス。

    サブクラスは interested_kinds と必要な on_* メソッドだけを上書きする。
    """

    interested_kinds: ClassVar[frozenset[EventKind]] = frozenset(EventKind)

    def handles(self, kind: EventKind) -> bool:
        return kind in self.interested_kinds

    def handle(self, event: TogglesEvent) -> None:
        if isinstance(event, AuthenticatedEvent):
            self.on_authenticated(event)
        elif isinstance(event, FetchedEvent):
            self.on_fetched(event)
        elif isinstance(event, EvaluatedEvent):
            self.on_evaluated(event)
        elif isinstance(event, ErrorEvent):
            self.on_error(event)
        elif isinstance(event, ReadyEvent):
            self.on_ready(event)
        elif isinstance(event, MetricsPublishedEvent):
            self.on_metrics(event)

    def on_authenticated(self, event: AuthenticatedEvent) -> None:
        pass

    def on_fetched(self, event: FetchedEvent) -> None:
        pass

    def on_evaluated(self, event: EvaluatedEvent) -> None:
        pass

    def on_error(self, event: ErrorEvent) -> None:
        pass

    def on_ready(self, event: ReadyEvent) -> None:
        pass

    def on_metrics(self, event: MetricsPublishedEvent) -> None:
        pass

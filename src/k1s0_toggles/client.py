"""TogglesClient — フィーチャーフラグ判定のファサード"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from .bus import LocalEventBus
from .cache import RefreshCoordinator
from .config import TogglesConfig
from .credentials import HttpCredentialProvider, new_http_client
from .events import (
    AuthenticatedEvent,
    ErrorEvent,
    EvaluatedEvent,
    EventHandler,
    MetricsPublishedEvent,
    ReadyEvent,
)
from .exceptions import TogglesError
from .fetcher import RemoteFlagFetcher
from .handlers import LoggingEventHandler, MetricsEventHandler
from .models import Credential, FlagSnapshot

logger = structlog.get_logger(__name__)

CLIENT_NAME = "toggles-client-python"
CLIENT_VERSION = "0.1.0"


class TogglesClient:
    """リモートフラグサービスに対して「フィーチャー X は有効か」を答えるクライアント。

    フラグ一覧は TTL の間キャッシュされ、期限切れ後の最初の判定で再取得される。
    再取得に失敗した場合は最後に取得できたスナップショットで判定し、
    それも無ければ呼び出し側のデフォルト値を返す。is_enabled() は例外を送出しない。

    使い方::

        config = TogglesConfig(client_id="app", client_secret="secret", stage="production")
        with TogglesClient(config) as toggles:
            if toggles.is_enabled("dark-mode"):
                ...
    """

    def __init__(
        self,
        config: TogglesConfig,
        handlers: Iterable[EventHandler] | None = None,
        http_client: httpx.Client | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._config = config
        self._created_at = datetime.now(timezone.utc)
        self._owns_http = http_client is None
        self._http = http_client or new_http_client(config)

        self._metrics = MetricsEventHandler()
        subscribers = list(handlers) if handlers is not None else [LoggingEventHandler()]
        subscribers.append(self._metrics)
        self._bus = LocalEventBus(
            subscribers,
            reraise_on_error=config.reraise_on_error,
            poll_interval=config.event_poll_interval_seconds,
            max_redeliveries=config.max_redeliveries,
        )
        self._metrics.bind(self._bus)

        self._credentials = HttpCredentialProvider(
            config,
            self._http,
            sleep=sleep or time.sleep,
            on_renewed=self._on_authenticated,
        )
        self._fetcher = RemoteFlagFetcher(config, self._credentials, self._bus, self._http)
        self._cache = RefreshCoordinator(
            self._fetcher.fetch,
            ttl_seconds=config.cache_ttl_seconds,
            capacity=config.cache_capacity,
            clock=clock or time.monotonic,
        )
        self._ready = False
        self._ready_lock = threading.Lock()

        self._bus.start()
        if config.fetch_on_startup:
            self._snapshot()

    @classmethod
    def create(cls, client_id: str, client_secret: str, **overrides: Any) -> TogglesClient:
        """client_id と client_secret だけを指定してデフォルト設定のクライアントを作る。"""
        return cls(
            TogglesConfig(client_id=client_id, client_secret=client_secret, **overrides)
        )

    def __enter__(self) -> TogglesClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def config(self) -> TogglesConfig:
        return self._config

    @property
    def bus(self) -> LocalEventBus:
        return self._bus

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def version(self) -> str:
        return f"{CLIENT_NAME}:{CLIENT_VERSION}"

    def is_enabled(self, feature: str, default: bool = False) -> bool:
        """フィーチャーが有効かどうかを返す。

        フラグが取得できない場合や未知のフィーチャーの場合は default を返す。
        """
        snapshot = self._snapshot()
        result = snapshot.evaluate(feature) if snapshot is not None else None
        value = default if result is None else result
        self._bus.publish(
            EvaluatedEvent(feature=feature, result=value, default_used=result is None)
        )
        return value

    def exists(self, feature: str) -> bool:
        """現在のスナップショットにフィーチャーが定義されているか。"""
        snapshot = self._snapshot()
        return snapshot is not None and snapshot.has_feature(feature)

    def refresh(self) -> FlagSnapshot | None:
        """TTL に関係なくフラグ一覧を再取得する。

        Raises:
            TogglesError: 取得に失敗した場合
        """
        snapshot = self._cache.refresh(self._config.client_id)
        if snapshot is not None:
            self._mark_ready()
        return snapshot

    def set_stage(self, stage: str) -> TogglesClient:
        """判定対象のステージを切り替え、キャッシュを破棄する。"""
        self._config = self._config.with_stage(stage)
        self._fetcher.set_endpoint(self._config.toggles_endpoint)
        self._cache.invalidate(self._config.client_id)
        return self

    def subscribe(self, handler: EventHandler) -> bool:
        return self._bus.subscribe(handler)

    def unsubscribe(self, handler: EventHandler) -> bool:
        return self._bus.unsubscribe(handler)

    def publish_metrics(self) -> MetricsPublishedEvent:
        """評価回数の集計を MetricsPublished イベントとして発行する。"""
        return self._metrics.flush()

    def close(self) -> None:
        self._bus.shutdown()
        if self._owns_http:
            self._http.close()

    def _snapshot(self) -> FlagSnapshot | None:
        key = self._config.client_id
        try:
            snapshot = self._cache.get_current(key)
        except TogglesError as e:
            # Error イベントはフェッチャーが発行済み
            logger.warning(
                "toggles refresh failed, using last known toggles",
                error=str(e),
                retryable=e.retryable,
            )
            snapshot = None
        except Exception as e:
            logger.error("unexpected error while refreshing toggles", error=repr(e))
            self._bus.publish(ErrorEvent(message=f"Unexpected error: {e}", cause=e))
            snapshot = None

        if snapshot is None:
            return self._cache.peek(key)
        self._mark_ready()
        return snapshot

    def _mark_ready(self) -> None:
        with self._ready_lock:
            if self._ready:
                return
            self._ready = True
        self._bus.publish(ReadyEvent())

    def _on_authenticated(self, credential: Credential) -> None:
        self._bus.publish(
            AuthenticatedEvent(
                client_id=self._config.client_id,
                authenticated_at=datetime.fromtimestamp(credential.obtained_at, tz=timezone.utc),
            )
        )

"""LocalEventBus — バックグラウンドスレッドでイベントを配信するローカルイベントバス"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum

import structlog

from .events import EventHandler, EventKind, TogglesEvent

logger = structlog.get_logger(__name__)


class BusState(Enum):
    """ディスパッチループの状態。"""

    IDLE = "idle"
    DRAINING = "draining"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


@dataclass(frozen=True)
class _Delivery:
    """キュー上の配信単位。targets が None なら関心のある全ハンドラーが対象。"""

    event: TogglesEvent
    attempt: int = 0
    targets: tuple[EventHandler, ...] | None = None


class _DispatchRound:
    """1 回のディスパッチで失敗したハンドラーを集め、全員の完了後に 1 度だけ報告する。"""

    def __init__(
        self,
        delivery: _Delivery,
        pending: int,
        on_failed: Callable[[_Delivery, tuple[EventHandler, ...]], None],
    ) -> None:
        self.delivery = delivery
        self._pending = pending
        self._failed: list[EventHandler] = []
        self._on_failed = on_failed
        self._lock = threading.Lock()

    def done(self, handler: EventHandler, failed: bool) -> None:
        with self._lock:
            if failed:
                self._failed.append(handler)
            self._pending -= 1
            if self._pending > 0:
                return
            failed_handlers = tuple(self._failed)
        if failed_handlers:
            self._on_failed(self.delivery, failed_handlers)


class LocalEventBus:
    """プロセス内の非同期 publish/subscribe バス。

    publish() はキューに積んでディスパッチループを起こすだけで、発行側をブロックしない。
    ディスパッチループは 1 件ずつ取り出し、関心のあるハンドラーごとにワーカースレッドへ渡す。

    ハンドラーが失敗した場合、reraise_on_error が True なら失敗したハンドラーだけを
    宛先にして同じイベントをキュー末尾に 1 度だけ積み直す。試行回数は配信単位が持つ。
    max_redeliveries を指定すると、その回数だけ再配信しても失敗したイベントは
    dead_letters に 1 度だけ移される。
    """

    def __init__(
        self,
        handlers: Iterable[EventHandler] = (),
        reraise_on_error: bool = True,
        poll_interval: float = 1.0,
        max_redeliveries: int | None = None,
        max_workers: int | None = None,
        on_dead_letter: Callable[[TogglesEvent], None] | None = None,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self._reraise_on_error = reraise_on_error
        self._poll_interval = poll_interval
        self._max_redeliveries = max_redeliveries
        self._on_dead_letter = on_dead_letter

        self._queue: deque[_Delivery] = deque()
        self._condition = threading.Condition()
        self._state = BusState.STOPPED
        self._shutting_down = False
        self._thread: threading.Thread | None = None
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="toggles-event"
        )

        self._registry_lock = threading.RLock()
        self._handlers: list[EventHandler] = []
        self._handlers_by_kind: dict[EventKind, list[EventHandler]] = {}

        self._dead_letters: list[TogglesEvent] = []

        for handler in handlers:
            self.subscribe(handler)

    def __enter__(self) -> LocalEventBus:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    @property
    def state(self) -> BusState:
        return self._state

    @property
    def dead_letters(self) -> tuple[TogglesEvent, ...]:
        with self._condition:
            return tuple(self._dead_letters)

    def start(self) -> None:
        """ディスパッチループを開始する。起動済みなら何もしない。"""
        with self._condition:
            if self._shutting_down:
                raise RuntimeError("event bus has been shut down")
            if self._thread is not None:
                return
            self._state = BusState.IDLE
            self._thread = threading.Thread(
                target=self._run, name="toggles-event-bus", daemon=True
            )
            self._thread.start()

    def publish(self, event: TogglesEvent) -> None:
        """イベントをキューに積む。シャットダウン後のイベントは破棄される。"""
        self._enqueue(_Delivery(event))

    def subscribe(self, handler: EventHandler) -> bool:
        """ハンドラーを登録する。登録済みなら False。"""
        with self._registry_lock:
            if handler in self._handlers:
                return False
            self._handlers.append(handler)
            self._handlers_by_kind.clear()
            return True

    def unsubscribe(self, handler: EventHandler) -> bool:
        """ハンドラーの登録を解除する。未登録なら False。"""
        with self._registry_lock:
            if handler not in self._handlers:
                return False
            self._handlers.remove(handler)
            self._handlers_by_kind.clear()
            return True

    def shutdown(self, timeout: float | None = None) -> None:
        """ディスパッチループを停止する。未配信のイベントは破棄される。"""
        with self._condition:
            if self._shutting_down:
                return
            self._shutting_down = True
            if self._thread is not None:
                self._state = BusState.SHUTTING_DOWN
            self._condition.notify_all()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

        with self._condition:
            dropped = len(self._queue)
            self._queue.clear()
            self._state = BusState.STOPPED
        self._clear_handlers()
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.debug("event bus stopped", dropped_events=dropped)

    def is_empty(self) -> bool:
        with self._condition:
            return not self._queue

    def pending(self) -> int:
        with self._condition:
            return len(self._queue)

    def _enqueue(self, delivery: _Delivery) -> None:
        with self._condition:
            if self._shutting_down:
                logger.debug(
                    "event dropped after shutdown", event_kind=delivery.event.kind.value
                )
                return
            self._queue.append(delivery)
            self._condition.notify_all()

    def _run(self) -> None:
        logger.debug("event bus dispatch loop starting")
        while not self._shutting_down:
            with self._condition:
                if self._shutting_down:
                    break
                if not self._queue:
                    self._state = BusState.IDLE
                    # publish() か poll_interval 経過で起きる
                    self._condition.wait(self._poll_interval)
                    continue
                self._state = BusState.DRAINING
                delivery = self._queue.popleft()
            self._dispatch(delivery)
        logger.debug("event bus dispatch loop exiting")

    def _dispatch(self, delivery: _Delivery) -> None:
        consumers = self._consumers_for(delivery.event.kind)
        if delivery.targets is not None:
            # 再配信は失敗したハンドラーのうち、まだ登録されているものだけ
            consumers = [h for h in consumers if h in delivery.targets]
        if not consumers:
            return
        dispatch_round = _DispatchRound(delivery, len(consumers), self._redeliver)
        for handler in consumers:
            try:
                self._executor.submit(self._deliver, handler, dispatch_round)
            except RuntimeError:
                # シャットダウン中に executor が閉じられた
                logger.debug(
                    "event dropped during shutdown", event_kind=delivery.event.kind.value
                )
                return

    def _deliver(self, handler: EventHandler, dispatch_round: _DispatchRound) -> None:
        event = dispatch_round.delivery.event
        try:
            handler.handle(event)
        except Exception as e:
            logger.warning(
                "event handler failed",
                event_kind=event.kind.value,
                event_id=event.id,
                handler=type(handler).__name__,
                attempt=dispatch_round.delivery.attempt,
                error=str(e),
            )
            dispatch_round.done(handler, failed=True)
            return
        dispatch_round.done(handler, failed=False)

    def _redeliver(self, delivery: _Delivery, failed: tuple[EventHandler, ...]) -> None:
        if not self._reraise_on_error:
            return
        event = delivery.event
        if self._max_redeliveries is not None and delivery.attempt >= self._max_redeliveries:
            with self._condition:
                self._dead_letters.append(event)
            logger.error(
                "event moved to dead letters",
                event_kind=event.kind.value,
                event_id=event.id,
                redeliveries=delivery.attempt,
                failed_handlers=len(failed),
            )
            if self._on_dead_letter is not None:
                try:
                    self._on_dead_letter(event)
                except Exception as e:
                    logger.warning("dead letter callback failed", error=str(e))
            return
        self._enqueue(_Delivery(event, delivery.attempt + 1, failed))

    def _consumers_for(self, kind: EventKind) -> list[EventHandler]:
        with self._registry_lock:
            consumers = self._handlers_by_kind.get(kind)
            if consumers is None:
                consumers = [h for h in self._handlers if self._is_interested(h, kind)]
                self._handlers_by_kind[kind] = consumers
            return consumers

    @staticmethod
    def _is_interested(handler: EventHandler, kind: EventKind) -> bool:
        try:
            return handler.handles(kind)
        except Exception as e:
            logger.warning(
                "event handler interest check failed",
                event_kind=kind.value,
                handler=type(handler).__name__,
                error=str(e),
            )
            return False

    def _clear_handlers(self) -> None:
        with self._registry_lock:
            self._handlers.clear()
            self._handlers_by_kind.clear()

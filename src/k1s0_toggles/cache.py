"""RefreshCoordinator — TTL 付きスナップショットキャッシュと単一フライト更新"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from .models import FlagSnapshot

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """スナップショットと有効期限（clock 基準の絶対時刻）。"""

    snapshot: FlagSnapshot
    expires_at: float | None

    def is_stale(self, now: float) -> bool:
        return self.expires_at is None or now > self.expires_at


class RefreshCoordinator:
    """クライアントキーごとに 1 つのスナップショットを保持し、期限切れ時に再取得する。

    取得に失敗しても以前のエントリは残す。同じキーの再取得は同時に 1 つしか走らない。
    容量を超えたエントリは古い順に追い出され、追い出しはキャッシュミスと同じ扱いになる。
    """

    def __init__(
        self,
        fetch: Callable[[], FlagSnapshot | None],
        ttl_seconds: float,
        capacity: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._fetch = fetch
        self._ttl = ttl_seconds
        self._capacity = capacity
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._entries_lock = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()

    def get_current(self, client_key: str) -> FlagSnapshot | None:
        """現在のスナップショットを返す。期限切れなら再取得する。

        Raises:
            TogglesError: 再取得に失敗した場合（以前のエントリはそのまま）
        """
        entry = self._lookup(client_key)
        if entry is not None and not entry.is_stale(self._clock()):
            return entry.snapshot

        with self._lock_for(client_key):
            # 待っている間に他のスレッドが更新したかもしれない
            entry = self._lookup(client_key)
            if entry is not None and not entry.is_stale(self._clock()):
                return entry.snapshot
            return self._refresh(client_key)

    def refresh(self, client_key: str) -> FlagSnapshot | None:
        """期限に関係なく再取得する。"""
        with self._lock_for(client_key):
            return self._refresh(client_key)

    def peek(self, client_key: str) -> FlagSnapshot | None:
        """期限切れでも最後に保存したスナップショットを返す。"""
        entry = self._lookup(client_key)
        return entry.snapshot if entry is not None else None

    def is_stale(self, client_key: str) -> bool:
        entry = self._lookup(client_key)
        return entry is None or entry.is_stale(self._clock())

    def invalidate(self, client_key: str) -> None:
        with self._entries_lock:
            self._entries.pop(client_key, None)

    def _refresh(self, client_key: str) -> FlagSnapshot | None:
        snapshot = self._fetch()
        if snapshot is None:
            logger.info("refresh produced no snapshot", client_key=client_key)
            return None
        self._store(client_key, CacheEntry(snapshot, self._clock() + self._ttl))
        return snapshot

    def _lookup(self, client_key: str) -> CacheEntry | None:
        with self._entries_lock:
            entry = self._entries.get(client_key)
            if entry is not None:
                self._entries.move_to_end(client_key)
            return entry

    def _store(self, client_key: str, entry: CacheEntry) -> None:
        with self._entries_lock:
            self._entries[client_key] = entry
            self._entries.move_to_end(client_key)
            while len(self._entries) > self._capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("cache entry evicted", client_key=evicted)

    def _lock_for(self, client_key: str) -> threading.Lock:
        with self._key_locks_guard:
            lock = self._key_locks.get(client_key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[client_key] = lock
            return lock

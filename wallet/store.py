"""
Transactional document store.

Documents are plain dicts addressed by ``(collection, key)``. Multi-document
transactions are optimistic:

- every read inside a transaction records the version it saw (missing
  documents included, so two writers racing to create the same key conflict)
- writes are buffered in the transaction and applied only at commit
- commit validates the read set under the store lock; a stale read aborts the
  attempt and ``run_transaction`` retries the whole function with exponential
  backoff, up to a bounded number of attempts

Watches deliver document snapshots to listeners in commit order.
"""

import copy
import logging
import random
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar
from uuid import uuid4

from .config import WalletSettings
from .errors import ConflictRetryExhausted, StoreUnavailable

logger = logging.getLogger("wallet.store")

T = TypeVar("T")
Path = Tuple[str, str]


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


# Placeholder replaced with the commit time when a write is applied.
SERVER_TIMESTAMP = _ServerTimestamp()


class TransactionConflict(Exception):
    """A document read by the transaction changed before it could commit."""

    def __init__(self, path: Path):
        super().__init__(f"conflict on {path[0]}/{path[1]}")
        self.path = path


class Snapshot:
    __slots__ = ("collection", "key", "data", "version")

    def __init__(self, collection: str, key: str, data: Optional[dict], version: int):
        self.collection = collection
        self.key = key
        self.data = data
        self.version = version

    @property
    def exists(self) -> bool:
        return self.data is not None

    def __repr__(self) -> str:
        return f"Snapshot({self.collection}/{self.key}, version={self.version}, exists={self.exists})"


class Watch:
    def __init__(
        self,
        store: "TransactionalStore",
        path: Path,
        on_snapshot: Callable[[Snapshot], None],
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        self._store = store
        self.path = path
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.active = True

    def cancel(self) -> None:
        self._store._remove_watch(self)


class Transaction:
    """One attempt of an atomic unit of work. Obtain via ``run_transaction``."""

    def __init__(self, store: "TransactionalStore"):
        self._store = store
        self._reads: Dict[Path, int] = {}
        self._writes: Dict[Path, Tuple[str, Optional[dict]]] = {}
        self.committed = False

    def get(self, collection: str, key: str) -> Optional[dict]:
        path = (collection, key)
        if path in self._writes:
            return self._buffered(path)

        snap = self._store._snapshot(path)
        seen = self._reads.get(path)
        if seen is not None and seen != snap.version:
            raise TransactionConflict(path)
        self._reads[path] = snap.version
        return snap.data

    def create(self, collection: str, data: dict, key: Optional[str] = None) -> str:
        key = key or str(uuid4())
        self._writes[(collection, key)] = ("set", dict(data))
        return key

    def set(self, collection: str, key: str, data: dict) -> None:
        self._writes[(collection, key)] = ("set", dict(data))

    def update(self, collection: str, key: str, fields: dict) -> None:
        path = (collection, key)
        op, pending = self._writes.get(path, ("update", {}))
        if op == "delete":
            raise ValueError(f"cannot update deleted document {collection}/{key}")
        merged = dict(pending or {})
        merged.update(fields)
        self._writes[path] = (op, merged)

    def delete(self, collection: str, key: str) -> None:
        self._writes[(collection, key)] = ("delete", None)

    def _buffered(self, path: Path) -> Optional[dict]:
        op, data = self._writes[path]
        if op == "delete":
            return None
        if op == "set":
            return copy.deepcopy(data)
        base = self._store._snapshot(path).data or {}
        base.update(copy.deepcopy(data))
        return base

    def commit(self) -> datetime:
        return self._store._commit(self)


class TransactionalStore:
    """In-process document store with optimistic multi-document transactions."""

    def __init__(self, settings: Optional[WalletSettings] = None):
        self.settings = settings or WalletSettings()
        self._docs: Dict[Path, dict] = {}
        # Versions survive deletion so that re-creating a key still conflicts.
        self._versions: Dict[Path, int] = {}
        self._watches: Dict[Path, List[Watch]] = {}
        self._lock = threading.RLock()
        self._available = True
        self._last_commit_at: Optional[datetime] = None

    # -----------------------------
    # Availability
    # -----------------------------
    @property
    def available(self) -> bool:
        return self._available

    def set_available(self, available: bool) -> None:
        self._available = available
        logger.info("store availability changed: available=%s", available)

    def _ensure_available(self) -> None:
        if not self._available:
            raise StoreUnavailable()

    # -----------------------------
    # Transactions
    # -----------------------------
    def run_transaction(
        self,
        fn: Callable[[Transaction], T],
        *,
        max_attempts: Optional[int] = None,
        name: str = "transaction",
    ) -> T:
        """
        Run ``fn`` inside an optimistic transaction and commit it.

        ``fn`` may be invoked several times and must not have side effects
        outside the transaction. Exceptions raised by ``fn`` abort the attempt
        without writing anything and propagate to the caller.
        """
        attempts = max_attempts or self.settings.tx_max_attempts
        for attempt in range(attempts):
            self._ensure_available()
            txn = Transaction(self)
            try:
                result = fn(txn)
                commit_at = txn.commit()
                return _resolve(result, commit_at)
            except TransactionConflict as exc:
                logger.debug("%s attempt %d/%d conflicted: %s", name, attempt + 1, attempts, exc)
                if attempt + 1 < attempts:
                    time.sleep(self._backoff(attempt))

        logger.warning("%s gave up after %d attempts", name, attempts)
        raise ConflictRetryExhausted()

    def _backoff(self, attempt: int) -> float:
        delay = min(self.settings.tx_backoff_base * (2 ** attempt), self.settings.tx_backoff_max)
        return delay * random.uniform(0.5, 1.0)

    def _commit(self, txn: Transaction) -> datetime:
        notifications: List[Tuple[Watch, Snapshot]] = []
        with self._lock:
            self._ensure_available()
            for path, version in txn._reads.items():
                if self._versions.get(path, 0) != version:
                    raise TransactionConflict(path)
            for path, (op, _) in txn._writes.items():
                if op == "update" and path not in self._docs:
                    raise KeyError(f"cannot update missing document {path[0]}/{path[1]}")

            commit_at = self._next_timestamp()
            for path, (op, data) in txn._writes.items():
                if op == "delete":
                    self._docs.pop(path, None)
                elif op == "set":
                    self._docs[path] = _resolve(data, commit_at)
                else:
                    self._docs[path].update(_resolve(data, commit_at))
                self._versions[path] = self._versions.get(path, 0) + 1
                for watch in self._watches.get(path, ()):
                    notifications.append((watch, self._snapshot(path)))

            txn.committed = True
            # Delivered while still holding the lock so listeners observe commit order.
            for watch, snap in notifications:
                _deliver(watch, snap)
            return commit_at

    def _next_timestamp(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last_commit_at is not None and now <= self._last_commit_at:
            now = self._last_commit_at + timedelta(microseconds=1)
        self._last_commit_at = now
        return now

    # -----------------------------
    # Reads outside transactions
    # -----------------------------
    def _snapshot(self, path: Path) -> Snapshot:
        with self._lock:
            data = self._docs.get(path)
            return Snapshot(path[0], path[1], copy.deepcopy(data) if data is not None else None,
                            self._versions.get(path, 0))

    def get(self, collection: str, key: str) -> Optional[dict]:
        self._ensure_available()
        return self._snapshot((collection, key)).data

    def query(self, collection: str, where: Optional[Callable[[dict], bool]] = None) -> List[dict]:
        self._ensure_available()
        with self._lock:
            docs = [
                copy.deepcopy(data) for (coll, _), data in self._docs.items()
                if coll == collection and (where is None or where(data))
            ]
        return docs

    # -----------------------------
    # Watches
    # -----------------------------
    def watch(
        self,
        collection: str,
        key: str,
        on_snapshot: Callable[[Snapshot], None],
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> Watch:
        """Attach a listener; it immediately receives the current snapshot."""
        self._ensure_available()
        path = (collection, key)
        watch = Watch(self, path, on_snapshot, on_error)
        with self._lock:
            self._watches.setdefault(path, []).append(watch)
            _deliver(watch, self._snapshot(path))
        return watch

    def _remove_watch(self, watch: Watch) -> None:
        with self._lock:
            watch.active = False
            listeners = self._watches.get(watch.path, [])
            if watch in listeners:
                listeners.remove(watch)
            if not listeners:
                self._watches.pop(watch.path, None)

    def watch_count(self, collection: str, key: str) -> int:
        with self._lock:
            return len(self._watches.get((collection, key), []))

    def drop_watches(self, reason: str = "watch stream closed") -> int:
        """Terminate every watch as a transport failure would."""
        with self._lock:
            dropped = [w for listeners in self._watches.values() for w in listeners]
            self._watches.clear()
            for watch in dropped:
                watch.active = False
        logger.warning("dropping %d watch(es): %s", len(dropped), reason)
        for watch in dropped:
            if watch.on_error is not None:
                watch.on_error(StoreUnavailable(reason))
        return len(dropped)


def _resolve(value: Any, commit_at: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return commit_at
    if isinstance(value, dict):
        return {k: _resolve(v, commit_at) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve(v, commit_at) for v in value]
    if isinstance(value, tuple):
        return tuple(_resolve(v, commit_at) for v in value)
    return value


def _deliver(watch: Watch, snap: Snapshot) -> None:
    if not watch.active:
        return
    try:
        watch.on_snapshot(snap)
    except Exception:
        logger.exception("watch listener for %s/%s failed", snap.collection, snap.key)

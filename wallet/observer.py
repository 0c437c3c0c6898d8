"""
Balance subscriptions.

A subscription watches one account document and pushes its ``balance`` every
time a commit touches it, whatever operation made the change. Values arrive
in commit order. If the watch stream drops, the last value stays available
and the subscription re-attaches on its own.
"""

import logging
import queue
import threading
from typing import Callable, Iterator, List, Optional

from .errors import StoreUnavailable
from .ledger import ACCOUNTS
from .store import Snapshot, TransactionalStore, Watch

logger = logging.getLogger("wallet.observer")

BalanceListener = Callable[[int], None]

_CLOSED = object()


class SubscriptionClosed(Exception):
    pass


class BalanceSubscription:
    def __init__(
        self,
        store: TransactionalStore,
        user_id: str,
        reattach_delay: float = 0.05,
        reattach_max_delay: float = 2.0,
    ):
        self.store = store
        self.user_id = user_id
        self.last_value: Optional[int] = None
        self.reattach_count = 0
        self._reattach_delay = reattach_delay
        self._reattach_max_delay = reattach_max_delay
        self._queue: "queue.Queue" = queue.Queue()
        self._listeners: List[BalanceListener] = []
        self._watch: Optional[Watch] = None
        self._last_version = 0
        self._closed = False
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._watch is not None and self._watch.active

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, listener: BalanceListener) -> None:
        """
        Call ``listener`` with every new balance.

        Listeners run in the committing thread while the store's commit lock
        is held, so they must return quickly. Slow consumers should read from
        ``next_value`` or iterate the subscription instead.
        """
        self._listeners.append(listener)

    def attach(self) -> "BalanceSubscription":
        watch = self.store.watch(ACCOUNTS, self.user_id, self._on_snapshot, self._on_error)
        with self._lock:
            if self._closed:
                watch.cancel()
                return self
            self._watch = watch
        return self

    def _on_snapshot(self, snap: Snapshot) -> None:
        # Re-attaching replays the current document; skip it if nothing moved.
        if self._closed or not snap.exists or snap.version <= self._last_version:
            return
        self._last_version = snap.version
        balance = snap.data["balance"]
        self.last_value = balance
        self._queue.put(balance)
        for listener in list(self._listeners):
            listener(balance)

    def _on_error(self, error: Exception) -> None:
        if self._closed:
            return
        logger.warning(
            "balance stream for user=%s lost (%s); keeping last value %s",
            self.user_id, error, self.last_value,
        )
        self._watch = None
        self._reattach(0.0)

    def _reattach(self, previous_delay: float) -> None:
        if self._closed:
            return
        try:
            self.attach()
        except StoreUnavailable:
            delay = min(max(previous_delay * 2, self._reattach_delay), self._reattach_max_delay)
            logger.debug("re-attach for user=%s failed, retrying in %.2fs", self.user_id, delay)
            with self._lock:
                if self._closed:
                    return
                self._timer = threading.Timer(delay, self._reattach, args=(delay,))
                self._timer.daemon = True
                self._timer.start()
            return
        if self._closed:
            return
        self.reattach_count += 1
        logger.info("balance stream for user=%s re-attached", self.user_id)

    def next_value(self, timeout: Optional[float] = None) -> int:
        """Block until the next balance arrives. Raises ``queue.Empty`` on timeout."""
        value = self._queue.get(timeout=timeout)
        if value is _CLOSED:
            self._queue.put(_CLOSED)
            raise SubscriptionClosed(self.user_id)
        return value

    def __iter__(self) -> Iterator[int]:
        while True:
            try:
                yield self.next_value()
            except SubscriptionClosed:
                return

    def unsubscribe(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
            if self._watch is not None:
                self._watch.cancel()
                self._watch = None
        self._queue.put(_CLOSED)

    close = unsubscribe

    def __enter__(self) -> "BalanceSubscription":
        return self

    def __exit__(self, *exc) -> None:
        self.unsubscribe()


class BalanceObserver:
    def __init__(self, store: TransactionalStore):
        self.store = store

    def subscribe(self, user_id: str, listener: Optional[BalanceListener] = None) -> BalanceSubscription:
        subscription = BalanceSubscription(self.store, user_id)
        if listener is not None:
            subscription.add_listener(listener)
        return subscription.attach()

    def unsubscribe(self, subscription: BalanceSubscription) -> None:
        subscription.unsubscribe()

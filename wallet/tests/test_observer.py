"""
Unit Tests for Balance Subscriptions

Tests cover:
1. Initial value and pushed updates in commit order
2. Several subscribers on one account
3. Unsubscribe
4. Transparent re-attachment after the stream drops
"""

import queue
import time
from datetime import datetime, timezone

import pytest

from wallet.config import WalletSettings
from wallet.errors import InsufficientFunds
from wallet.models import TransactionKind
from wallet.observer import SubscriptionClosed
from wallet.service import WalletService

PLAYER_ID = "player-o"


def make_service() -> WalletService:
    service = WalletService(settings=WalletSettings(tx_backoff_base=0.0, tx_backoff_max=0.0))
    service.ledger.open_account(PLAYER_ID)
    return service


def drain(subscription, count: int) -> list:
    return [subscription.next_value(timeout=2) for _ in range(count)]


class TestSubscribe:
    """Tests for receiving balance updates."""

    def test_initial_value(self):
        """Test that a new subscription receives the current balance."""
        service = make_service()
        service.ledger.apply_delta(PLAYER_ID, 1000, TransactionKind.DEPOSIT)

        with service.observer.subscribe(PLAYER_ID) as subscription:
            assert subscription.next_value(timeout=1) == 1000
            assert subscription.last_value == 1000

    def test_updates_from_every_operation_in_order(self):
        """Test that debits and credits from any component are pushed in commit order."""
        service = make_service()
        service.catalog.add_event(
            event_id="cup", name="Cup", entry_fee=300,
            start_time=datetime(2030, 1, 1, 12, tzinfo=timezone.utc),
        )
        subscription = service.observer.subscribe(PLAYER_ID)

        service.withdrawals.credit_test_coins(PLAYER_ID, 1000)
        service.membership.join_tournament(PLAYER_ID, "cup")
        service.withdrawals.request_withdrawal(PLAYER_ID, 200, "03001234567")
        service.membership.cancel_registration(PLAYER_ID, "cup", 300)

        assert drain(subscription, 5) == [0, 1000, 700, 500, 800]
        subscription.unsubscribe()

    def test_failed_operation_pushes_nothing(self):
        """Test that an aborted transaction produces no update."""
        service = make_service()
        subscription = service.observer.subscribe(PLAYER_ID)
        assert subscription.next_value(timeout=1) == 0

        with pytest.raises(InsufficientFunds):
            service.withdrawals.request_withdrawal(PLAYER_ID, 10, "03001234567")

        with pytest.raises(queue.Empty):
            subscription.next_value(timeout=0.1)
        subscription.unsubscribe()

    def test_multiple_subscribers(self):
        """Test that every subscriber gets every value."""
        service = make_service()
        first = service.observer.subscribe(PLAYER_ID)
        second = service.observer.subscribe(PLAYER_ID)

        service.ledger.apply_delta(PLAYER_ID, 50, TransactionKind.DEPOSIT)
        service.ledger.apply_delta(PLAYER_ID, 25, TransactionKind.DEPOSIT)

        assert drain(first, 3) == [0, 50, 75]
        assert drain(second, 3) == [0, 50, 75]
        first.unsubscribe()
        second.unsubscribe()

    def test_listener_callback(self):
        """Test that callbacks receive the same values as the stream."""
        service = make_service()
        seen = []
        subscription = service.observer.subscribe(PLAYER_ID, listener=seen.append)

        service.ledger.apply_delta(PLAYER_ID, 10, TransactionKind.DEPOSIT)

        assert seen == [0, 10]
        subscription.unsubscribe()

    def test_listener_runs_before_commit_returns(self):
        """Test that callbacks are invoked synchronously by the committing call."""
        service = make_service()
        seen = []
        subscription = service.observer.subscribe(PLAYER_ID, listener=seen.append)

        service.withdrawals.credit_test_coins(PLAYER_ID, 30)
        assert seen[-1] == 30
        service.ledger.apply_delta(PLAYER_ID, -5, TransactionKind.JOIN)
        assert seen[-1] == 25
        subscription.unsubscribe()


class TestUnsubscribe:
    """Tests for releasing subscriptions."""

    def test_unsubscribe_releases_watch(self):
        """Test that unsubscribing detaches from the store and ends iteration."""
        service = make_service()
        subscription = service.observer.subscribe(PLAYER_ID)
        assert service.store.watch_count("accounts", PLAYER_ID) == 1

        service.observer.unsubscribe(subscription)
        service.ledger.apply_delta(PLAYER_ID, 10, TransactionKind.DEPOSIT)

        assert service.store.watch_count("accounts", PLAYER_ID) == 0
        assert list(subscription) == [0]
        with pytest.raises(SubscriptionClosed):
            subscription.next_value(timeout=1)

    def test_other_subscribers_unaffected(self):
        """Test that one subscriber leaving does not affect another."""
        service = make_service()
        leaving = service.observer.subscribe(PLAYER_ID)
        staying = service.observer.subscribe(PLAYER_ID)

        leaving.unsubscribe()
        service.ledger.apply_delta(PLAYER_ID, 10, TransactionKind.DEPOSIT)

        assert drain(staying, 2) == [0, 10]
        staying.unsubscribe()


class TestReattach:
    """Tests for recovery after the watch stream drops."""

    def test_reattach_keeps_last_value(self):
        """Test that a dropped stream re-attaches without re-emitting an unchanged balance."""
        service = make_service()
        service.ledger.apply_delta(PLAYER_ID, 100, TransactionKind.DEPOSIT)
        subscription = service.observer.subscribe(PLAYER_ID)
        assert subscription.next_value(timeout=1) == 100

        service.store.drop_watches()

        assert subscription.connected
        assert subscription.reattach_count == 1
        assert subscription.last_value == 100
        with pytest.raises(queue.Empty):
            subscription.next_value(timeout=0.1)

        service.ledger.apply_delta(PLAYER_ID, 50, TransactionKind.DEPOSIT)
        assert subscription.next_value(timeout=1) == 150
        subscription.unsubscribe()

    def test_reattach_after_outage(self):
        """Test that the subscription retries until the store is reachable again."""
        service = make_service()
        subscription = service.observer.subscribe(PLAYER_ID)
        assert subscription.next_value(timeout=1) == 0

        service.store.set_available(False)
        service.store.drop_watches()
        assert not subscription.connected
        assert subscription.last_value == 0

        service.store.set_available(True)
        deadline = time.monotonic() + 3
        while not subscription.connected and time.monotonic() < deadline:
            time.sleep(0.02)
        assert subscription.connected

        service.ledger.apply_delta(PLAYER_ID, 40, TransactionKind.DEPOSIT)
        assert subscription.next_value(timeout=2) == 40
        subscription.unsubscribe()

    def test_unsubscribe_during_reattach_leaves_no_watch(self):
        """Test that a re-attach racing with unsubscribe does not leak a store watch."""
        service = make_service()
        subscription = service.observer.subscribe(PLAYER_ID)
        store_watch = service.store.watch

        def watch_then_unsubscribe(*args, **kwargs):
            watch = store_watch(*args, **kwargs)
            subscription.unsubscribe()
            return watch

        service.store.watch = watch_then_unsubscribe
        service.store.drop_watches()

        assert subscription.closed
        assert not subscription.connected
        assert subscription.reattach_count == 0
        assert service.store.watch_count("accounts", PLAYER_ID) == 0

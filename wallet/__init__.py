"""
Coin Wallet and Tournament Membership Engine

This module provides:
- An optimistic transactional document store with bounded retries
- An append-only coin ledger (balance always equals the sum of its entries)
- Atomic tournament join / cancel with entry fee debit and refund
- Withdrawal requests that reserve coins until an admin settles them
- Push subscriptions to account balance changes
"""

from .catalog import EventCatalog
from .config import WalletSettings, load_settings
from .errors import (
    AlreadyJoined,
    ConflictRetryExhausted,
    EventNotFound,
    IdempotencyConflict,
    InsufficientFunds,
    InvalidStateTransition,
    NotAuthorized,
    NotRegistered,
    StoreUnavailable,
    UnknownAccount,
    ValidationError,
    WalletError,
    WithdrawalNotFound,
)
from .ledger import LedgerEngine
from .membership import MembershipCoordinator
from .models import (
    Event,
    ParticipantRecord,
    Session,
    TransactionKind,
    TransactionRecord,
    TransactionStatus,
    UserAccount,
    WithdrawalRequest,
    WithdrawalStatus,
)
from .observer import BalanceObserver, BalanceSubscription
from .service import WalletService
from .store import TransactionalStore
from .withdrawals import WithdrawalRequestQueue

__all__ = [
    "AlreadyJoined",
    "BalanceObserver",
    "BalanceSubscription",
    "ConflictRetryExhausted",
    "Event",
    "EventCatalog",
    "EventNotFound",
    "IdempotencyConflict",
    "InsufficientFunds",
    "InvalidStateTransition",
    "LedgerEngine",
    "MembershipCoordinator",
    "NotAuthorized",
    "NotRegistered",
    "ParticipantRecord",
    "Session",
    "StoreUnavailable",
    "TransactionKind",
    "TransactionRecord",
    "TransactionStatus",
    "TransactionalStore",
    "UnknownAccount",
    "UserAccount",
    "ValidationError",
    "WalletError",
    "WalletService",
    "WalletSettings",
    "WithdrawalNotFound",
    "WithdrawalRequest",
    "WithdrawalRequestQueue",
    "WithdrawalStatus",
    "load_settings",
]

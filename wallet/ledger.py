"""
Coin ledger.

Every balance change goes through ``apply_delta_in``: it reads the account
inside the caller's transaction, refuses to take the balance below zero and
appends exactly one immutable transaction record in the same commit. The
stored balance is therefore always the sum of the account's ledger.
"""

import logging
from typing import Optional, Tuple
from uuid import uuid4

from .errors import IdempotencyConflict, InsufficientFunds, UnknownAccount, ValidationError
from .models import (
    BalanceResponse,
    LedgerAudit,
    TransactionHistoryResponse,
    TransactionKind,
    TransactionRecord,
    TransactionStatus,
    UserAccount,
)
from .store import SERVER_TIMESTAMP, Transaction, TransactionalStore

logger = logging.getLogger("wallet.ledger")

ACCOUNTS = "accounts"
TRANSACTIONS = "transactions"
IDEMPOTENCY = "idempotency"


def require_amount(value, name: str = "amount", allow_zero: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be a whole number of coins.")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"{name} must be {'zero or more' if allow_zero else 'greater than zero'}.")
    return value


def apply_delta_in(
    txn: Transaction,
    user_id: str,
    delta: int,
    kind: TransactionKind,
    details: str = "",
    status: TransactionStatus = TransactionStatus.COMPLETED,
    event_id: Optional[str] = None,
    withdrawal_id: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> Tuple[dict, int]:
    """Debit or credit ``user_id`` inside ``txn``. Returns (record, new balance)."""
    account = txn.get(ACCOUNTS, user_id)
    if account is None:
        raise UnknownAccount()

    new_balance = account["balance"] + delta
    if new_balance < 0:
        raise InsufficientFunds()

    txn.update(ACCOUNTS, user_id, {"balance": new_balance, "updated_at": SERVER_TIMESTAMP})

    record = {
        "id": str(uuid4()),
        "user_id": user_id,
        "kind": kind.value,
        "amount": delta,
        "details": details,
        "status": status.value,
        "timestamp": SERVER_TIMESTAMP,
        "event_id": event_id,
        "withdrawal_id": withdrawal_id,
        "idempotency_key": idempotency_key,
    }
    txn.create(TRANSACTIONS, record, key=record["id"])
    return record, new_balance


def find_idempotent(txn: Transaction, key: Optional[str], operation: str, user_id: str) -> Optional[dict]:
    """Return the stored outcome for ``key`` if this operation already committed."""
    if not key:
        return None
    seen = txn.get(IDEMPOTENCY, key)
    if seen is None:
        return None
    if seen["operation"] != operation or seen["user_id"] != user_id:
        raise IdempotencyConflict()
    return seen


def remember_idempotent(txn: Transaction, key: Optional[str], operation: str, user_id: str, **refs) -> None:
    if not key:
        return
    txn.set(IDEMPOTENCY, key, {
        "key": key,
        "operation": operation,
        "user_id": user_id,
        "refs": refs,
        "created_at": SERVER_TIMESTAMP,
    })


class LedgerEngine:
    def __init__(self, store: TransactionalStore):
        self.store = store

    def open_account(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        email: Optional[str] = None,
        is_admin: bool = False,
    ) -> UserAccount:
        """Create the account at signup. Opening an existing account returns it unchanged."""
        def attempt(txn: Transaction) -> dict:
            existing = txn.get(ACCOUNTS, user_id)
            if existing is not None:
                return existing
            account = {
                "id": user_id,
                "balance": 0,
                "is_admin": is_admin,
                "display_name": display_name,
                "email": email,
                "created_at": SERVER_TIMESTAMP,
                "updated_at": SERVER_TIMESTAMP,
            }
            txn.set(ACCOUNTS, user_id, account)
            return account

        return UserAccount(**self.store.run_transaction(attempt, name="open_account"))

    def get_account(self, user_id: str) -> UserAccount:
        data = self.store.get(ACCOUNTS, user_id)
        if data is None:
            raise UnknownAccount()
        return UserAccount(**data)

    def apply_delta(
        self,
        user_id: str,
        delta: int,
        kind: TransactionKind,
        details: str = "",
        status: TransactionStatus = TransactionStatus.COMPLETED,
        idempotency_key: Optional[str] = None,
    ) -> TransactionRecord:
        record, _ = self.post(user_id, delta, kind, details, status, idempotency_key)
        return record

    def post(
        self,
        user_id: str,
        delta: int,
        kind: TransactionKind,
        details: str = "",
        status: TransactionStatus = TransactionStatus.COMPLETED,
        idempotency_key: Optional[str] = None,
    ) -> Tuple[TransactionRecord, int]:
        """
        Apply ``delta`` and return the record with the balance as of that commit.

        Replaying an ``idempotency_key`` returns the original record; reusing it
        for a different amount raises ``IdempotencyConflict``.
        """
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError("delta must be a whole number of coins.")
        operation = f"apply_delta:{kind.value}"

        def attempt(txn: Transaction) -> dict:
            seen = find_idempotent(txn, idempotency_key, operation, user_id)
            if seen is not None:
                record = txn.get(TRANSACTIONS, seen["refs"]["transaction_id"])
                if record["amount"] != delta:
                    raise IdempotencyConflict()
                return {"record": record, "balance": txn.get(ACCOUNTS, user_id)["balance"]}
            record, balance = apply_delta_in(
                txn, user_id, delta, kind, details, status, idempotency_key=idempotency_key,
            )
            remember_idempotent(txn, idempotency_key, operation, user_id, transaction_id=record["id"])
            return {"record": record, "balance": balance}

        result = self.store.run_transaction(attempt, name=operation)
        record = TransactionRecord(**result["record"])
        logger.info("ledger %s user=%s amount=%d tx=%s", kind.value, user_id, delta, record.id)
        return record, result["balance"]

    def get_balance(self, user_id: str) -> BalanceResponse:
        account = self.get_account(user_id)
        entries = self.store.query(TRANSACTIONS, lambda e: e["user_id"] == user_id)
        last_entry = max(entries, key=lambda e: e["timestamp"]) if entries else None

        return BalanceResponse(
            user_id=user_id,
            balance=account.balance,
            total_entries=len(entries),
            last_transaction_at=last_entry["timestamp"] if last_entry else None,
        )

    def get_history(self, user_id: str, limit: Optional[int] = None, offset: int = 0) -> TransactionHistoryResponse:
        """Transactions for ``user_id``, newest first."""
        limit = require_amount(limit if limit is not None else self.store.settings.history_limit, "limit")
        offset = require_amount(offset, "offset", allow_zero=True)
        account = self.get_account(user_id)
        all_entries = [
            TransactionRecord(**e)
            for e in self.store.query(TRANSACTIONS, lambda e: e["user_id"] == user_id)
        ]
        all_entries.sort(key=lambda e: e.timestamp, reverse=True)

        return TransactionHistoryResponse(
            user_id=user_id,
            entries=all_entries[offset:offset + limit],
            total_count=len(all_entries),
            current_balance=account.balance,
        )

    def audit(self, user_id: str) -> LedgerAudit:
        """Recompute the balance from the ledger and compare it with the stored one."""
        def attempt(txn: Transaction) -> dict:
            account = txn.get(ACCOUNTS, user_id)
            if account is None:
                raise UnknownAccount()
            # The ledger is append-only, so reading the account version pins it.
            entries = self.store.query(TRANSACTIONS, lambda e: e["user_id"] == user_id)
            return {
                "user_id": user_id,
                "stored_balance": account["balance"],
                "ledger_balance": sum(e["amount"] for e in entries),
                "entry_count": len(entries),
            }

        return LedgerAudit(**self.store.run_transaction(attempt, name="audit"))

"""
Withdrawal requests.

Coins are reserved when the request is made: the debit, the pending ledger
record and the request itself commit together, so the same coins cannot be
spent again while a payout is waiting for approval. An admin later resolves
the request exactly once; a rejection credits the reserved coins back in the
same commit that marks the request rejected.
"""

import logging
from typing import Optional
from uuid import uuid4

from .config import WalletSettings
from .errors import (
    IdempotencyConflict,
    InvalidStateTransition,
    NotAuthorized,
    UnknownAccount,
    ValidationError,
    WithdrawalNotFound,
)
from .ledger import (
    ACCOUNTS,
    TRANSACTIONS,
    LedgerEngine,
    apply_delta_in,
    find_idempotent,
    remember_idempotent,
    require_amount,
)
from .models import (
    LedgerResponse,
    TransactionKind,
    TransactionStatus,
    WithdrawalRequest,
    WithdrawalResponse,
    WithdrawalStatus,
)
from .store import SERVER_TIMESTAMP, Transaction, TransactionalStore

logger = logging.getLogger("wallet.withdrawals")

WITHDRAWALS = "withdrawals"


class WithdrawalRequestQueue:
    def __init__(self, store: TransactionalStore, ledger: Optional[LedgerEngine] = None):
        self.store = store
        self.ledger = ledger or LedgerEngine(store)

    @property
    def settings(self) -> WalletSettings:
        return self.store.settings

    def request_withdrawal(
        self,
        user_id: str,
        amount: int,
        contact: str,
        idempotency_key: Optional[str] = None,
    ) -> WithdrawalResponse:
        require_amount(amount)
        contact = (contact or "").strip()
        if not contact:
            raise ValidationError("A payout contact number is required.")

        def attempt(txn: Transaction) -> dict:
            seen = find_idempotent(txn, idempotency_key, "request_withdrawal", user_id)
            if seen is not None:
                request = txn.get(WITHDRAWALS, seen["refs"]["withdrawal_id"])
                if request["amount"] != amount or request["contact"] != contact:
                    raise IdempotencyConflict()
                return {
                    "request": request,
                    "transaction": txn.get(TRANSACTIONS, request["transaction_id"]),
                    "balance": txn.get(ACCOUNTS, user_id)["balance"],
                    "message": "Withdrawal request already submitted (idempotent return)",
                }

            withdrawal_id = str(uuid4())
            record, balance = apply_delta_in(
                txn, user_id, -amount, TransactionKind.WITHDRAWAL_REQUEST,
                details=f"Withdrawal to {contact}",
                status=TransactionStatus.PENDING,
                withdrawal_id=withdrawal_id,
                idempotency_key=idempotency_key,
            )
            request = {
                "id": withdrawal_id,
                "user_id": user_id,
                "amount": amount,
                "contact": contact,
                "status": WithdrawalStatus.PENDING.value,
                "created_at": SERVER_TIMESTAMP,
                "transaction_id": record["id"],
                "resolved_at": None,
                "resolved_by": None,
                "reason": None,
            }
            txn.create(WITHDRAWALS, request, key=withdrawal_id)
            remember_idempotent(
                txn, idempotency_key, "request_withdrawal", user_id, withdrawal_id=withdrawal_id,
            )
            return {
                "request": request,
                "transaction": record,
                "balance": balance,
                "message": "Withdrawal request submitted! It will be processed shortly.",
            }

        response = WithdrawalResponse(**self.store.run_transaction(attempt, name="request_withdrawal"))
        logger.info(
            "withdrawal requested id=%s user=%s amount=%d balance=%d",
            response.request.id, user_id, amount, response.balance,
        )
        return response

    def credit_test_coins(
        self,
        user_id: str,
        amount: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> LedgerResponse:
        """Non-production helper that credits demo coins."""
        if not self.settings.test_coins_enabled:
            raise ValidationError("Test coins are disabled.")
        amount = require_amount(amount if amount is not None else self.settings.test_coin_amount)

        record, balance = self.ledger.post(
            user_id, amount, TransactionKind.DEPOSIT_TEST,
            details="Test coins added for demonstration",
            idempotency_key=idempotency_key,
        )
        return LedgerResponse(
            transaction=record,
            balance=balance,
            message=f"{record.amount} test coins added!",
        )

    def resolve_withdrawal(
        self,
        request_id: str,
        approve: bool,
        approver_id: str,
        reason: Optional[str] = None,
    ) -> WithdrawalResponse:
        """
        Settle a pending request. Only admins may resolve, and only once.

        Approval marks the request and its ledger record completed. Rejection
        marks both rejected and credits the reserved amount back through the
        ledger in the same commit.
        """
        def attempt(txn: Transaction) -> dict:
            approver = txn.get(ACCOUNTS, approver_id)
            if approver is None:
                raise UnknownAccount()
            if not approver.get("is_admin"):
                raise NotAuthorized()

            request = txn.get(WITHDRAWALS, request_id)
            if request is None:
                raise WithdrawalNotFound()
            if not WithdrawalRequest(**request).can_resolve():
                raise InvalidStateTransition(
                    f"Cannot resolve withdrawal in {request['status']} state."
                )

            status = WithdrawalStatus.COMPLETED if approve else WithdrawalStatus.REJECTED
            changes = {
                "status": status.value,
                "resolved_at": SERVER_TIMESTAMP,
                "resolved_by": approver_id,
                "reason": reason,
            }
            txn.update(WITHDRAWALS, request_id, changes)
            request.update(changes)

            record_status = TransactionStatus.COMPLETED if approve else TransactionStatus.REJECTED
            txn.update(TRANSACTIONS, request["transaction_id"], {"status": record_status.value})

            if approve:
                record = txn.get(TRANSACTIONS, request["transaction_id"])
                balance = txn.get(ACCOUNTS, request["user_id"])["balance"]
                message = "Withdrawal approved."
            else:
                record, balance = apply_delta_in(
                    txn, request["user_id"], request["amount"], TransactionKind.WITHDRAWAL_REVERSAL,
                    details=f"Withdrawal rejected: {reason}" if reason else "Withdrawal rejected",
                    withdrawal_id=request_id,
                )
                message = "Withdrawal rejected and coins returned."
            return {"request": request, "transaction": record, "balance": balance, "message": message}

        response = WithdrawalResponse(**self.store.run_transaction(attempt, name="resolve_withdrawal"))
        log = logger.info if approve else logger.warning
        log(
            "withdrawal %s id=%s user=%s amount=%d by=%s",
            response.request.status.value, request_id, response.request.user_id,
            response.request.amount, approver_id,
        )
        return response

    def get_request(self, request_id: str) -> WithdrawalRequest:
        data = self.store.get(WITHDRAWALS, request_id)
        if data is None:
            raise WithdrawalNotFound()
        return WithdrawalRequest(**data)

    def list_requests(
        self,
        user_id: Optional[str] = None,
        status: Optional[WithdrawalStatus] = None,
    ) -> list[WithdrawalRequest]:
        """Requests newest first, optionally filtered by owner and status."""
        def matches(r: dict) -> bool:
            if user_id is not None and r["user_id"] != user_id:
                return False
            return status is None or r["status"] == status.value

        requests = [WithdrawalRequest(**r) for r in self.store.query(WITHDRAWALS, matches)]
        requests.sort(key=lambda r: r.created_at, reverse=True)
        return requests

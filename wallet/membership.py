"""
Tournament membership.

Joining and cancelling each run as one transaction that touches the account
balance, the roster slot ``participants/{event_id}:{user_id}`` and the ledger
together, so a user is never debited without being registered or registered
without being debited.
"""

import logging
from typing import Optional

from .catalog import EVENTS
from .errors import AlreadyJoined, EventNotFound, IdempotencyConflict, NotRegistered, ValidationError
from .ledger import (
    ACCOUNTS,
    TRANSACTIONS,
    apply_delta_in,
    find_idempotent,
    remember_idempotent,
    require_amount,
)
from .models import Event, MembershipResponse, ParticipantRecord, TransactionKind
from .store import SERVER_TIMESTAMP, Transaction, TransactionalStore

logger = logging.getLogger("wallet.membership")

PARTICIPANTS = "participants"


def participant_key(event_id: str, user_id: str) -> str:
    return f"{event_id}:{user_id}"


class MembershipCoordinator:
    def __init__(self, store: TransactionalStore):
        self.store = store

    def join_tournament(
        self,
        user_id: str,
        event_id: str,
        display_name: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> MembershipResponse:
        """
        Register ``user_id`` for ``event_id`` and debit the entry fee.

        The fee is read from the event inside the transaction. Raises
        ``AlreadyJoined`` if the roster slot is taken and ``InsufficientFunds``
        if the balance does not cover the fee; neither leaves any trace.
        """
        key = participant_key(event_id, user_id)

        def attempt(txn: Transaction) -> dict:
            seen = find_idempotent(txn, idempotency_key, "join_tournament", user_id)
            if seen is not None:
                if seen["refs"]["event_id"] != event_id:
                    raise IdempotencyConflict()
                return {
                    "event": txn.get(EVENTS, event_id),
                    "participant": txn.get(PARTICIPANTS, key),
                    "transaction": txn.get(TRANSACTIONS, seen["refs"]["transaction_id"]),
                    "balance": txn.get(ACCOUNTS, user_id)["balance"],
                    "message": "Original result of this request (idempotent return)",
                }

            event = txn.get(EVENTS, event_id)
            if event is None:
                raise EventNotFound()
            if txn.get(PARTICIPANTS, key) is not None:
                raise AlreadyJoined()

            record, balance = apply_delta_in(
                txn, user_id, -event["entry_fee"], TransactionKind.JOIN,
                details=f"Entry fee for {event['name']}",
                event_id=event_id,
                idempotency_key=idempotency_key,
            )
            participant = {
                "event_id": event_id,
                "user_id": user_id,
                "display_name": display_name,
                "entry_fee": event["entry_fee"],
                "joined_at": SERVER_TIMESTAMP,
            }
            txn.set(PARTICIPANTS, key, participant)
            remember_idempotent(
                txn, idempotency_key, "join_tournament", user_id,
                event_id=event_id, transaction_id=record["id"],
            )
            return {
                "event": event,
                "participant": participant,
                "transaction": record,
                "balance": balance,
                "message": f"Successfully joined {event['name']}!",
            }

        response = MembershipResponse(**self.store.run_transaction(attempt, name="join_tournament"))
        logger.info(
            "user=%s joined event=%s fee=%d balance=%d",
            user_id, event_id, -response.transaction.amount, response.balance,
        )
        return response

    def cancel_registration(self, user_id: str, event_id: str, entry_fee: int) -> MembershipResponse:
        """Remove ``user_id`` from the roster and refund ``entry_fee``."""
        require_amount(entry_fee, "entry_fee", allow_zero=True)
        key = participant_key(event_id, user_id)

        def attempt(txn: Transaction) -> dict:
            participant = txn.get(PARTICIPANTS, key)
            if participant is None:
                raise NotRegistered()
            if participant.get("entry_fee", entry_fee) != entry_fee:
                raise ValidationError("Refund amount does not match the entry fee that was paid.")

            event = txn.get(EVENTS, event_id)
            name = event["name"] if event else "this tournament"
            record, balance = apply_delta_in(
                txn, user_id, entry_fee, TransactionKind.REFUND,
                details=f"Refund for canceling registration for {name}",
                event_id=event_id,
            )
            txn.delete(PARTICIPANTS, key)
            return {
                "event": event,
                "participant": None,
                "transaction": record,
                "balance": balance,
                "message": "Registration canceled and fee refunded!",
            }

        response = MembershipResponse(**self.store.run_transaction(attempt, name="cancel_registration"))
        logger.info("user=%s cancelled event=%s refund=%d balance=%d", user_id, event_id, entry_fee, response.balance)
        return response

    def is_registered(self, user_id: str, event_id: str) -> bool:
        return self.store.get(PARTICIPANTS, participant_key(event_id, user_id)) is not None

    def list_participants(self, event_id: str) -> list[ParticipantRecord]:
        records = [
            ParticipantRecord(**p)
            for p in self.store.query(PARTICIPANTS, lambda p: p["event_id"] == event_id)
        ]
        records.sort(key=lambda p: p.joined_at)
        return records

    def list_registrations(self, user_id: str) -> list[Event]:
        """Tournaments ``user_id`` is currently registered for."""
        events = []
        for participant in self.store.query(PARTICIPANTS, lambda p: p["user_id"] == user_id):
            data = self.store.get(EVENTS, participant["event_id"])
            if data is not None:
                events.append(Event(**data))
        events.sort(key=lambda e: e.start_time)
        return events

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class TransactionKind(str, Enum):
    JOIN = "join"
    REFUND = "refund"
    WITHDRAWAL_REQUEST = "withdrawal_request"
    WITHDRAWAL_REVERSAL = "withdrawal_reversal"
    DEPOSIT = "deposit"
    DEPOSIT_TEST = "deposit_test"


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    REJECTED = "rejected"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


class Session(BaseModel):
    """Identity of the signed-in user, as supplied by the identity provider."""
    uid: str
    display_name: Optional[str] = None
    email: Optional[str] = None


class UserAccount(BaseModel):
    id: str
    balance: int = Field(default=0, ge=0)
    is_admin: bool = False
    display_name: Optional[str] = None
    email: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class Event(BaseModel):
    id: str
    name: str
    game_type: str = ""
    entry_fee: int = Field(..., ge=0)
    start_time: datetime
    location: str = ""
    rules_text: str = ""

    model_config = ConfigDict(from_attributes=True)


class ParticipantRecord(BaseModel):
    event_id: str
    user_id: str
    display_name: Optional[str] = None
    entry_fee: int = 0
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionRecord(BaseModel):
    id: str
    user_id: str
    kind: TransactionKind
    amount: int
    details: str = ""
    status: TransactionStatus
    timestamp: datetime
    event_id: Optional[str] = None
    withdrawal_id: Optional[str] = None
    idempotency_key: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class WithdrawalRequest(BaseModel):
    id: str
    user_id: str
    amount: int = Field(..., gt=0)
    contact: str
    status: WithdrawalStatus
    created_at: datetime
    transaction_id: str
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    def can_resolve(self) -> bool:
        return self.status == WithdrawalStatus.PENDING


# Request bodies

class JoinTournamentRequest(BaseModel):
    idempotency_key: Optional[str] = Field(default=None, description="Optional key to make retries safe")


class CancelRegistrationRequest(BaseModel):
    entry_fee: int = Field(..., description="Entry fee to refund, as shown when the user joined")


class CreateWithdrawalRequest(BaseModel):
    amount: int
    contact: str = Field(..., description="Mobile wallet number the payout goes to")
    idempotency_key: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "amount": 1000,
            "contact": "03001234567",
            "idempotency_key": "withdraw-2024-06-01-001"
        }
    })


class ResolveWithdrawalRequest(BaseModel):
    approve: bool
    reason: Optional[str] = None


class CreditTestCoinsRequest(BaseModel):
    amount: Optional[int] = None
    idempotency_key: Optional[str] = None


# Responses

class BalanceResponse(BaseModel):
    user_id: str
    balance: int
    total_entries: int
    last_transaction_at: Optional[datetime] = None


class TransactionHistoryResponse(BaseModel):
    user_id: str
    entries: list[TransactionRecord]
    total_count: int
    current_balance: int


class LedgerAudit(BaseModel):
    user_id: str
    stored_balance: int
    ledger_balance: int
    entry_count: int

    @property
    def consistent(self) -> bool:
        return self.stored_balance == self.ledger_balance and self.stored_balance >= 0


class MembershipResponse(BaseModel):
    event: Optional[Event] = None
    participant: Optional[ParticipantRecord] = None
    transaction: TransactionRecord
    balance: int
    message: str


class WithdrawalResponse(BaseModel):
    request: WithdrawalRequest
    transaction: TransactionRecord
    balance: int
    message: str


class LedgerResponse(BaseModel):
    transaction: TransactionRecord
    balance: int
    message: str

from typing import Optional


class WalletError(Exception):
    """Base class for every error the wallet engine raises.

    ``code`` is stable and machine-readable; ``str(error)`` is the short
    message shown to the user.
    """

    code = "wallet_error"
    default_message = "Wallet operation failed."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(WalletError):
    code = "validation_error"
    default_message = "Invalid request."


class InsufficientFunds(WalletError):
    code = "insufficient_funds"
    default_message = "Insufficient coins! Please top up your wallet."


class AlreadyJoined(WalletError):
    code = "already_joined"
    default_message = "You have already joined this tournament."


class NotRegistered(WalletError):
    code = "not_registered"
    default_message = "You are not registered for this tournament."


class ConflictRetryExhausted(WalletError):
    code = "conflict_retry_exhausted"
    default_message = "Too many concurrent updates. Please try again."


class StoreUnavailable(WalletError):
    code = "store_unavailable"
    default_message = "The wallet is temporarily unavailable. Please try again later."


class UnknownAccount(WalletError):
    code = "account_not_found"
    default_message = "User account not found."


class EventNotFound(WalletError):
    code = "event_not_found"
    default_message = "Tournament not found."


class WithdrawalNotFound(WalletError):
    code = "withdrawal_not_found"
    default_message = "Withdrawal request not found."


class NotAuthorized(WalletError):
    code = "not_authorized"
    default_message = "You are not allowed to perform this action."


class InvalidStateTransition(WalletError):
    code = "invalid_state_transition"
    default_message = "This request has already been processed."


class IdempotencyConflict(WalletError):
    code = "idempotency_conflict"
    default_message = "Idempotency key was already used for a different operation."

from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .config import load_settings
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
from .models import (
    BalanceResponse,
    CancelRegistrationRequest,
    CreateWithdrawalRequest,
    CreditTestCoinsRequest,
    Event,
    JoinTournamentRequest,
    LedgerResponse,
    MembershipResponse,
    ResolveWithdrawalRequest,
    Session,
    TransactionHistoryResponse,
    UserAccount,
    WithdrawalRequest,
    WithdrawalResponse,
    WithdrawalStatus,
)
from .service import WalletService

ERROR_STATUS = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InsufficientFunds: status.HTTP_402_PAYMENT_REQUIRED,
    AlreadyJoined: status.HTTP_409_CONFLICT,
    NotRegistered: status.HTTP_409_CONFLICT,
    InvalidStateTransition: status.HTTP_409_CONFLICT,
    IdempotencyConflict: status.HTTP_409_CONFLICT,
    UnknownAccount: status.HTTP_404_NOT_FOUND,
    EventNotFound: status.HTTP_404_NOT_FOUND,
    WithdrawalNotFound: status.HTTP_404_NOT_FOUND,
    NotAuthorized: status.HTTP_403_FORBIDDEN,
    ConflictRetryExhausted: status.HTTP_503_SERVICE_UNAVAILABLE,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def http_error(e: WalletError) -> HTTPException:
    code = ERROR_STATUS.get(type(e), status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=code, detail={"code": e.code, "message": str(e)})


settings = load_settings()
wallet_service = WalletService(settings=settings, seed=settings.seed_demo_data)


def get_service() -> WalletService:
    return wallet_service


def get_session(
    x_user_id: str = Header(..., description="Authenticated user id from the identity provider"),
    x_display_name: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
) -> Session:
    return Session(uid=x_user_id, display_name=x_display_name, email=x_user_email)


app = FastAPI(
    title="Coin Wallet API",
    description="Coin wallet, tournament membership and withdrawal requests backed by an auditable ledger",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["System"])
def health_check(service: WalletService = Depends(get_service)):
    return {"status": "healthy" if service.store.available else "degraded", "service": "coin-wallet"}


@app.post("/me/account", response_model=UserAccount, tags=["Wallet"])
def open_account(
    session: Session = Depends(get_session),
    service: WalletService = Depends(get_service),
) -> UserAccount:
    """Called once by the sign-up flow; opening an existing account returns it unchanged."""
    try:
        return service.ledger.open_account(session.uid, session.display_name, session.email)
    except WalletError as e:
        raise http_error(e)


@app.get("/events", response_model=list[Event], tags=["Tournaments"])
def list_events(q: str = "", service: WalletService = Depends(get_service)) -> list[Event]:
    try:
        return service.catalog.search(q)
    except WalletError as e:
        raise http_error(e)


@app.get("/events/{event_id}", response_model=Event, tags=["Tournaments"])
def get_event(event_id: str, service: WalletService = Depends(get_service)) -> Event:
    try:
        return service.catalog.get_event(event_id)
    except WalletError as e:
        raise http_error(e)


@app.post("/events/{event_id}/join", response_model=MembershipResponse,
          status_code=status.HTTP_201_CREATED, tags=["Tournaments"])
def join_tournament(
    event_id: str,
    request: Optional[JoinTournamentRequest] = None,
    session: Session = Depends(get_session),
    service: WalletService = Depends(get_service),
) -> MembershipResponse:
    request = request or JoinTournamentRequest()
    try:
        return service.membership.join_tournament(
            session.uid, event_id,
            display_name=session.display_name,
            idempotency_key=request.idempotency_key,
        )
    except WalletError as e:
        raise http_error(e)


@app.post("/events/{event_id}/cancel", response_model=MembershipResponse, tags=["Tournaments"])
def cancel_registration(
    event_id: str,
    request: CancelRegistrationRequest,
    session: Session = Depends(get_session),
    service: WalletService = Depends(get_service),
) -> MembershipResponse:
    try:
        return service.membership.cancel_registration(session.uid, event_id, request.entry_fee)
    except WalletError as e:
        raise http_error(e)


@app.get("/me/registrations", response_model=list[Event], tags=["Tournaments"])
def my_registrations(
    session: Session = Depends(get_session),
    service: WalletService = Depends(get_service),
) -> list[Event]:
    try:
        return service.membership.list_registrations(session.uid)
    except WalletError as e:
        raise http_error(e)


@app.get("/me/balance", response_model=BalanceResponse, tags=["Wallet"])
def my_balance(
    session: Session = Depends(get_session),
    service: WalletService = Depends(get_service),
) -> BalanceResponse:
    try:
        return service.ledger.get_balance(session.uid)
    except WalletError as e:
        raise http_error(e)


@app.get("/me/transactions", response_model=TransactionHistoryResponse, tags=["Wallet"])
def my_transactions(
    limit: Optional[int] = None,
    offset: int = 0,
    session: Session = Depends(get_session),
    service: WalletService = Depends(get_service),
) -> TransactionHistoryResponse:
    try:
        return service.ledger.get_history(session.uid, limit, offset)
    except WalletError as e:
        raise http_error(e)


@app.post("/me/test-coins", response_model=LedgerResponse, status_code=status.HTTP_201_CREATED, tags=["Wallet"])
def add_test_coins(
    request: Optional[CreditTestCoinsRequest] = None,
    session: Session = Depends(get_session),
    service: WalletService = Depends(get_service),
) -> LedgerResponse:
    request = request or CreditTestCoinsRequest()
    try:
        return service.withdrawals.credit_test_coins(session.uid, request.amount, request.idempotency_key)
    except WalletError as e:
        raise http_error(e)


@app.post("/me/withdrawals", response_model=WithdrawalResponse, status_code=status.HTTP_201_CREATED, tags=["Wallet"])
def request_withdrawal(
    request: CreateWithdrawalRequest,
    session: Session = Depends(get_session),
    service: WalletService = Depends(get_service),
) -> WithdrawalResponse:
    try:
        return service.withdrawals.request_withdrawal(
            session.uid, request.amount, request.contact, request.idempotency_key,
        )
    except WalletError as e:
        raise http_error(e)


@app.get("/me/withdrawals", response_model=list[WithdrawalRequest], tags=["Wallet"])
def my_withdrawals(
    status_filter: Optional[WithdrawalStatus] = None,
    session: Session = Depends(get_session),
    service: WalletService = Depends(get_service),
) -> list[WithdrawalRequest]:
    try:
        return service.withdrawals.list_requests(session.uid, status_filter)
    except WalletError as e:
        raise http_error(e)


@app.post("/admin/withdrawals/{request_id}/resolve", response_model=WithdrawalResponse, tags=["Admin"])
def resolve_withdrawal(
    request_id: str,
    request: ResolveWithdrawalRequest,
    session: Session = Depends(get_session),
    service: WalletService = Depends(get_service),
) -> WithdrawalResponse:
    try:
        return service.withdrawals.resolve_withdrawal(request_id, request.approve, session.uid, request.reason)
    except WalletError as e:
        raise http_error(e)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

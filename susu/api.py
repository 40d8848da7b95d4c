from contextlib import asynccontextmanager
from datetime import date
from typing import Optional
from uuid import UUID
from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .config import configure_logging
from .models import (
    Account, OpenAccountRequest, DepositRequest, WithdrawalRequest, ReverseWithdrawalRequest,
    RateChangeRequest, CycleAdjustRequest, LedgerEntry, WithdrawalResult, ReversalResult,
    RateChangeResult, CycleStatus, CycleRebuildResult, CommissionHistoryItem, PeriodTotals, PendingCycle,
    LedgerHistoryResponse,
)
from .errors import (
    SusuLedgerError, AccountNotFoundError, DuplicateAccountError, InsufficientBalanceError,
    ReversalTargetNotFoundError, AlreadyReversedError, StorageFailureError,
)
from .service import SusuLedgerService


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    yield


app = FastAPI(
    lifespan=lifespan,
    title="Susu Commission Ledger API",
    description="Savings ledger with page-based commission on withdrawals, reversals and rate changes",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger_service = SusuLedgerService()


def _to_http(e: SusuLedgerError) -> HTTPException:
    if isinstance(e, (AccountNotFoundError, ReversalTargetNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, (AlreadyReversedError, DuplicateAccountError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, InsufficientBalanceError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": str(e), "shortfall": str(e.shortfall)},
        )
    if isinstance(e, StorageFailureError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
            headers={"Retry-After": "1"},
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "susu-ledger"}


@app.post("/accounts", response_model=Account, status_code=status.HTTP_201_CREATED, tags=["Accounts"])
def open_account(request: OpenAccountRequest) -> Account:
    try:
        return ledger_service.open_account(
            rate=request.rate,
            opening_balance=request.opening_balance,
            account_id=request.account_id,
            name=request.name,
        )
    except SusuLedgerError as e:
        raise _to_http(e)


@app.post("/accounts/{account_id}/deposits", response_model=LedgerEntry, status_code=status.HTTP_201_CREATED, tags=["Accounts"])
def deposit(account_id: UUID, request: DepositRequest) -> LedgerEntry:
    try:
        return ledger_service.deposit(account_id, request.amount, request.occurred_on, request.notes)
    except SusuLedgerError as e:
        raise _to_http(e)


@app.post("/accounts/{account_id}/withdrawals", response_model=WithdrawalResult, status_code=status.HTTP_201_CREATED, tags=["Withdrawals"])
def create_withdrawal(account_id: UUID, request: WithdrawalRequest) -> WithdrawalResult:
    try:
        return ledger_service.process_withdrawal(account_id, request.amount, request.occurred_on, request.notes)
    except SusuLedgerError as e:
        raise _to_http(e)


@app.post("/withdrawals/{entry_id}/reverse", response_model=ReversalResult, tags=["Withdrawals"])
def reverse_withdrawal(entry_id: UUID, request: ReverseWithdrawalRequest) -> ReversalResult:
    try:
        return ledger_service.reverse_withdrawal(entry_id, request.reason)
    except SusuLedgerError as e:
        raise _to_http(e)


@app.get("/accounts/{account_id}/cycle", response_model=CycleStatus, tags=["Commission Cycles"])
def get_cycle(account_id: UUID) -> CycleStatus:
    try:
        return ledger_service.get_cycle_state(account_id)
    except SusuLedgerError as e:
        raise _to_http(e)


@app.post("/accounts/{account_id}/cycle/reset", response_model=CycleStatus, tags=["Commission Cycles"])
def reset_cycle(account_id: UUID) -> CycleStatus:
    try:
        return ledger_service.reset_cycle(account_id)
    except SusuLedgerError as e:
        raise _to_http(e)


@app.post("/accounts/{account_id}/cycle/adjust", response_model=CycleStatus, tags=["Commission Cycles"])
def adjust_cycle(account_id: UUID, request: CycleAdjustRequest) -> CycleStatus:
    try:
        return ledger_service.adjust_cycle(account_id, request.cumulative)
    except SusuLedgerError as e:
        raise _to_http(e)


@app.post("/accounts/{account_id}/cycle/rebuild", response_model=CycleRebuildResult, tags=["Commission Cycles"])
def rebuild_cycle(account_id: UUID, dry_run: bool = False) -> CycleRebuildResult:
    try:
        return ledger_service.rebuild_cycle(account_id, dry_run)
    except SusuLedgerError as e:
        raise _to_http(e)


@app.put("/accounts/{account_id}/rate", response_model=RateChangeResult, tags=["Accounts"])
def update_rate(account_id: UUID, request: RateChangeRequest) -> RateChangeResult:
    try:
        return ledger_service.update_rate(account_id, request.rate)
    except SusuLedgerError as e:
        raise _to_http(e)


@app.get("/accounts/{account_id}/commissions", response_model=list[CommissionHistoryItem], tags=["Reports"])
def commission_history(account_id: UUID) -> list[CommissionHistoryItem]:
    try:
        return ledger_service.commission_history(account_id)
    except SusuLedgerError as e:
        raise _to_http(e)


@app.get("/accounts/{account_id}/ledger", response_model=LedgerHistoryResponse, tags=["Reports"])
def get_account_ledger(account_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
    try:
        return ledger_service.get_ledger_history(account_id, limit, offset)
    except SusuLedgerError as e:
        raise _to_http(e)


@app.get("/reports/commissions", response_model=PeriodTotals, tags=["Reports"])
def commission_totals(start: date, end: date, account_id: Optional[UUID] = None) -> PeriodTotals:
    return ledger_service.commission_totals(start, end, account_id)


@app.get("/reports/withdrawals", response_model=PeriodTotals, tags=["Reports"])
def withdrawal_totals(start: date, end: date, account_id: Optional[UUID] = None) -> PeriodTotals:
    return ledger_service.withdrawal_totals(start, end, account_id)


@app.get("/cycles/pending", response_model=list[PendingCycle], tags=["Commission Cycles"])
def pending_cycles() -> list[PendingCycle]:
    return ledger_service.pending_cycles()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

"""
Isolation level endpoints

Probes block for their configured waits. Run a probe in one request and
update-balance / long-update / accounts in others while it waits to see
which changes each level lets through.
"""

from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..exceptions import LedgerError
from ..service import LedgerService
from .deps import get_ledger_service, http_error
from .schemas import AccountModel, CreateAccountRequest


router = APIRouter()


@router.post("/update-balance/{account_id}")
def update_balance(
    account_id: str,
    amount: Decimal = Query(...),
    service: LedgerService = Depends(get_ledger_service)
):
    """Add amount to the balance and commit immediately"""
    try:
        account = service.mutate_balance(account_id, amount)
    except LedgerError as e:
        raise http_error(e)
    return {"message": "Balance updated", "account": AccountModel.from_account(account)}


@router.post("/long-update/{account_id}")
def long_update(
    account_id: str,
    amount: Decimal = Query(...),
    duration: Optional[float] = Query(None, ge=0),
    commit: bool = Query(True),
    service: LedgerService = Depends(get_ledger_service)
):
    """Hold an uncommitted balance change for duration seconds, then commit or roll back"""
    try:
        account = service.long_running_update(account_id, amount, duration, commit=commit)
    except LedgerError as e:
        raise http_error(e)
    return {
        "message": "Long update committed" if commit else "Long update rolled back",
        "account": AccountModel.from_account(account),
    }


@router.post("/accounts", status_code=status.HTTP_201_CREATED)
def create_account(
    request: CreateAccountRequest,
    service: LedgerService = Depends(get_ledger_service)
):
    """Insert a new account (the phantom row for repeatable-read probes)"""
    try:
        account = service.add_account(request.account_id, Decimal(request.balance))
    except ArithmeticError:
        raise HTTPException(status_code=400, detail=f"Invalid balance: {request.balance}")
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return AccountModel.from_account(account)


@router.get("/demo-all/{account_id}")
def demo_all(
    account_id: str,
    amount: Decimal = Query(Decimal("100")),
    updater_delay: float = Query(1.0, alias="updaterDelay", ge=0),
    service: LedgerService = Depends(get_ledger_service)
):
    """Probe read-committed, repeatable-read and serializable while a parallel writer runs"""
    try:
        return service.compare_isolation_levels(account_id, amount, updater_delay=updater_delay)
    except LedgerError as e:
        raise http_error(e)


@router.get("/{level}/{account_id}")
def observe(
    level: str,
    account_id: str,
    first_wait: Optional[float] = Query(None, alias="firstWait", ge=0),
    second_wait: Optional[float] = Query(None, alias="secondWait", ge=0),
    service: LedgerService = Depends(get_ledger_service)
):
    """Read the account twice and count accounts twice under one isolation level"""
    try:
        result = service.observe_isolation(
            account_id, level, first_wait=first_wait, second_wait=second_wait
        )
    except LedgerError as e:
        raise http_error(e)
    return result.to_dict()

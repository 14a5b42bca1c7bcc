"""
Transfer and ledger endpoints
"""

from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query

from ..exceptions import LedgerError
from ..service import LedgerService
from .deps import get_ledger_service, http_error
from .schemas import AccountModel, InitAccountsRequest, TransactionListResponse, TransactionModel


router = APIRouter()


@router.post("/accounts/init")
def init_accounts(
    request: Optional[InitAccountsRequest] = None,
    service: LedgerService = Depends(get_ledger_service)
):
    """Reset the ledger to the seed accounts and clear the transaction log"""
    try:
        seed = request.to_seed() if request else None
        accounts = service.init_accounts(seed)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "message": "Accounts initialized",
        "accounts": [AccountModel.from_account(a) for a in accounts],
        "total_balance": str(service.total_balance()),
    }


@router.get("/accounts")
def list_accounts(service: LedgerService = Depends(get_ledger_service)):
    """List all accounts with their current balances"""
    return {
        "accounts": [AccountModel.from_account(a) for a in service.list_accounts()],
        "total_balance": str(service.total_balance()),
    }


@router.get("/transactions", response_model=TransactionListResponse)
def list_transactions(
    account: Optional[str] = Query(None, description="Only transactions touching this account"),
    service: LedgerService = Depends(get_ledger_service)
):
    """Transaction log, newest first"""
    if account:
        records = service.transactions_for_account(account)
    else:
        records = service.list_transactions()
    return TransactionListResponse(
        transactions=[TransactionModel.from_record(r) for r in records],
        summary=service.transaction_summary()
    )


@router.post("/transfer/{strategy}")
def transfer(
    strategy: str,
    from_account: str = Query(..., alias="from"),
    to_account: str = Query(..., alias="to"),
    amount: Decimal = Query(...),
    simulate_error: bool = Query(False, alias="simulateError"),
    think_time: Optional[float] = Query(None, alias="thinkTime", ge=0),
    service: LedgerService = Depends(get_ledger_service)
):
    """
    Transfer money under one strategy.

    Failed transfers answer 400 with the outcome (status, error, transaction
    id) in the detail.
    """
    options = {}
    if think_time is not None:
        options["think_time"] = think_time
    try:
        result = service.transfer(
            from_account, to_account, amount, strategy, simulate_error=simulate_error, **options
        )
    except LedgerError as e:
        raise http_error(e)

    if not result.succeeded:
        raise HTTPException(status_code=400, detail=result.to_dict())
    return result.to_dict()


@router.post("/transfer/{strategy}/concurrent")
def concurrent_transfers(
    strategy: str,
    from_account: str = Query(..., alias="from"),
    to_account: str = Query(..., alias="to"),
    amount: Decimal = Query(...),
    service: LedgerService = Depends(get_ledger_service)
):
    """Run from -> to (amount) and to -> from (amount / 2) in parallel"""
    try:
        return service.run_concurrent_transfers(from_account, to_account, amount, strategy)
    except LedgerError as e:
        raise http_error(e)

"""
Shared API dependencies
"""

from typing import Optional
import threading

from fastapi import HTTPException

from ..exceptions import LedgerError
from ..service import LedgerService


# Global ledger service instance, created on first request
ledger_service: Optional[LedgerService] = None
_service_lock = threading.Lock()


def get_ledger_service() -> LedgerService:
    global ledger_service
    with _service_lock:
        if ledger_service is None:
            ledger_service = LedgerService()
            ledger_service.init_accounts()
    return ledger_service


def http_error(error: LedgerError) -> HTTPException:
    """Map a ledger error onto its HTTP status"""
    return HTTPException(status_code=error.http_status, detail=error.to_dict())

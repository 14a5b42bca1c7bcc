"""
Ledger Error Types

Every failure the ledger core reports to its callers. Errors carry a stable
error code and the HTTP status the API layer maps them to. None of them are
retried by the core; retry policy belongs to the caller.
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for all ledger errors"""

    error_code = "ledger_error"
    http_status = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details
        # Transaction record of the failed transfer, set by the orchestrator
        self.record = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses and log records"""
        result = {
            "code": self.error_code,
            "message": self.message,
            "type": self.__class__.__name__
        }
        if self.details:
            result["details"] = {k: str(v) for k, v in self.details.items()}
        return result


class AccountNotFound(LedgerError):
    """Raised when an account id is missing from the ledger"""

    error_code = "account_not_found"
    http_status = 404

    def __init__(self, account_id: str):
        super().__init__(f"Account {account_id} not found", account_id=account_id)
        self.account_id = account_id


class InsufficientFunds(LedgerError):
    """Raised when a transfer would take the source balance below zero"""

    error_code = "insufficient_funds"
    http_status = 400

    def __init__(self, account_id: str, balance, amount):
        super().__init__(
            f"Insufficient funds on account {account_id}: balance={balance}, amount={amount}",
            account_id=account_id, balance=balance, amount=amount
        )
        self.account_id = account_id


class ConflictError(LedgerError):
    """Optimistic version check failed because another transfer committed first"""

    error_code = "version_conflict"
    http_status = 409

    def __init__(self, account_ids, expected_versions: Optional[Dict[str, int]] = None):
        ids = ", ".join(sorted(account_ids))
        super().__init__(
            f"Version conflict on accounts {ids}: modified by a concurrent transfer",
            accounts=ids, expected_versions=expected_versions or {}
        )


class LockTimeout(LedgerError):
    """A pessimistic lock could not be acquired before the deadline"""

    error_code = "lock_timeout"
    http_status = 423

    def __init__(self, account_id: str, timeout: float):
        super().__init__(
            f"Timed out after {timeout}s waiting for lock on account {account_id}",
            account_id=account_id, timeout=timeout
        )
        self.account_id = account_id


class InvariantViolation(LedgerError):
    """Internal consistency check failed. Always logged, never swallowed."""

    error_code = "invariant_violation"
    http_status = 500


class OperationCancelled(LedgerError):
    """The caller abandoned the operation before it completed"""

    error_code = "cancelled"
    http_status = 499


class InvalidTransfer(LedgerError, ValueError):
    """Transfer request failed validation (same account, non-positive amount)"""

    error_code = "invalid_transfer"
    http_status = 400


class UnknownStrategy(LedgerError, ValueError):
    """No concurrency-control strategy registered under the given name"""

    error_code = "unknown_strategy"
    http_status = 400


class UnknownIsolationLevel(LedgerError, ValueError):
    """No isolation level registered under the given name"""

    error_code = "unknown_isolation_level"
    http_status = 400


class SimulatedFault(LedgerError):
    """Injected failure between the debit and credit legs of a transfer"""

    error_code = "simulated_fault"
    http_status = 500

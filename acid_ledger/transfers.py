"""
Transfer Orchestrator

Coordinates a two-account transfer through a chosen concurrency-control
strategy. The orchestrator owns the begin/commit/rollback boundaries
explicitly: access is taken in a scoped block and released on every exit
path, and every invocation appends exactly one finalized record to the
transaction log, whatever the outcome.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Optional
import threading
import time

from .exceptions import (
    InsufficientFunds, InvalidTransfer, InvariantViolation, LedgerError, OperationCancelled, SimulatedFault
)
from .logging_config import get_logger, log_action
from .store import Account, LedgerStore
from .strategies import TransferStrategy, create_strategies, get_strategy_name
from .transaction_log import TransactionLog, TransactionRecord, TransactionStatus


@dataclass
class TransferResult:
    """Outcome of one transfer attempt"""
    status: TransactionStatus
    record: TransactionRecord
    error: Optional[str] = None
    error_code: Optional[str] = None
    from_account: Optional[Account] = None
    to_account: Optional[Account] = None

    @property
    def succeeded(self) -> bool:
        return self.status == TransactionStatus.SUCCESS

    def to_dict(self) -> Dict[str, object]:
        result = {
            "status": self.status.value,
            "transaction_id": self.record.id,
            "strategy": self.record.strategy,
        }
        if self.error:
            result["error"] = self.error
            result["error_code"] = self.error_code
        if self.from_account and self.to_account:
            result["balances"] = {
                self.from_account.id: str(self.from_account.balance),
                self.to_account.id: str(self.to_account.balance),
            }
        return result


def _to_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount)) if isinstance(amount, float) else Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidTransfer(f"Invalid amount: {amount!r}") from None
    if not value.is_finite():
        raise InvalidTransfer(f"Invalid amount: {amount!r}")
    return value


class TransferOrchestrator:
    """
    Runs transfers through a strategy and records every attempt.

    The orchestrator itself is stateless between calls; the store and the
    log are the only shared mutable resources.
    """

    def __init__(
        self,
        store: LedgerStore,
        transaction_log: TransactionLog,
        strategies: Optional[Dict[str, TransferStrategy]] = None
    ):
        self.store = store
        self.transaction_log = transaction_log
        self.strategies = strategies or create_strategies(store)
        self.logger = get_logger("acid_ledger.transfers")

    def get_strategy(self, name: str) -> TransferStrategy:
        return self.strategies[get_strategy_name(name)]

    def transfer(
        self,
        from_account_id: str,
        to_account_id: str,
        amount,
        strategy: str,
        *,
        simulate_error: bool = False,
        think_time: float = 0.0,
        checkpoint: Optional[Callable[[], None]] = None,
        lock_timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> TransferResult:
        """
        Move amount from one account to another under the named strategy.

        Args:
            from_account_id: Source account
            to_account_id: Destination account
            amount: Positive amount (Decimal, int or numeric string)
            strategy: Strategy name (uncontrolled, atomic, optimistic, pessimistic)
            simulate_error: Inject a failure between computing and committing
                the legs. The uncontrolled strategy has already written the
                debit by then and loses the money; the others write nothing.
            think_time: Seconds to hold between reading and writing
            checkpoint: Called after both accounts are read, before writing
            lock_timeout: Deadline for pessimistic lock acquisition
            cancel_event: When set, the transfer is abandoned at the next
                safe point

        Returns:
            TransferResult with status SUCCESS

        Raises:
            InvalidTransfer, AccountNotFound, InsufficientFunds, ConflictError,
            LockTimeout, OperationCancelled, InvariantViolation, SimulatedFault
        """
        strategy_name = get_strategy_name(strategy)
        strategy_impl = self.strategies[strategy_name]
        record = self.transaction_log.create(from_account_id, to_account_id, amount, strategy_name)
        legs_written = 0

        log_action(
            self.logger, "info", "Transfer started",
            action="transfer_start", resource=f"transaction:{record.id}", correlation_id=record.id,
            extra={
                "from": from_account_id, "to": to_account_id, "amount": str(amount),
                "strategy": strategy_name, "simulate_error": simulate_error
            }
        )

        try:
            value = self._validate(from_account_id, to_account_id, amount)

            with strategy_impl.access((from_account_id, to_account_id), timeout=lock_timeout) as handle:
                self._check_cancelled(cancel_event)
                source = strategy_impl.read(handle, from_account_id)
                target = strategy_impl.read(handle, to_account_id)

                log_action(
                    self.logger, "info", "Account state before transfer",
                    action="transfer_read", correlation_id=record.id,
                    extra={"from": source.to_dict(), "to": target.to_dict()}
                )

                self._pause(think_time, cancel_event)
                if checkpoint:
                    checkpoint()
                self._check_cancelled(cancel_event)

                if source.balance < value:
                    raise InsufficientFunds(source.id, source.balance, value)

                debited = source.with_balance(source.balance - value)
                credited = target.with_balance(target.balance + value)

                if strategy_impl.atomic_writes:
                    self._check_invariants(source, target, debited, credited)
                    if simulate_error:
                        raise SimulatedFault(
                            f"Simulated failure before commit; no balance of {source.id} or {target.id} changed"
                        )
                    debited, credited = strategy_impl.write(handle, [debited, credited])
                    legs_written = 2
                else:
                    (debited,) = strategy_impl.write(handle, [debited])
                    legs_written = 1
                    log_action(
                        self.logger, "info", "Debit leg written",
                        action="debit_written", resource=f"account:{debited.id}", correlation_id=record.id,
                        extra={"old_balance": str(source.balance), "new_balance": str(debited.balance)}
                    )
                    if simulate_error:
                        raise SimulatedFault(
                            f"Simulated failure after debiting {value} from {source.id}; "
                            f"{target.id} was not credited",
                            lost=value
                        )
                    (credited,) = strategy_impl.write(handle, [credited])
                    legs_written = 2

            record.finalize(TransactionStatus.SUCCESS)
            self.transaction_log.append(record)
            log_action(
                self.logger, "info", "Transfer committed",
                action="transfer_success", resource=f"transaction:{record.id}", correlation_id=record.id,
                extra={"from": debited.to_dict(), "to": credited.to_dict()}
            )
            return TransferResult(
                status=TransactionStatus.SUCCESS, record=record,
                from_account=debited, to_account=credited
            )

        except Exception as e:
            if not record.is_terminal:
                self._fail(record, e, partial=0 < legs_written < 2)
            if isinstance(e, LedgerError):
                e.record = record
            raise
        finally:
            if not record.is_terminal:
                # Abandoned by a BaseException (KeyboardInterrupt, thread teardown)
                self._fail(record, OperationCancelled("Transfer abandoned"), partial=0 < legs_written < 2)

    def _validate(self, from_account_id: str, to_account_id: str, amount) -> Decimal:
        if from_account_id == to_account_id:
            raise InvalidTransfer("Source and destination accounts must differ", account_id=from_account_id)
        value = _to_amount(amount)
        if value <= 0:
            raise InvalidTransfer(f"Transfer amount must be positive, got {value}", amount=value)
        return value

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled("Transfer cancelled by caller")

    @staticmethod
    def _pause(seconds: float, cancel_event: Optional[threading.Event]) -> None:
        if seconds <= 0:
            return
        if cancel_event is None:
            time.sleep(seconds)
        elif cancel_event.wait(seconds):
            raise OperationCancelled("Transfer cancelled by caller")

    @staticmethod
    def _check_invariants(source: Account, target: Account, debited: Account, credited: Account) -> None:
        if source.balance + target.balance != debited.balance + credited.balance:
            raise InvariantViolation(
                "Transfer would not conserve the total balance",
                before=source.balance + target.balance, after=debited.balance + credited.balance
            )
        if debited.balance < 0 or credited.balance < 0:
            raise InvariantViolation(
                "Transfer would leave a negative balance",
                from_balance=debited.balance, to_balance=credited.balance
            )

    def _fail(self, record: TransactionRecord, error: Exception, partial: bool) -> None:
        """Finalize the record as failed (or rolled_back after a partial write) and append it"""
        status = TransactionStatus.ROLLED_BACK if partial else TransactionStatus.FAILED
        message = getattr(error, "message", None) or str(error) or error.__class__.__name__
        record.finalize(status, message)
        self.transaction_log.append(record)

        level = "error" if isinstance(error, InvariantViolation) or partial else "warning"
        extra = {
            "from": record.from_account, "to": record.to_account, "amount": str(record.amount),
            "error": message, "status": status.value
        }
        if partial:
            extra["warning"] = "Money debited but not credited; ledger is inconsistent"
        log_action(
            self.logger, level, "Transfer failed",
            action="transfer_failed", resource=f"transaction:{record.id}", correlation_id=record.id,
            extra=extra
        )

"""
Ledger Service

The external call surface of the ledger: owns the store, the transaction log,
the strategies and the probe, and wires them together from configuration.
Also hosts the concurrent demonstrations (parallel transfers, isolation level
comparison) that need more than one thread.
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple
import threading
import time

from .config import AcidLedgerConfig, get_config, parse_seed_accounts
from .exceptions import InvariantViolation, LedgerError, OperationCancelled
from .isolation import IsolationLevel, uncommitted_write
from .locks import LockTable
from .logging_config import get_logger, log_action
from .probe import IsolationProbe, ProbeResult
from .storage import StorageInterface, create_storage
from .store import Account, LedgerStore
from .strategies import create_strategies, get_strategy_name
from .transaction_log import TransactionLog, TransactionRecord
from .transfers import TransferOrchestrator, TransferResult


class LedgerService:
    """Ledger with all components initialized"""

    def __init__(self, settings: Optional[AcidLedgerConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = settings or get_config()
        self.logger = get_logger("acid_ledger.service")

        if storage is None:
            storage = create_storage(self.config.log_sink, self.config.database_path)
        self.storage = storage

        self.store = LedgerStore()
        self.lock_table = LockTable()
        self.transaction_log = TransactionLog(self.storage)
        self.strategies = create_strategies(self.store, self.lock_table)
        self.orchestrator = TransferOrchestrator(self.store, self.transaction_log, self.strategies)
        self.probe = IsolationProbe(
            self.store,
            first_wait=self.config.probe_first_wait,
            second_wait=self.config.probe_second_wait
        )

    def close(self) -> None:
        self.storage.close()

    # Accounts

    def init_accounts(self, seed: Optional[Iterable[Tuple[str, Any]]] = None) -> List[Account]:
        """
        Reset the ledger to the seed and clear the transaction log.

        Args:
            seed: (account_id, balance) pairs; the configured seed when omitted
        """
        if seed is None:
            seed = parse_seed_accounts(self.config.seed_accounts)
        seed = [(account_id, Decimal(str(balance))) for account_id, balance in seed]
        self.store.reset(seed)
        self.transaction_log.clear()
        log_action(
            self.logger, "info", "Accounts initialized",
            action="init_accounts",
            extra={"accounts": {account_id: str(balance) for account_id, balance in seed}}
        )
        return self.store.all()

    def list_accounts(self) -> List[Account]:
        return self.store.all()

    def get_account(self, account_id: str) -> Account:
        return self.store.get(account_id)

    def read_balances(self, account_ids: Iterable[str]) -> Dict[str, Account]:
        """Read accounts under shared locks of the pessimistic lock table"""
        return self.strategies["pessimistic"].read_consistent(
            account_ids, timeout=self.config.lock_timeout_seconds
        )

    def total_balance(self) -> Decimal:
        return self.store.total()

    def add_account(self, account_id: str, balance) -> Account:
        """
        Insert a new account into the ledger.

        Raises:
            ValueError: If the account already exists
        """
        account = self.store.insert(Account(id=account_id, balance=Decimal(str(balance))))
        log_action(
            self.logger, "info", "Account added",
            action="add_account", resource=f"account:{account_id}",
            extra={"balance": str(account.balance)}
        )
        return account

    def mutate_balance(self, account_id: str, delta) -> Account:
        """Add delta to one committed balance as a single atomic step"""
        before = self.store.get(account_id)
        account = self.store.apply_delta(account_id, Decimal(str(delta)))
        log_action(
            self.logger, "info", "Balance changed",
            action="update_balance", resource=f"account:{account_id}",
            extra={"delta": str(delta), "old_balance": str(before.balance), "new_balance": str(account.balance)}
        )
        return account

    def long_running_update(self, account_id: str, delta, duration: Optional[float] = None,
                            commit: bool = True,
                            cancel_event: Optional[threading.Event] = None) -> Account:
        """
        Stage balance + delta, hold it uncommitted for duration seconds,
        then commit it (or discard it when commit is False).

        While the write is held only read-uncommitted readers see it.

        Returns:
            The committed account state after the block
        """
        duration = self.config.long_update_seconds if duration is None else duration
        try:
            with uncommitted_write(self.store, account_id, Decimal(str(delta))):
                if cancel_event is None:
                    time.sleep(duration)
                elif cancel_event.wait(duration):
                    raise OperationCancelled(f"Long-running update on {account_id} cancelled")
                if not commit:
                    raise _DiscardWrite()
        except _DiscardWrite:
            log_action(
                self.logger, "info", "Long-running update rolled back",
                action="long_update_rollback", resource=f"account:{account_id}"
            )
        return self.store.get(account_id)

    # Transfers

    def transfer(self, from_account_id: str, to_account_id: str, amount, strategy: str,
                 simulate_error: bool = False, **options) -> TransferResult:
        """
        Run one transfer and report the outcome.

        Domain errors become a non-success TransferResult. InvariantViolation
        is logged and re-raised.

        Raises:
            UnknownStrategy: If the strategy name is not registered
            InvariantViolation: If an internal consistency check failed
        """
        strategy_name = get_strategy_name(strategy)
        if "think_time" not in options:
            options["think_time"] = self._default_think_time(strategy_name)
        options.setdefault("lock_timeout", self.config.lock_timeout_seconds)

        try:
            return self.orchestrator.transfer(
                from_account_id, to_account_id, amount, strategy_name,
                simulate_error=simulate_error, **options
            )
        except InvariantViolation as e:
            log_action(
                self.logger, "error", "Invariant violated during transfer",
                action="invariant_violation", extra=e.to_dict()
            )
            raise
        except LedgerError as e:
            # The orchestrator attaches the finalized record before re-raising
            record: TransactionRecord = e.record
            return TransferResult(
                status=record.status,
                record=record,
                error=e.message,
                error_code=e.error_code
            )

    def _default_think_time(self, strategy_name: str) -> float:
        if strategy_name == "optimistic":
            return self.config.optimistic_think_time
        if strategy_name == "pessimistic":
            return self.config.pessimistic_think_time
        return 0.0

    def run_concurrent_transfers(self, from_account_id: str, to_account_id: str, amount,
                                 strategy: str, start_delay: Optional[float] = None,
                                 **options) -> Dict[str, Any]:
        """
        Transfer from -> to (amount) and to -> from (amount / 2) in parallel.

        The second transfer starts start_delay seconds after the first.

        Returns:
            Both results, the final balances and the wall-clock duration
        """
        amount = Decimal(str(amount))
        start_delay = self.config.concurrent_start_delay if start_delay is None else start_delay

        def reverse_transfer():
            time.sleep(start_delay)
            return self.transfer(to_account_id, from_account_id, amount / 2, strategy, **options)

        started = time.monotonic()
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="transfer") as executor:
            forward = executor.submit(
                self.transfer, from_account_id, to_account_id, amount, strategy, **options
            )
            backward = executor.submit(reverse_transfer)
            results = [forward.result(), backward.result()]
        duration = time.monotonic() - started

        response = {
            "strategy": get_strategy_name(strategy),
            "transfers": [result.to_dict() for result in results],
            "balances": {
                account_id: str(account.balance)
                for account_id, account in self.read_balances([from_account_id, to_account_id]).items()
            },
            "duration_seconds": round(duration, 3),
        }
        log_action(
            self.logger, "info", "Concurrent transfers finished",
            action="concurrent_transfers", extra=response
        )
        return response

    # Isolation

    def observe_isolation(self, account_id: str, level, **options) -> ProbeResult:
        return self.probe.observe(account_id, level, **options)

    def compare_isolation_levels(self, account_id: str, delta=Decimal("100"),
                                 updater_delay: float = 1.0, **options) -> Dict[str, Any]:
        """
        Probe one account under read-committed, repeatable-read and
        serializable while a parallel writer changes its balance.

        Returns:
            Probe results keyed by level and the final balance
        """
        levels = [IsolationLevel.READ_COMMITTED, IsolationLevel.REPEATABLE_READ, IsolationLevel.SERIALIZABLE]
        self.store.get(account_id)

        def updater():
            time.sleep(updater_delay)
            return self.mutate_balance(account_id, delta)

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="updater") as executor:
            update = executor.submit(updater)
            results = {level.value: self.observe_isolation(account_id, level, **options) for level in levels}
            update.result()

        return {
            "results": {name: result.to_dict() for name, result in results.items()},
            "final_balance": str(self.store.get(account_id).balance),
        }

    # Transaction log

    def list_transactions(self) -> List[TransactionRecord]:
        return self.transaction_log.list_transactions()

    def transactions_for_account(self, account_id: str) -> List[TransactionRecord]:
        return self.transaction_log.for_account(account_id)

    def transaction_summary(self) -> Dict[str, int]:
        return self.transaction_log.summary()


class _DiscardWrite(Exception):
    """Ends an uncommitted_write block without committing"""

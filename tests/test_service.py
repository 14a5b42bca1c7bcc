"""
Tests for the ledger service facade
"""

import pytest
import threading
import time
from decimal import Decimal

from acid_ledger.config import AcidLedgerConfig
from acid_ledger.exceptions import AccountNotFound, InvariantViolation, UnknownStrategy
from acid_ledger.isolation import read_view
from acid_ledger.probe import ProbePhase
from acid_ledger.service import LedgerService
from acid_ledger.storage import InMemoryStorage
from acid_ledger.transaction_log import TransactionStatus


def make_settings(**overrides):
    values = {
        "optimistic_think_time": 0.0,
        "pessimistic_think_time": 0.0,
        "concurrent_start_delay": 0.0,
        "probe_first_wait": 0.0,
        "probe_second_wait": 0.0,
        "long_update_seconds": 0.0,
    }
    values.update(overrides)
    return AcidLedgerConfig(**values)


class TestLedgerService:
    """Test the facade operations"""

    def setup_method(self):
        self.service = LedgerService(make_settings(), storage=InMemoryStorage())
        self.service.init_accounts()

    def test_init_accounts_uses_configured_seed(self):
        accounts = {a.id: a.balance for a in self.service.list_accounts()}
        assert accounts == {
            "ACC001": Decimal("1000.00"),
            "ACC002": Decimal("500.00"),
            "ACC003": Decimal("750.00"),
        }
        assert self.service.total_balance() == Decimal("2250.00")

    def test_init_accounts_clears_log(self):
        self.service.transfer("ACC001", "ACC002", "10", "atomic")
        self.service.init_accounts([("X", "1"), ("Y", 2)])
        assert self.service.list_transactions() == []
        assert [a.id for a in self.service.list_accounts()] == ["X", "Y"]

    def test_successful_transfer(self):
        result = self.service.transfer("ACC001", "ACC002", Decimal("200"), "atomic")
        assert result.succeeded
        assert result.to_dict()["balances"] == {"ACC001": "800.00", "ACC002": "700.00"}

    def test_failure_becomes_result(self):
        result = self.service.transfer("ACC002", "ACC001", Decimal("9999"), "pessimistic")
        assert result.status == TransactionStatus.FAILED
        assert result.error_code == "insufficient_funds"
        assert result.record.status == TransactionStatus.FAILED
        assert result.to_dict()["transaction_id"] == result.record.id

    def test_atomicity_violation_result(self):
        result = self.service.transfer("ACC001", "ACC002", Decimal("200"), "non-atomic", simulate_error=True)
        assert result.status == TransactionStatus.ROLLED_BACK
        assert result.error_code == "simulated_fault"
        assert self.service.get_account("ACC001").balance == Decimal("800.00")
        assert self.service.get_account("ACC002").balance == Decimal("500.00")

    def test_unknown_strategy_raises(self):
        with pytest.raises(UnknownStrategy):
            self.service.transfer("ACC001", "ACC002", Decimal("1"), "eventual")

    def test_invariant_violation_is_reraised(self):
        strategy = self.service.strategies["atomic"]

        def broken_write(handle, accounts):
            raise InvariantViolation("store refused write")

        strategy.write = broken_write
        with pytest.raises(InvariantViolation):
            self.service.transfer("ACC001", "ACC002", Decimal("1"), "atomic")
        assert self.service.transaction_summary()["failed"] == 1

    def test_add_account(self):
        account = self.service.add_account("ACC004", "10.50")
        assert account.balance == Decimal("10.50")
        with pytest.raises(ValueError):
            self.service.add_account("ACC004", "1")

    def test_concurrent_add_account_keeps_first_insert(self):
        barrier = threading.Barrier(4)
        outcomes = []

        def worker(balance):
            barrier.wait()
            try:
                self.service.add_account("ACC009", balance)
                outcomes.append(balance)
            except ValueError:
                outcomes.append(None)

        threads = [threading.Thread(target=worker, args=(str(n),)) for n in range(1, 5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [b for b in outcomes if b is not None]
        assert len(winners) == 1
        assert self.service.get_account("ACC009").balance == Decimal(winners[0])

    def test_mutate_balance(self):
        account = self.service.mutate_balance("ACC003", Decimal("-50"))
        assert account.balance == Decimal("700.00")
        with pytest.raises(AccountNotFound):
            self.service.mutate_balance("NOPE", Decimal("1"))

    def test_transactions_for_account_and_summary(self):
        self.service.transfer("ACC001", "ACC002", Decimal("1"), "atomic")
        self.service.transfer("ACC002", "ACC003", Decimal("1"), "atomic")
        self.service.transfer("ACC003", "ACC001", Decimal("99999"), "atomic")

        assert len(self.service.transactions_for_account("ACC003")) == 2
        summary = self.service.transaction_summary()
        assert summary["success"] == 2
        assert summary["failed"] == 1
        assert summary["total"] == 3


class TestLongRunningUpdate:
    """Test held uncommitted writes"""

    def setup_method(self):
        self.service = LedgerService(make_settings(), storage=InMemoryStorage())
        self.service.init_accounts()

    def test_commit(self):
        account = self.service.long_running_update("ACC001", Decimal("100"), duration=0)
        assert account.balance == Decimal("1100.00")

    def test_rollback(self):
        account = self.service.long_running_update("ACC001", Decimal("100"), duration=0, commit=False)
        assert account.balance == Decimal("1000.00")

    def test_dirty_value_visible_while_held(self):
        worker = threading.Thread(
            target=self.service.long_running_update,
            args=("ACC001", Decimal("100")),
            kwargs={"duration": 0.5, "commit": False}
        )
        worker.start()
        time.sleep(0.1)

        with read_view(self.service.store, "read-uncommitted") as view:
            dirty = view.read("ACC001").balance
        committed = self.service.get_account("ACC001").balance
        worker.join()

        assert dirty == Decimal("1100.00")
        assert committed == Decimal("1000.00")
        assert self.service.get_account("ACC001").balance == Decimal("1000.00")

    def test_transfer_committed_while_held_is_kept(self):
        worker = threading.Thread(
            target=self.service.long_running_update,
            args=("ACC001", Decimal("100")),
            kwargs={"duration": 0.5}
        )
        worker.start()
        deadline = time.monotonic() + 1.0
        while self.service.store.get_uncommitted("ACC001").balance != Decimal("1100.00"):
            assert time.monotonic() < deadline
            time.sleep(0.01)

        result = self.service.transfer("ACC001", "ACC002", Decimal("200"), "pessimistic")
        worker.join()

        assert result.status == TransactionStatus.SUCCESS
        assert self.service.get_account("ACC001").balance == Decimal("900.00")
        assert self.service.get_account("ACC002").balance == Decimal("700.00")
        assert self.service.total_balance() == Decimal("2350.00")


class TestConcurrentDemos:
    """Test the multi-threaded demonstrations"""

    def setup_method(self):
        self.service = LedgerService(make_settings(pessimistic_think_time=0.1), storage=InMemoryStorage())
        self.service.init_accounts()

    def test_pessimistic_concurrent_transfers(self):
        report = self.service.run_concurrent_transfers("ACC001", "ACC002", Decimal("100"), "pessimistic-lock")

        assert report["strategy"] == "pessimistic"
        assert [t["status"] for t in report["transfers"]] == ["success", "success"]
        assert report["balances"]["ACC001"] == "950.00"
        assert report["balances"]["ACC002"] == "550.00"
        assert set(report["balances"]) == {"ACC001", "ACC002"}
        assert report["duration_seconds"] >= 0.2

    def test_optimistic_concurrent_transfers_conserve_total(self):
        self.service.run_concurrent_transfers("ACC001", "ACC002", Decimal("100"), "optimistic", think_time=0.1)
        assert self.service.total_balance() == Decimal("2250.00")
        assert self.service.transaction_summary()["total"] == 2

    def test_observe_isolation_with_hook(self):
        def mutate(phase):
            if phase == ProbePhase.FIRST:
                self.service.mutate_balance("ACC001", Decimal("5"))

        result = self.service.observe_isolation("ACC001", "read_committed", on_wait=mutate)
        assert result.changed

    def test_compare_isolation_levels(self):
        report = self.service.compare_isolation_levels(
            "ACC001", Decimal("100"), updater_delay=0.05, first_wait=0.3, second_wait=0.0
        )

        results = report["results"]
        assert set(results) == {"read-committed", "repeatable-read", "serializable"}
        assert results["read-committed"]["changed"] is True
        assert results["repeatable-read"]["changed"] is False
        assert results["serializable"]["changed"] is False
        assert report["final_balance"] == "1100.00"

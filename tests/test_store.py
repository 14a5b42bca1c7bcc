"""
Tests for the ledger store
"""

import pytest
import threading
from decimal import Decimal

from acid_ledger.exceptions import AccountNotFound, InvariantViolation
from acid_ledger.store import Account, LedgerStore


class TestLedgerStore:
    """Test committed reads and writes"""

    def setup_method(self):
        self.store = LedgerStore([("ACC001", Decimal("1000.00")), ("ACC002", Decimal("500.00"))])

    def test_seeded_accounts(self):
        account = self.store.get("ACC001")
        assert account.balance == Decimal("1000.00")
        assert account.version == 0
        assert self.store.count() == 2
        assert self.store.total() == Decimal("1500.00")

    def test_get_missing_account(self):
        with pytest.raises(AccountNotFound) as exc_info:
            self.store.get("NOPE")
        assert exc_info.value.account_id == "NOPE"

    def test_put_increments_version(self):
        account = self.store.get("ACC001")
        stored = self.store.put(account.with_balance(Decimal("900.00")))
        assert stored.version == 1
        assert self.store.get("ACC001").balance == Decimal("900.00")

    def test_put_inserts_new_account_with_given_version(self):
        stored = self.store.put(Account(id="ACC003", balance=Decimal("10"), version=7))
        assert stored.version == 7
        assert self.store.exists("ACC003")

    def test_all_is_sorted_by_id(self):
        self.store.put(Account(id="ACC000", balance=Decimal("1")))
        assert [a.id for a in self.store.all()] == ["ACC000", "ACC001", "ACC002"]

    def test_put_many_writes_both(self):
        first = self.store.get("ACC001").with_balance(Decimal("800.00"))
        second = self.store.get("ACC002").with_balance(Decimal("700.00"))
        stored = self.store.put_many([first, second])
        assert [a.version for a in stored] == [1, 1]
        assert self.store.total() == Decimal("1500.00")

    def test_put_many_rejects_duplicate_ids(self):
        account = self.store.get("ACC001")
        with pytest.raises(InvariantViolation):
            self.store.put_many([account, account])

    def test_apply_delta(self):
        stored = self.store.apply_delta("ACC002", Decimal("25.50"))
        assert stored.balance == Decimal("525.50")
        assert stored.version == 1

    def test_apply_delta_missing_account(self):
        with pytest.raises(AccountNotFound):
            self.store.apply_delta("NOPE", Decimal("1"))

    def test_reset_replaces_everything(self):
        self.store.reset([("X", Decimal("5"))])
        assert self.store.count() == 1
        assert not self.store.exists("ACC001")

    def test_reset_rejects_duplicates(self):
        with pytest.raises(ValueError):
            self.store.reset([("X", Decimal("5")), ("X", Decimal("6"))])

    def test_concurrent_apply_delta_is_linearized(self):
        def worker():
            for _ in range(200):
                self.store.apply_delta("ACC001", Decimal("1"))

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        account = self.store.get("ACC001")
        assert account.balance == Decimal("2000.00")
        assert account.version == 1000


class TestCompareAndSwap:
    """Test version-checked writes"""

    def setup_method(self):
        self.store = LedgerStore([("ACC001", Decimal("1000")), ("ACC002", Decimal("500"))])

    def test_matching_version_is_applied(self):
        account = self.store.get("ACC001")
        assert self.store.put_if_version_matches(account.with_balance(Decimal("1")), 0)
        stored = self.store.get("ACC001")
        assert stored.balance == Decimal("1")
        assert stored.version == 1

    def test_stale_version_is_rejected(self):
        account = self.store.get("ACC001")
        self.store.apply_delta("ACC001", Decimal("5"))
        assert not self.store.put_if_version_matches(account.with_balance(Decimal("1")), 0)
        assert self.store.get("ACC001").balance == Decimal("1005")

    def test_missing_account_is_rejected(self):
        assert not self.store.put_if_version_matches(Account(id="NOPE", balance=Decimal("1")), 0)
        assert not self.store.exists("NOPE")

    def test_batch_is_all_or_nothing(self):
        first = self.store.get("ACC001")
        second = self.store.get("ACC002")
        self.store.apply_delta("ACC002", Decimal("1"))

        applied = self.store.put_many_if_versions_match([
            (first.with_balance(Decimal("0")), 0),
            (second.with_balance(Decimal("0")), 0),
        ])

        assert not applied
        assert self.store.get("ACC001").balance == Decimal("1000")
        assert self.store.get("ACC001").version == 0


class TestInsertAndKeyLocks:
    """Test insert-if-absent and key lock bookkeeping"""

    def setup_method(self):
        self.store = LedgerStore([("ACC001", Decimal("1000"))])

    def test_insert_new_account(self):
        stored = self.store.insert(Account(id="ACC002", balance=Decimal("5")))
        assert stored.version == 0
        assert self.store.get("ACC002").balance == Decimal("5")

    def test_insert_never_overwrites(self):
        with pytest.raises(ValueError):
            self.store.insert(Account(id="ACC001", balance=Decimal("1")))
        assert self.store.get("ACC001").balance == Decimal("1000")

    def test_concurrent_inserts_have_one_winner(self):
        barrier = threading.Barrier(8)
        outcomes = []

        def worker(n):
            barrier.wait()
            try:
                self.store.insert(Account(id="NEW", balance=Decimal(n)))
                outcomes.append(n)
            except ValueError:
                outcomes.append(None)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(1, 9)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [n for n in outcomes if n is not None]
        assert len(winners) == 1
        assert self.store.get("NEW").balance == Decimal(winners[0])

    def test_lookups_of_missing_ids_do_not_grow_locks(self):
        before = self.store.key_lock_count()
        for n in range(100):
            with pytest.raises(AccountNotFound):
                self.store.get(f"MISSING{n}")
            with pytest.raises(AccountNotFound):
                self.store.apply_delta(f"MISSING{n}", Decimal("1"))
            assert not self.store.put_if_version_matches(Account(id=f"MISSING{n}", balance=Decimal("1")), 0)
        assert self.store.key_lock_count() == before

    def test_reset_drops_locks_of_removed_accounts(self):
        self.store.apply_delta("ACC001", Decimal("1"))
        self.store.put(Account(id="ACC002", balance=Decimal("1")))
        assert self.store.key_lock_count() == 2
        self.store.reset([("ACC002", Decimal("3"))])
        assert self.store.key_lock_count() == 1


class TestUncommittedOverlay:
    """Test staged deltas"""

    def setup_method(self):
        self.store = LedgerStore([("ACC001", Decimal("1000"))])

    def test_staged_value_only_visible_uncommitted(self):
        staged = self.store.stage("ACC001", Decimal("500"))
        assert staged.balance == Decimal("1500")
        assert self.store.get_uncommitted("ACC001").balance == Decimal("1500")
        assert self.store.get("ACC001").balance == Decimal("1000")
        assert self.store.total() == Decimal("1000")

    def test_uncommitted_read_follows_committed_changes(self):
        self.store.stage("ACC001", Decimal("500"))
        self.store.apply_delta("ACC001", Decimal("-200"))
        assert self.store.get_uncommitted("ACC001").balance == Decimal("1300")

    def test_discard(self):
        self.store.stage("ACC001", Decimal("500"))
        self.store.discard("ACC001", Decimal("500"))
        assert self.store.get_uncommitted("ACC001").balance == Decimal("1000")

    def test_commit_staged(self):
        self.store.stage("ACC001", Decimal("500"))
        committed = self.store.commit_staged("ACC001", Decimal("500"))
        assert committed.balance == Decimal("1500")
        assert committed.version == 1
        assert self.store.get("ACC001").balance == Decimal("1500")
        assert self.store.get_uncommitted("ACC001").balance == Decimal("1500")

    def test_commit_applies_delta_to_current_balance(self):
        self.store.stage("ACC001", Decimal("100"))
        self.store.apply_delta("ACC001", Decimal("-200"))
        committed = self.store.commit_staged("ACC001", Decimal("100"))
        assert committed.balance == Decimal("900")
        assert committed.version == 2

    def test_two_staged_deltas_commit_independently(self):
        self.store.stage("ACC001", Decimal("100"))
        self.store.stage("ACC001", Decimal("50"))
        assert self.store.get_uncommitted("ACC001").balance == Decimal("1150")
        self.store.discard("ACC001", Decimal("100"))
        self.store.commit_staged("ACC001", Decimal("50"))
        assert self.store.get("ACC001").balance == Decimal("1050")

    def test_commit_without_stage(self):
        with pytest.raises(InvariantViolation):
            self.store.commit_staged("ACC001", Decimal("1"))

    def test_stage_missing_account(self):
        with pytest.raises(AccountNotFound):
            self.store.stage("NOPE", Decimal("1"))

    def test_reset_clears_overlay(self):
        self.store.stage("ACC001", Decimal("500"))
        self.store.reset([("ACC001", Decimal("10"))])
        assert self.store.get_uncommitted("ACC001").balance == Decimal("10")

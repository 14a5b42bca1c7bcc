"""
Tests for isolation level read views
"""

import pytest
from decimal import Decimal

from acid_ledger.exceptions import AccountNotFound, UnknownIsolationLevel
from acid_ledger.isolation import (
    IsolationLevel, ReadView, parse_isolation_level, read_view, uncommitted_write
)
from acid_ledger.store import Account, LedgerStore


class TestParseIsolationLevel:
    """Test level name parsing"""

    def test_accepted_spellings(self):
        assert parse_isolation_level("READ_UNCOMMITTED") == IsolationLevel.READ_UNCOMMITTED
        assert parse_isolation_level("read committed") == IsolationLevel.READ_COMMITTED
        assert parse_isolation_level("repeatable-read") == IsolationLevel.REPEATABLE_READ
        assert parse_isolation_level(IsolationLevel.SERIALIZABLE) == IsolationLevel.SERIALIZABLE

    def test_unknown_level(self):
        with pytest.raises(UnknownIsolationLevel):
            parse_isolation_level("snapshot")

    def test_pinning_properties(self):
        assert not IsolationLevel.READ_COMMITTED.pins_rows
        assert IsolationLevel.REPEATABLE_READ.pins_rows
        assert not IsolationLevel.REPEATABLE_READ.pins_aggregates
        assert IsolationLevel.SERIALIZABLE.pins_aggregates


class TestReadViews:
    """Test what each level observes"""

    def setup_method(self):
        self.store = LedgerStore([("ACC001", Decimal("1000")), ("ACC002", Decimal("500"))])

    def test_read_view_is_abstract(self):
        with pytest.raises(TypeError):
            ReadView(self.store)

    def test_read_committed_sees_new_commits(self):
        with read_view(self.store, "read-committed") as view:
            assert view.read("ACC001").balance == Decimal("1000")
            self.store.apply_delta("ACC001", Decimal("100"))
            assert view.read("ACC001").balance == Decimal("1100")

    def test_repeatable_read_pins_rows_not_count(self):
        with read_view(self.store, "repeatable-read") as view:
            assert view.read("ACC001").balance == Decimal("1000")
            count_before = view.count()
            self.store.apply_delta("ACC001", Decimal("100"))
            self.store.put(Account(id="ACC003", balance=Decimal("1")))
            assert view.read("ACC001").balance == Decimal("1000")
            assert view.count() == count_before + 1

    def test_serializable_fixes_everything(self):
        with read_view(self.store, "serializable") as view:
            self.store.apply_delta("ACC001", Decimal("100"))
            self.store.put(Account(id="ACC003", balance=Decimal("1")))
            assert view.read("ACC001").balance == Decimal("1000")
            assert view.count() == 2
            assert view.total() == Decimal("1500")
            assert [a.id for a in view.accounts()] == ["ACC001", "ACC002"]
            with pytest.raises(AccountNotFound):
                view.read("ACC003")

    def test_read_uncommitted_sees_staged_writes(self):
        with uncommitted_write(self.store, "ACC001", Decimal("500")):
            with read_view(self.store, "read-uncommitted") as dirty:
                assert dirty.read("ACC001").balance == Decimal("1500")
            with read_view(self.store, "read-committed") as clean:
                assert clean.read("ACC001").balance == Decimal("1000")


class TestUncommittedWrite:
    """Test the staged write helper"""

    def setup_method(self):
        self.store = LedgerStore([("ACC001", Decimal("1000"))])

    def test_commits_on_normal_exit(self):
        with uncommitted_write(self.store, "ACC001", Decimal("-200")) as staged:
            assert staged.balance == Decimal("800")
        account = self.store.get("ACC001")
        assert account.balance == Decimal("800")
        assert account.version == 1

    def test_discards_on_error(self):
        with pytest.raises(RuntimeError):
            with uncommitted_write(self.store, "ACC001", Decimal("-200")):
                raise RuntimeError("abort")
        assert self.store.get("ACC001").balance == Decimal("1000")
        assert self.store.get_uncommitted("ACC001").balance == Decimal("1000")

    def test_keeps_changes_committed_while_held(self):
        with uncommitted_write(self.store, "ACC001", Decimal("100")):
            self.store.apply_delta("ACC001", Decimal("-200"))
        account = self.store.get("ACC001")
        assert account.balance == Decimal("900")
        assert account.version == 2

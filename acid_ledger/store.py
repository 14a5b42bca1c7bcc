"""
Ledger Store

Authoritative mapping from account id to balance and version. This is the
only component that mutates balances. Every operation on a single account id
is mutually exclusive at the storage level, whatever strategy sits above it,
so the store never gets physically corrupted; only the logical anomalies the
strategies control (or deliberately permit) can occur.

Besides committed state the store keeps an overlay of uncommitted writes.
Staged writes are deltas, applied to whatever is committed at the moment
they are promoted. They are invisible to every reader except
read-uncommitted views.
"""

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import threading

from .exceptions import AccountNotFound, InvariantViolation


@dataclass(frozen=True)
class Account:
    """Immutable snapshot of one account as stored in the ledger"""
    id: str
    balance: Decimal
    version: int = 0

    def with_balance(self, balance: Decimal) -> 'Account':
        """Copy of this snapshot carrying a new balance and the same version"""
        return replace(self, balance=balance)

    def to_dict(self) -> Dict[str, object]:
        return {"id": self.id, "balance": str(self.balance), "version": self.version}


class LedgerStore:
    """
    Thread-safe in-memory account store.

    Locking: a per-account lock serializes every read-check-write on one id;
    the table lock guards the dictionaries themselves and is only ever taken
    after key locks, never before. Multi-account operations take key locks in
    sorted id order. Plain reads only take the table lock.
    """

    def __init__(self, accounts: Optional[Iterable[Tuple[str, Decimal]]] = None):
        self._accounts: Dict[str, Account] = {}
        self._uncommitted: Dict[str, List[Decimal]] = {}
        self._key_locks: Dict[str, threading.Lock] = {}
        self._table_lock = threading.Lock()
        if accounts:
            self.reset(accounts)

    def _key_lock(self, account_id: str, inserting: bool = False) -> threading.Lock:
        # Ids that are not in the ledger get a throwaway lock; the write that
        # follows finds the id missing under the table lock and fails.
        with self._table_lock:
            lock = self._key_locks.get(account_id)
            if lock is None:
                lock = threading.Lock()
                if inserting or account_id in self._accounts:
                    self._key_locks[account_id] = lock
            return lock

    def _acquire_keys(self, account_ids: Iterable[str]) -> List[threading.Lock]:
        locks = [self._key_lock(account_id) for account_id in sorted(set(account_ids))]
        acquired = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
        except BaseException:
            for lock in reversed(acquired):
                lock.release()
            raise
        return acquired

    @staticmethod
    def _release_keys(locks: List[threading.Lock]) -> None:
        for lock in reversed(locks):
            lock.release()

    def _next_version(self, account: Account) -> Account:
        current = self._accounts.get(account.id)
        if current is None:
            return account
        return replace(account, version=current.version + 1)

    # Reads

    def get(self, account_id: str) -> Account:
        """
        Committed state of one account.

        Raises:
            AccountNotFound: If the id is not in the ledger
        """
        with self._table_lock:
            account = self._accounts.get(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    def get_uncommitted(self, account_id: str) -> Account:
        """Committed state plus every staged delta on the account"""
        with self._table_lock:
            account = self._accounts.get(account_id)
            staged = list(self._uncommitted.get(account_id, ()))
        if account is None:
            raise AccountNotFound(account_id)
        if not staged:
            return account
        return account.with_balance(account.balance + sum(staged, Decimal("0")))

    def exists(self, account_id: str) -> bool:
        with self._table_lock:
            return account_id in self._accounts

    def all(self) -> List[Account]:
        """Consistent snapshot of all committed accounts ordered by id"""
        with self._table_lock:
            return [self._accounts[key] for key in sorted(self._accounts)]

    def count(self) -> int:
        with self._table_lock:
            return len(self._accounts)

    def total(self) -> Decimal:
        """Sum of all committed balances"""
        with self._table_lock:
            return sum((a.balance for a in self._accounts.values()), Decimal("0"))

    # Writes

    def put(self, account: Account) -> Account:
        """
        Unconditionally overwrite the committed state of one account.

        A new id is inserted with the given version; an existing id gets
        its previous version plus one. Returns the stored snapshot.
        """
        with self._key_lock(account.id, inserting=True):
            with self._table_lock:
                stored = self._next_version(account)
                self._accounts[account.id] = stored
                return stored

    def insert(self, account: Account) -> Account:
        """
        Add a new account; never overwrites.

        Raises:
            ValueError: If the id is already in the ledger
        """
        with self._key_lock(account.id, inserting=True):
            with self._table_lock:
                if account.id in self._accounts:
                    raise ValueError(f"Account {account.id} already exists")
                self._accounts[account.id] = account
                return account

    def put_many(self, accounts: Sequence[Account]) -> List[Account]:
        """Overwrite several accounts so that readers see all or none of the writes"""
        self._check_distinct(accounts)
        locks = self._acquire_keys(a.id for a in accounts)
        try:
            with self._table_lock:
                stored = [self._next_version(a) for a in accounts]
                for account in stored:
                    self._accounts[account.id] = account
                return stored
        finally:
            self._release_keys(locks)

    def put_if_version_matches(self, account: Account, expected_version: int) -> bool:
        """
        Compare-and-swap on the version field.

        Returns:
            True if the stored version equalled expected_version and the
            write was applied; False (and nothing written) otherwise.
        """
        return self.put_many_if_versions_match([(account, expected_version)])

    def put_many_if_versions_match(self, writes: Sequence[Tuple[Account, int]]) -> bool:
        """All-or-nothing compare-and-swap across several accounts"""
        self._check_distinct([account for account, _ in writes])
        locks = self._acquire_keys(account.id for account, _ in writes)
        try:
            with self._table_lock:
                for account, expected_version in writes:
                    current = self._accounts.get(account.id)
                    if current is None or current.version != expected_version:
                        return False
                for account, expected_version in writes:
                    self._accounts[account.id] = replace(account, version=expected_version + 1)
                return True
        finally:
            self._release_keys(locks)

    def apply_delta(self, account_id: str, delta: Decimal) -> Account:
        """
        Atomically add delta to one committed balance.

        Raises:
            AccountNotFound: If the id is not in the ledger
        """
        with self._key_lock(account_id):
            with self._table_lock:
                current = self._accounts.get(account_id)
                if current is None:
                    raise AccountNotFound(account_id)
                stored = replace(current, balance=current.balance + delta, version=current.version + 1)
                self._accounts[account_id] = stored
                return stored

    def reset(self, accounts: Iterable[Tuple[str, Decimal]]) -> None:
        """Replace the whole ledger with the given (id, balance) pairs"""
        seeded: Dict[str, Account] = {}
        for account_id, balance in accounts:
            if account_id in seeded:
                raise ValueError(f"Duplicate account id: {account_id}")
            seeded[account_id] = Account(id=account_id, balance=Decimal(balance))
        with self._table_lock:
            self._accounts = seeded
            self._uncommitted = {}
            self._key_locks = {
                account_id: lock for account_id, lock in self._key_locks.items() if account_id in seeded
            }

    def key_lock_count(self) -> int:
        with self._table_lock:
            return len(self._key_locks)

    # Uncommitted overlay

    def stage(self, account_id: str, delta: Decimal) -> Account:
        """
        Stage delta on one account without committing it.

        Returns:
            The account as read-uncommitted readers now see it
        """
        with self._key_lock(account_id):
            with self._table_lock:
                current = self._accounts.get(account_id)
                if current is None:
                    raise AccountNotFound(account_id)
                staged = self._uncommitted.setdefault(account_id, [])
                staged.append(delta)
                return current.with_balance(current.balance + sum(staged, Decimal("0")))

    def discard(self, account_id: str, delta: Decimal) -> None:
        """Drop one staged delta; committed state is untouched"""
        with self._key_lock(account_id):
            with self._table_lock:
                self._take_staged(account_id, delta)

    def commit_staged(self, account_id: str, delta: Decimal) -> Account:
        """Apply one staged delta to the balance committed right now"""
        with self._key_lock(account_id):
            with self._table_lock:
                if not self._take_staged(account_id, delta):
                    raise InvariantViolation(f"No staged write for account {account_id}")
                current = self._accounts.get(account_id)
                if current is None:
                    raise AccountNotFound(account_id)
                stored = replace(current, balance=current.balance + delta, version=current.version + 1)
                self._accounts[account_id] = stored
                return stored

    def _take_staged(self, account_id: str, delta: Decimal) -> bool:
        staged = self._uncommitted.get(account_id)
        if not staged or delta not in staged:
            return False
        staged.remove(delta)
        if not staged:
            del self._uncommitted[account_id]
        return True

    @staticmethod
    def _check_distinct(accounts: Sequence[Account]) -> None:
        ids = [a.id for a in accounts]
        if len(ids) != len(set(ids)):
            raise InvariantViolation(f"Duplicate account ids in one write: {ids}")

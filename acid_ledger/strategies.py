"""
Concurrency Control Strategies

Interchangeable policies wrapping access to the LedgerStore during the
read-modify-write of a transfer:

    uncontrolled  no isolation, legs written one at a time (atomicity can break)
    atomic        legs committed together, no isolation between transfers
    optimistic    versions recorded at read time, batch compare-and-swap at write
    pessimistic   exclusive locks on both accounts for the whole operation

Every strategy exposes acquire/read/write/release; access() wraps them in a
scoped block that releases on every exit path.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .exceptions import ConflictError, UnknownStrategy
from .locks import LockMode, LockTable
from .logging_config import get_logger, log_action
from .store import Account, LedgerStore


@dataclass
class AccessHandle:
    """Per-call state a strategy keeps between acquire and release"""
    strategy: str
    account_ids: Tuple[str, ...]
    versions: Dict[str, int] = field(default_factory=dict)
    snapshots: Dict[str, Account] = field(default_factory=dict)
    held_locks: List[Tuple[str, LockMode]] = field(default_factory=list)
    released: bool = False


class TransferStrategy(ABC):
    """Base class for concurrency-control strategies"""

    name = ""
    # Whether write() commits all legs at once. The orchestrator writes the
    # legs one by one for strategies that do not.
    atomic_writes = True

    def __init__(self, store: LedgerStore):
        self.store = store
        self.logger = get_logger(f"acid_ledger.strategies.{self.name}")

    def acquire(self, account_ids: Iterable[str], timeout: Optional[float] = None) -> AccessHandle:
        """Obtain whatever access the strategy needs before reading"""
        return AccessHandle(strategy=self.name, account_ids=tuple(account_ids))

    def read(self, handle: AccessHandle, account_id: str) -> Account:
        """Read one account under the strategy's contract"""
        return self.store.get(account_id)

    @abstractmethod
    def write(self, handle: AccessHandle, accounts: Sequence[Account]) -> List[Account]:
        """Write new account states under the strategy's contract"""

    def release(self, handle: AccessHandle) -> None:
        """Give back everything acquire() obtained. Safe to call twice."""
        handle.released = True

    @contextmanager
    def access(self, account_ids: Iterable[str], timeout: Optional[float] = None):
        """Scoped acquisition: release always runs, including on exceptions"""
        handle = self.acquire(account_ids, timeout=timeout)
        try:
            yield handle
        finally:
            self.release(handle)


class UncontrolledStrategy(TransferStrategy):
    """
    No isolation and no atomicity. Reads and writes pass straight to the
    store one account at a time, so a failure between legs leaves the ledger
    inconsistent. Kept deliberately broken for demonstration.
    """

    name = "uncontrolled"
    atomic_writes = False

    def write(self, handle: AccessHandle, accounts: Sequence[Account]) -> List[Account]:
        return [self.store.put(account) for account in accounts]


class AtomicStrategy(TransferStrategy):
    """Both legs commit together; concurrent transfers are not isolated"""

    name = "atomic"

    def write(self, handle: AccessHandle, accounts: Sequence[Account]) -> List[Account]:
        return self.store.put_many(accounts)


class OptimisticStrategy(TransferStrategy):
    """
    Records versions when reading and verifies them when writing.

    A mismatch means a concurrent transfer committed first: the whole write
    is rejected with ConflictError and nothing is retained. There is no
    retry; lost-update races are surfaced rather than resolved.
    """

    name = "optimistic"

    def acquire(self, account_ids: Iterable[str], timeout: Optional[float] = None) -> AccessHandle:
        handle = super().acquire(account_ids, timeout)
        for account_id in handle.account_ids:
            account = self.store.get(account_id)
            handle.snapshots[account_id] = account
            handle.versions[account_id] = account.version
        log_action(
            self.logger, "debug", "Account versions recorded",
            action="record_versions", extra={"versions": dict(handle.versions)}
        )
        return handle

    def read(self, handle: AccessHandle, account_id: str) -> Account:
        snapshot = handle.snapshots.get(account_id)
        if snapshot is None:
            snapshot = self.store.get(account_id)
            handle.snapshots[account_id] = snapshot
            handle.versions[account_id] = snapshot.version
        return snapshot

    def write(self, handle: AccessHandle, accounts: Sequence[Account]) -> List[Account]:
        writes = [(account, handle.versions[account.id]) for account in accounts]
        if not self.store.put_many_if_versions_match(writes):
            raise ConflictError([a.id for a in accounts], dict(handle.versions))
        return [replace(account, version=expected + 1) for account, expected in writes]


class PessimisticStrategy(TransferStrategy):
    """
    Exclusive locks on every involved account, taken in lexicographic order
    and held for the full read-modify-write. Transfers touching the same
    accounts serialize.
    """

    name = "pessimistic"

    def __init__(self, store: LedgerStore, lock_table: Optional[LockTable] = None):
        super().__init__(store)
        self.lock_table = lock_table or LockTable()

    def acquire(self, account_ids: Iterable[str], timeout: Optional[float] = None) -> AccessHandle:
        handle = super().acquire(account_ids, timeout)
        handle.held_locks = self.lock_table.acquire_all(handle.account_ids, LockMode.EXCLUSIVE, timeout)
        log_action(
            self.logger, "info", "Accounts locked",
            action="lock_acquired", extra={"locked_accounts": sorted(set(handle.account_ids))}
        )
        return handle

    def write(self, handle: AccessHandle, accounts: Sequence[Account]) -> List[Account]:
        return self.store.put_many(accounts)

    def read_consistent(self, account_ids: Iterable[str], timeout: Optional[float] = None) -> Dict[str, Account]:
        """
        Read several accounts under shared locks.

        Waits for any pessimistic transfer holding one of the accounts, so
        the returned balances never straddle such a transfer. Concurrent
        readers do not block each other.

        Raises:
            LockTimeout: If the shared locks are not granted within timeout
        """
        held = self.lock_table.acquire_all(account_ids, LockMode.SHARED, timeout)
        try:
            return {account_id: self.store.get(account_id) for account_id, _ in held}
        finally:
            self.lock_table.release_all(held)

    def release(self, handle: AccessHandle) -> None:
        if handle.released:
            return
        held, handle.held_locks = handle.held_locks, []
        self.lock_table.release_all(held)
        handle.released = True
        log_action(
            self.logger, "info", "Accounts unlocked",
            action="lock_released", extra={"released_accounts": [account_id for account_id, _ in held]}
        )


STRATEGY_CLASSES = {
    UncontrolledStrategy.name: UncontrolledStrategy,
    AtomicStrategy.name: AtomicStrategy,
    OptimisticStrategy.name: OptimisticStrategy,
    PessimisticStrategy.name: PessimisticStrategy,
}

STRATEGY_ALIASES = {
    "non-atomic": "uncontrolled",
    "none": "uncontrolled",
    "transactional": "atomic",
    "optimistic-lock": "optimistic",
    "pessimistic-lock": "pessimistic",
}


def get_strategy_name(name: str) -> str:
    """
    Canonical strategy name for a name or alias.

    Raises:
        UnknownStrategy: If the name matches no strategy
    """
    normalized = str(name).strip().lower().replace("_", "-")
    normalized = STRATEGY_ALIASES.get(normalized, normalized)
    if normalized not in STRATEGY_CLASSES:
        raise UnknownStrategy(f"Unknown strategy: {name}", strategy=name)
    return normalized


def create_strategies(store: LedgerStore, lock_table: Optional[LockTable] = None) -> Dict[str, TransferStrategy]:
    """One instance of every strategy sharing the given store"""
    return {
        UncontrolledStrategy.name: UncontrolledStrategy(store),
        AtomicStrategy.name: AtomicStrategy(store),
        OptimisticStrategy.name: OptimisticStrategy(store),
        PessimisticStrategy.name: PessimisticStrategy(store, lock_table),
    }

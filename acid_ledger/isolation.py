"""
Isolation Level Emulation

Isolation levels normally come from a database engine. Here they are a
simulation layer: each level is a read view over the LedgerStore that decides
what a multi-step read sequence observes. Nothing in this module is backed by
a storage engine guarantee; anyone moving the ledger onto a real database
should use the database's own isolation levels instead.

    read-uncommitted  latest physical value, staged (uncommitted) writes included
    read-committed    committed value at the instant of each read
    repeatable-read   first read of an account is pinned; count/total are not
    serializable      one consistent snapshot for the whole operation
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from decimal import Decimal
from enum import Enum
from typing import Dict, List

from .exceptions import AccountNotFound, UnknownIsolationLevel
from .logging_config import get_logger, log_action
from .store import Account, LedgerStore


class IsolationLevel(Enum):
    """Emulated isolation levels"""
    READ_UNCOMMITTED = "read-uncommitted"
    READ_COMMITTED = "read-committed"
    REPEATABLE_READ = "repeatable-read"
    SERIALIZABLE = "serializable"

    @property
    def pins_rows(self) -> bool:
        """Whether a second read of the same account must equal the first"""
        return self in (IsolationLevel.REPEATABLE_READ, IsolationLevel.SERIALIZABLE)

    @property
    def pins_aggregates(self) -> bool:
        """Whether count/total are fixed for the duration of the operation"""
        return self == IsolationLevel.SERIALIZABLE


def parse_isolation_level(name) -> IsolationLevel:
    """
    Resolve an isolation level from a name such as "REPEATABLE_READ",
    "repeatable read" or "repeatable-read".

    Raises:
        UnknownIsolationLevel: If the name matches no level
    """
    if isinstance(name, IsolationLevel):
        return name
    normalized = str(name).strip().lower().replace("_", "-").replace(" ", "-")
    try:
        return IsolationLevel(normalized)
    except ValueError:
        raise UnknownIsolationLevel(f"Unknown isolation level: {name}", level=name) from None


class ReadView(ABC):
    """What one logical operation is allowed to see"""

    level: IsolationLevel

    def __init__(self, store: LedgerStore):
        self.store = store

    @abstractmethod
    def read(self, account_id: str) -> Account:
        """Read one account under this level's rules"""

    def count(self) -> int:
        return self.store.count()

    def total(self) -> Decimal:
        return self.store.total()

    def close(self) -> None:
        pass


class ReadUncommittedView(ReadView):
    level = IsolationLevel.READ_UNCOMMITTED

    def read(self, account_id: str) -> Account:
        return self.store.get_uncommitted(account_id)


class ReadCommittedView(ReadView):
    level = IsolationLevel.READ_COMMITTED

    def read(self, account_id: str) -> Account:
        return self.store.get(account_id)


class RepeatableReadView(ReadView):
    """Pins each account on first read. Aggregates stay live, so phantoms show."""

    level = IsolationLevel.REPEATABLE_READ

    def __init__(self, store: LedgerStore):
        super().__init__(store)
        self._pinned: Dict[str, Account] = {}

    def read(self, account_id: str) -> Account:
        if account_id not in self._pinned:
            self._pinned[account_id] = self.store.get(account_id)
        return self._pinned[account_id]

    def close(self) -> None:
        self._pinned.clear()


class SerializableView(ReadView):
    """Reads everything from one snapshot taken when the view is opened"""

    level = IsolationLevel.SERIALIZABLE

    def __init__(self, store: LedgerStore):
        super().__init__(store)
        self._snapshot: Dict[str, Account] = {a.id: a for a in store.all()}

    def read(self, account_id: str) -> Account:
        account = self._snapshot.get(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    def accounts(self) -> List[Account]:
        return [self._snapshot[key] for key in sorted(self._snapshot)]

    def count(self) -> int:
        return len(self._snapshot)

    def total(self) -> Decimal:
        return sum((a.balance for a in self._snapshot.values()), Decimal("0"))

    def close(self) -> None:
        self._snapshot = {}


_VIEWS = {
    IsolationLevel.READ_UNCOMMITTED: ReadUncommittedView,
    IsolationLevel.READ_COMMITTED: ReadCommittedView,
    IsolationLevel.REPEATABLE_READ: RepeatableReadView,
    IsolationLevel.SERIALIZABLE: SerializableView,
}


@contextmanager
def read_view(store: LedgerStore, level):
    """Open a read view for one logical operation and close it on exit"""
    view = _VIEWS[parse_isolation_level(level)](store)
    try:
        yield view
    finally:
        view.close()


@contextmanager
def uncommitted_write(store: LedgerStore, account_id: str, delta: Decimal):
    """
    Stage delta on one account for the duration of the block.

    Read-uncommitted views see the staged change immediately; everyone else
    sees it only once the block exits normally and the delta is applied to
    the balance committed at that moment. Transfers committed while the
    block runs are kept. If the block raises, the delta is discarded.

    Yields:
        The account as read-uncommitted readers see it when staged
    """
    logger = get_logger("acid_ledger.isolation")
    delta = Decimal(delta)
    staged = store.stage(account_id, delta)
    log_action(
        logger, "info", "Balance changed but not committed",
        action="stage_write", resource=f"account:{account_id}",
        extra={"delta": str(delta), "new_balance": str(staged.balance), "status": "UNCOMMITTED"}
    )
    try:
        yield staged
    except BaseException:
        store.discard(account_id, delta)
        log_action(
            logger, "warning", "Uncommitted write discarded",
            action="discard_write", resource=f"account:{account_id}"
        )
        raise
    committed = store.commit_staged(account_id, delta)
    log_action(
        logger, "info", "Uncommitted write committed",
        action="commit_write", resource=f"account:{account_id}",
        extra={"balance": str(committed.balance), "version": committed.version}
    )

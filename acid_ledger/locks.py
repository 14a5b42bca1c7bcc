"""
Lock Table

Shared/exclusive locks keyed by account id, used by the pessimistic
strategy. Locks are not reentrant: a thread that asks for a lock it already
holds gets an InvariantViolation instead of a self-deadlock. Multi-account
acquisition always proceeds in lexicographic id order, so two transfers over
the same pair of accounts in opposite directions cannot deadlock.
"""

from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple
import threading
import time

from .exceptions import InvariantViolation, LockTimeout


class LockMode(Enum):
    """Lock modes"""
    SHARED = "shared"        # Many readers
    EXCLUSIVE = "exclusive"  # One writer


class SharedExclusiveLock:
    """Readers-writer lock with timeouts and owner tracking"""

    def __init__(self, name: str):
        self.name = name
        self._cond = threading.Condition(threading.Lock())
        self._readers: Dict[int, int] = {}
        self._writer: Optional[int] = None

    def _check_reentry(self, me: int) -> None:
        if self._writer == me or me in self._readers:
            raise InvariantViolation(f"Re-entrant acquisition of lock {self.name}")

    def acquire(self, mode: LockMode, timeout: Optional[float] = None) -> bool:
        """
        Acquire the lock in the given mode.

        Args:
            mode: SHARED or EXCLUSIVE
            timeout: Seconds to wait; None waits forever

        Returns:
            True if acquired, False on timeout
        """
        me = threading.get_ident()
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            self._check_reentry(me)
            while not self._can_grant(mode):
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)
            if mode == LockMode.EXCLUSIVE:
                self._writer = me
            else:
                self._readers[me] = 1
            return True

    def _can_grant(self, mode: LockMode) -> bool:
        if self._writer is not None:
            return False
        if mode == LockMode.EXCLUSIVE:
            return not self._readers
        return True

    def release(self, mode: LockMode) -> None:
        me = threading.get_ident()
        with self._cond:
            if mode == LockMode.EXCLUSIVE:
                if self._writer != me:
                    raise InvariantViolation(f"Lock {self.name} released by a thread that does not hold it")
                self._writer = None
            else:
                if self._readers.pop(me, None) is None:
                    raise InvariantViolation(f"Shared lock {self.name} released by a thread that does not hold it")
            self._cond.notify_all()

    @property
    def is_locked(self) -> bool:
        with self._cond:
            return self._writer is not None or bool(self._readers)


class LockTable:
    """
    Account id -> SharedExclusiveLock.

    Entries exist only while some thread holds or waits for the lock, so
    the table does not grow with every id ever asked about.
    """

    def __init__(self):
        self._locks: Dict[str, SharedExclusiveLock] = {}
        self._users: Dict[str, int] = {}
        self._guard = threading.Lock()

    def _checkout(self, account_id: str) -> SharedExclusiveLock:
        with self._guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = SharedExclusiveLock(account_id)
                self._locks[account_id] = lock
            self._users[account_id] = self._users.get(account_id, 0) + 1
            return lock

    def _checkin(self, account_id: str) -> None:
        with self._guard:
            users = self._users.get(account_id, 0) - 1
            if users > 0:
                self._users[account_id] = users
            else:
                self._users.pop(account_id, None)
                self._locks.pop(account_id, None)

    def acquire_all(self, account_ids: Iterable[str], mode: LockMode = LockMode.EXCLUSIVE,
                    timeout: Optional[float] = None) -> List[Tuple[str, LockMode]]:
        """
        Acquire locks on all ids in global (sorted) order.

        The timeout applies to the whole acquisition. On timeout every lock
        taken so far is released before LockTimeout is raised.

        Returns:
            The held (account_id, mode) pairs, in acquisition order
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        held: List[Tuple[str, LockMode]] = []
        try:
            for account_id in sorted(set(account_ids)):
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                lock = self._checkout(account_id)
                try:
                    acquired = lock.acquire(mode, remaining)
                except BaseException:
                    self._checkin(account_id)
                    raise
                if not acquired:
                    self._checkin(account_id)
                    raise LockTimeout(account_id, timeout)
                held.append((account_id, mode))
        except BaseException:
            self.release_all(held)
            raise
        return held

    def release_all(self, held: List[Tuple[str, LockMode]]) -> None:
        """Release held locks in reverse acquisition order"""
        for account_id, mode in reversed(held):
            with self._guard:
                lock = self._locks[account_id]
            lock.release(mode)
            self._checkin(account_id)

    def is_locked(self, account_id: str) -> bool:
        with self._guard:
            lock = self._locks.get(account_id)
        return lock is not None and lock.is_locked

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

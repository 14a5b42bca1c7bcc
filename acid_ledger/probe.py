"""
Isolation Probe

Runs a fixed read / wait / re-read / count sequence against the ledger under
one isolation level and reports what it saw. The probe never mutates; other
threads (or the on_wait hook) change the ledger during the waits, and the
result shows which of those changes the chosen level let through.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Optional
import threading
import time

from .exceptions import OperationCancelled
from .isolation import IsolationLevel, parse_isolation_level, read_view
from .logging_config import get_logger, log_action
from .store import LedgerStore


class ProbePhase(Enum):
    """The two waits of a probe run"""
    FIRST = "first"    # Between the two reads of the account
    SECOND = "second"  # Between the two counts


@dataclass
class ProbeResult:
    """What one probe run observed"""
    account_id: str
    level: IsolationLevel
    read1: Decimal
    read2: Decimal
    count_before: int
    count_after: int
    total_before: Decimal
    total_after: Decimal

    @property
    def changed(self) -> bool:
        """Non-repeatable read: the same account read twice gave two values"""
        return self.read1 != self.read2

    @property
    def phantom(self) -> bool:
        """Phantom read: the set of accounts changed between the two counts"""
        return self.count_before != self.count_after

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "isolation_level": self.level.value,
            "read1": str(self.read1),
            "read2": str(self.read2),
            "changed": self.changed,
            "count_before": self.count_before,
            "count_after": self.count_after,
            "phantom": self.phantom,
            "total_before": str(self.total_before),
            "total_after": str(self.total_after),
        }


class IsolationProbe:
    """Observes the ledger through an isolation level"""

    def __init__(self, store: LedgerStore, first_wait: float = 0.0, second_wait: float = 0.0):
        self.store = store
        self.first_wait = first_wait
        self.second_wait = second_wait
        self.logger = get_logger("acid_ledger.probe")

    def observe(
        self,
        account_id: str,
        level,
        *,
        first_wait: Optional[float] = None,
        second_wait: Optional[float] = None,
        on_wait: Optional[Callable[[ProbePhase], None]] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ProbeResult:
        """
        Read an account twice and count accounts twice under one level.

        Sequence: read#1, count/total before, wait 1, read#2, wait 2,
        count/total after. Each wait first calls on_wait(phase), then blocks
        for the configured seconds.

        Raises:
            AccountNotFound: If the account is missing at the first read
            UnknownIsolationLevel: If level is not a known level
            OperationCancelled: If cancel_event is set during a wait
        """
        level = parse_isolation_level(level)
        first_wait = self.first_wait if first_wait is None else first_wait
        second_wait = self.second_wait if second_wait is None else second_wait

        with read_view(self.store, level) as view:
            read1 = view.read(account_id).balance
            count_before = view.count()
            total_before = view.total()
            log_action(
                self.logger, "info", "First read",
                action="probe_read", resource=f"account:{account_id}",
                extra={"level": level.value, "balance": str(read1), "count": count_before}
            )

            self._wait(ProbePhase.FIRST, first_wait, on_wait, cancel_event)
            read2 = view.read(account_id).balance
            log_action(
                self.logger, "info", "Second read",
                action="probe_reread", resource=f"account:{account_id}",
                extra={"level": level.value, "balance": str(read2), "changed": read1 != read2}
            )

            self._wait(ProbePhase.SECOND, second_wait, on_wait, cancel_event)
            count_after = view.count()
            total_after = view.total()

        result = ProbeResult(
            account_id=account_id,
            level=level,
            read1=read1,
            read2=read2,
            count_before=count_before,
            count_after=count_after,
            total_before=total_before,
            total_after=total_after,
        )
        log_action(
            self.logger, "info", "Probe finished",
            action="probe_result", resource=f"account:{account_id}", extra=result.to_dict()
        )
        return result

    @staticmethod
    def _wait(
        phase: ProbePhase,
        seconds: float,
        on_wait: Optional[Callable[[ProbePhase], None]],
        cancel_event: Optional[threading.Event]
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled(f"Probe cancelled before {phase.value} wait")
        if on_wait:
            on_wait(phase)
        if seconds <= 0:
            return
        if cancel_event is None:
            time.sleep(seconds)
        elif cancel_event.wait(seconds):
            raise OperationCancelled(f"Probe cancelled during {phase.value} wait")

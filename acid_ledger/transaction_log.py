"""
Transaction Log

Append-only record of transfer attempts and their outcomes. A record is
created pending when a transfer starts, finalized exactly once to a terminal
status and appended exactly once. The log is the audit trail and the
observable side channel for atomicity demonstrations.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
import threading
import uuid

from .exceptions import InvariantViolation
from .storage import DuplicateRecordError, StorageInterface


class TransactionStatus(Enum):
    """States of a transfer record"""
    PENDING = "pending"            # Created, outcome not known yet
    SUCCESS = "success"            # Both legs committed
    FAILED = "failed"              # Nothing was mutated
    ROLLED_BACK = "rolled_back"    # Aborted after a leg was already written

    @property
    def is_terminal(self) -> bool:
        return self != TransactionStatus.PENDING


@dataclass
class TransactionRecord:
    """One transfer attempt"""
    id: str
    from_account: str
    to_account: str
    amount: Decimal
    strategy: str
    created_at: datetime
    status: TransactionStatus = TransactionStatus.PENDING
    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None
    sequence: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def finalize(self, status: TransactionStatus, error_message: Optional[str] = None) -> None:
        """
        Move the record to a terminal status. Allowed exactly once.

        Raises:
            InvariantViolation: If the record is already terminal or the
                target status is not terminal
        """
        if self.is_terminal:
            raise InvariantViolation(
                f"Transaction {self.id} already finalized as {self.status.value}"
            )
        if not status.is_terminal:
            raise InvariantViolation(f"Cannot finalize transaction {self.id} as {status.value}")
        self.status = status
        self.error_message = error_message
        self.completed_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "from_account": self.from_account,
            "to_account": self.to_account,
            "amount": str(self.amount),
            "strategy": self.strategy,
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "error_message": self.error_message,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransactionRecord':
        completed_at = None
        if data.get("completed_at"):
            completed_at = datetime.fromisoformat(data["completed_at"])
        return cls(
            id=data["id"],
            from_account=data["from_account"],
            to_account=data["to_account"],
            amount=Decimal(data["amount"]),
            strategy=data["strategy"],
            created_at=datetime.fromisoformat(data["created_at"]),
            status=TransactionStatus(data["status"]),
            error_message=data.get("error_message"),
            completed_at=completed_at,
            sequence=data.get("sequence"),
        )


class TransactionLog:
    """Append-only transaction log over a pluggable storage backend"""

    def __init__(self, storage: StorageInterface, table_name: str = "transaction_log"):
        self.storage = storage
        self.table_name = table_name
        self._append_lock = threading.Lock()

    def create(self, from_account: str, to_account: str, amount, strategy: str) -> TransactionRecord:
        """New pending record. Not part of the log until appended."""
        try:
            amount = Decimal(amount)
        except (ArithmeticError, TypeError, ValueError):
            amount = Decimal("NaN")
        return TransactionRecord(
            id=str(uuid.uuid4()),
            from_account=from_account,
            to_account=to_account,
            amount=amount,
            strategy=strategy,
            created_at=datetime.now(timezone.utc),
        )

    def append(self, record: TransactionRecord) -> TransactionRecord:
        """
        Append a finalized record.

        Raises:
            InvariantViolation: If the record is still pending or was
                already appended
        """
        if not record.is_terminal:
            raise InvariantViolation(f"Transaction {record.id} appended while still pending")
        try:
            with self._append_lock, self.storage.atomic():
                sequence = self.storage.count(self.table_name) + 1
                data = record.to_dict()
                data["sequence"] = sequence
                self.storage.append(self.table_name, record.id, data)
        except DuplicateRecordError as e:
            raise InvariantViolation(f"Transaction {record.id} appended twice") from e
        record.sequence = sequence
        return record

    def list_transactions(self) -> List[TransactionRecord]:
        """All records, newest first"""
        records = [TransactionRecord.from_dict(data) for data in self.storage.load_all(self.table_name)]
        records.sort(key=lambda r: r.sequence or 0, reverse=True)
        return records

    def get(self, record_id: str) -> Optional[TransactionRecord]:
        data = self.storage.load(self.table_name, record_id)
        if data:
            return TransactionRecord.from_dict(data)
        return None

    def for_account(self, account_id: str) -> List[TransactionRecord]:
        """Records where the account is source or destination, newest first"""
        return [
            r for r in self.list_transactions()
            if account_id in (r.from_account, r.to_account)
        ]

    def count(self) -> int:
        return self.storage.count(self.table_name)

    def summary(self) -> Dict[str, int]:
        """Number of records per status"""
        counts = {status.value: 0 for status in TransactionStatus if status.is_terminal}
        for record in self.list_transactions():
            counts[record.status.value] += 1
        counts["total"] = sum(counts.values())
        return counts

    def clear(self) -> None:
        self.storage.clear_table(self.table_name)

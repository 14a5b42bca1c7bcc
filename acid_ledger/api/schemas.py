"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from ..store import Account
from ..transaction_log import TransactionRecord


class SeedAccountModel(BaseModel):
    account_id: str
    balance: str = Field(..., description="Decimal amount as string")


class InitAccountsRequest(BaseModel):
    accounts: Optional[List[SeedAccountModel]] = None

    def to_seed(self):
        if self.accounts is None:
            return None
        return [(a.account_id, Decimal(a.balance)) for a in self.accounts]


class CreateAccountRequest(BaseModel):
    account_id: str
    balance: str = Field("0", description="Decimal amount as string")


class AccountModel(BaseModel):
    account_id: str
    balance: str
    version: int

    @classmethod
    def from_account(cls, account: Account) -> 'AccountModel':
        return cls(account_id=account.id, balance=str(account.balance), version=account.version)


class TransactionModel(BaseModel):
    id: str
    from_account: str
    to_account: str
    amount: str
    strategy: str
    status: str
    error_message: Optional[str] = None
    created_at: str
    completed_at: Optional[str] = None
    sequence: Optional[int] = None

    @classmethod
    def from_record(cls, record: TransactionRecord) -> 'TransactionModel':
        return cls(**record.to_dict())


class TransactionListResponse(BaseModel):
    transactions: List[TransactionModel]
    summary: Dict[str, int]

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

from account import ClientAccount
from currency import CurrencyValue
from errors import DuplicateTransaction
from models import ClientId, TransactionId, TransactionType


class DepositState(str, Enum):
    posted = "posted"
    disputed = "disputed"
    charged_back = "charged_back"


@dataclass(frozen=True)
class TransactionRecord:
    """An accepted transaction, kept only so its id cannot be reused."""
    tx: TransactionId
    client: ClientId
    type: TransactionType
    amount: CurrencyValue


@dataclass
class DepositRecord:
    """An accepted deposit; the only kind of record whose state changes."""
    tx: TransactionId
    client: ClientId
    amount: CurrencyValue
    state: DepositState = field(default=DepositState.posted)

    type = TransactionType.deposit

    @property
    def disputed(self) -> bool:
        return self.state is DepositState.disputed


LedgerRecord = Union[TransactionRecord, DepositRecord]


class AccountRepository(ABC):
    @abstractmethod
    def get(self, client: ClientId) -> Optional[ClientAccount]:
        """Get an account. Returns None if the client was never seen."""
        pass

    @abstractmethod
    def get_or_create(self, client: ClientId) -> ClientAccount:
        """Get an account, creating an empty one on first reference."""
        pass

    @abstractmethod
    def all(self) -> List[ClientAccount]:
        """All accounts ordered by client id."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass


class InMemoryAccountRepository(AccountRepository):
    def __init__(self):
        self.accounts: Dict[ClientId, ClientAccount] = {}

    def get(self, client: ClientId) -> Optional[ClientAccount]:
        return self.accounts.get(client)

    def get_or_create(self, client: ClientId) -> ClientAccount:
        account = self.accounts.get(client)
        if account is None:
            account = ClientAccount(client)
            self.accounts[client] = account
        return account

    def all(self) -> List[ClientAccount]:
        return [self.accounts[client] for client in sorted(self.accounts)]

    def count(self) -> int:
        return len(self.accounts)


class TransactionLedger:
    """Append-only store of accepted transactions, keyed by transaction id."""

    def __init__(self):
        self.records: Dict[TransactionId, LedgerRecord] = {}

    def record(self, tx: TransactionId, record: LedgerRecord) -> None:
        if tx in self.records:
            raise DuplicateTransaction(tx)
        self.records[tx] = record

    def contains(self, tx: TransactionId) -> bool:
        return tx in self.records

    def get(self, tx: TransactionId) -> Optional[LedgerRecord]:
        return self.records.get(tx)

    def find_disputable(self, tx: TransactionId) -> Optional[DepositRecord]:
        """Stored deposit for `tx`, or None when unknown or not a deposit."""
        record = self.records.get(tx)
        if isinstance(record, DepositRecord):
            return record
        return None

    def __len__(self) -> int:
        return len(self.records)

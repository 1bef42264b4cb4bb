from pydantic import BaseModel, ConfigDict, Field, field_validator
from enum import Enum
from typing import Literal, Optional, Union
from datetime import datetime

from currency import CurrencyValue
from errors import TransactionParseError


MAX_CLIENT_ID = 2 ** 16 - 1
MAX_TRANSACTION_ID = 2 ** 32 - 1

ClientId = int
TransactionId = int


class TransactionType(str, Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"
    dispute = "dispute"
    resolve = "resolve"
    chargeback = "chargeback"


class _TransactionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    client: ClientId = Field(..., ge=0, le=MAX_CLIENT_ID)
    tx: TransactionId = Field(..., ge=0, le=MAX_TRANSACTION_ID)


class Deposit(_TransactionBase):
    type: Literal[TransactionType.deposit] = TransactionType.deposit
    amount: CurrencyValue


class Withdrawal(_TransactionBase):
    type: Literal[TransactionType.withdrawal] = TransactionType.withdrawal
    amount: CurrencyValue


class Dispute(_TransactionBase):
    type: Literal[TransactionType.dispute] = TransactionType.dispute


class Resolve(_TransactionBase):
    type: Literal[TransactionType.resolve] = TransactionType.resolve


class Chargeback(_TransactionBase):
    type: Literal[TransactionType.chargeback] = TransactionType.chargeback


Transaction = Union[Deposit, Withdrawal, Dispute, Resolve, Chargeback]

_WITH_AMOUNT = {
    TransactionType.deposit: Deposit,
    TransactionType.withdrawal: Withdrawal,
}
_WITHOUT_AMOUNT = {
    TransactionType.dispute: Dispute,
    TransactionType.resolve: Resolve,
    TransactionType.chargeback: Chargeback,
}


class TransactionRow(BaseModel):
    """One input record, as read from CSV or posted to the API."""

    type: TransactionType = Field(..., description="Transaction type")
    client: ClientId = Field(
        ...,
        ge=0,
        le=MAX_CLIENT_ID,
        description="Client identifier"
    )
    tx: TransactionId = Field(
        ...,
        ge=0,
        le=MAX_TRANSACTION_ID,
        description="Globally unique transaction identifier"
    )
    amount: Optional[CurrencyValue] = Field(
        None,
        description="Decimal amount, only for deposits and withdrawals"
    )

    @field_validator('type', mode='before')
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator('amount', mode='before')
    @classmethod
    def empty_amount_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def to_transaction(self) -> Transaction:
        """Convert to the typed variant, checking amount presence for the type."""
        if self.type in _WITH_AMOUNT:
            if self.amount is None:
                raise TransactionParseError(
                    f"{self.type.value} {self.tx} requires an amount"
                )
            return _WITH_AMOUNT[self.type](client=self.client, tx=self.tx, amount=self.amount)

        if self.amount is not None:
            raise TransactionParseError(
                f"{self.type.value} {self.tx} must not carry an amount"
            )
        return _WITHOUT_AMOUNT[self.type](client=self.client, tx=self.tx)


class AccountRow(BaseModel):
    client: ClientId = Field(..., description="Client identifier")
    available: CurrencyValue = Field(..., description="Funds available for withdrawal")
    held: CurrencyValue = Field(..., description="Funds held by open disputes")
    total: CurrencyValue = Field(..., description="available + held")
    locked: bool = Field(..., description="Whether the account was charged back")


class TransactionResponse(BaseModel):
    tx: TransactionId = Field(..., description="Transaction identifier")
    type: TransactionType = Field(..., description="Transaction type")
    client: ClientId = Field(..., description="Client identifier from the request")
    status: Literal["processed", "ignored"] = Field(..., description="Processing outcome")
    account: Optional[AccountRow] = Field(None, description="Account state after processing")


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error description")
    error_code: str = Field(..., description="Machine-readable error code")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(default_factory=datetime.now)
    accounts_count: int = Field(..., description="Number of client accounts")
    transactions_recorded: int = Field(..., description="Deposits and withdrawals accepted")

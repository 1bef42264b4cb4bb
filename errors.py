from typing import Optional


class LedgerError(Exception):
    """Base class for every failure raised while ingesting a transaction."""

    error_code = "LEDGER_ERROR"
    default_message = "Ledger error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    @property
    def detail(self) -> str:
        return str(self)


class TransactionParseError(LedgerError):
    """Input record could not be turned into a typed transaction."""

    error_code = "TRANSACTION_PARSE_ERROR"
    default_message = "Malformed transaction record"


class DuplicateTransaction(LedgerError):
    """Transaction id was already accepted once."""

    error_code = "DUPLICATE_TRANSACTION"

    def __init__(self, tx: int):
        self.tx = tx
        super().__init__(f"Transaction {tx} already processed")


class InvalidTransaction(LedgerError):
    error_code = "INVALID_TRANSACTION"
    default_message = "Invalid transaction"


class AccountLocked(LedgerError):
    error_code = "ACCOUNT_LOCKED"
    default_message = "Account is locked"


class InsufficientFunds(LedgerError):
    error_code = "INSUFFICIENT_FUNDS"
    default_message = "Insufficient funds"


class InsufficientHeldFunds(LedgerError):
    """Held balance would go negative.

    Never caused by input alone: seeing this means the dispute bookkeeping
    and the account balances disagree.
    """

    error_code = "INSUFFICIENT_HELD_FUNDS"
    default_message = "Insufficient held funds"


class Overflow(LedgerError):
    """Checked currency arithmetic left the representable range."""

    error_code = "OVERFLOW"
    default_message = "Arithmetic overflow"


class DecimalError(LedgerError):
    """Fractional part does not fit the currency scale."""

    error_code = "DECIMAL_ERROR"
    default_message = "Fractional part exceeds currency scale"


class InvalidRepresentation(LedgerError, ValueError):
    """Text is not a valid decimal amount."""

    error_code = "INVALID_REPRESENTATION"
    default_message = "Invalid currency representation"

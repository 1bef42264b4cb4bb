from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple
import structlog

from account import ClientAccount
from currency import CurrencyValue
from errors import (
    DuplicateTransaction,
    InsufficientHeldFunds,
    InvalidTransaction,
    LedgerError,
    Overflow,
)
from models import (
    AccountRow,
    Chargeback,
    ClientId,
    Deposit,
    Dispute,
    Resolve,
    Transaction,
    Withdrawal,
)
from repositories import (
    AccountRepository,
    DepositRecord,
    DepositState,
    InMemoryAccountRepository,
    TransactionLedger,
    TransactionRecord,
)

logger = structlog.get_logger()


class TransactionOutcome(str, Enum):
    processed = "processed"
    ignored = "ignored"


@dataclass
class ProcessingReport:
    processed: int = 0
    ignored: int = 0
    errors: List[Tuple[int, Transaction, LedgerError]] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)


class LedgerEngine:
    """
    Replays transactions in order against per-client accounts.

    The engine owns its account repository and transaction ledger; build a
    fresh engine for every independent run.
    """

    def __init__(
        self,
        accounts: Optional[AccountRepository] = None,
        ledger: Optional[TransactionLedger] = None,
    ):
        self.accounts_repo = accounts if accounts is not None else InMemoryAccountRepository()
        self.ledger = ledger if ledger is not None else TransactionLedger()

    def execute(self, transaction: Transaction) -> TransactionOutcome:
        """Apply one transaction. Raises LedgerError without mutating state."""
        if isinstance(transaction, Deposit):
            return self._deposit(transaction)
        elif isinstance(transaction, Withdrawal):
            return self._withdrawal(transaction)
        elif isinstance(transaction, Dispute):
            return self._dispute(transaction)
        elif isinstance(transaction, Resolve):
            return self._resolve(transaction)
        elif isinstance(transaction, Chargeback):
            return self._chargeback(transaction)
        else:
            raise InvalidTransaction(
                f"Unsupported transaction type {type(transaction).__name__}"
            )

    def process(
        self,
        transactions: Iterable[Transaction],
        fail_fast: bool = False
    ) -> ProcessingReport:
        """
        Execute a stream of transactions in order.

        A failing transaction is logged and skipped; processing carries on
        with the next one unless `fail_fast` is set, in which case the error
        is raised.
        """
        report = ProcessingReport()
        for index, transaction in enumerate(transactions):
            try:
                outcome = self.execute(transaction)
            except LedgerError as e:
                report.errors.append((index, transaction, e))
                self._log_rejection(transaction, e)
                if fail_fast:
                    raise
                continue

            if outcome is TransactionOutcome.processed:
                report.processed += 1
            else:
                report.ignored += 1

        logger.info(
            "Transaction stream processed",
            processed=report.processed,
            ignored=report.ignored,
            failed=report.failed
        )
        return report

    def account(self, client: ClientId) -> Optional[ClientAccount]:
        return self.accounts_repo.get(client)

    def accounts(self) -> List[ClientAccount]:
        return self.accounts_repo.all()

    def report(self) -> List[AccountRow]:
        """Account rows ordered by client id, skipping rows whose total overflows."""
        rows = []
        for account in self.accounts_repo.all():
            try:
                rows.append(account.to_row())
            except Overflow as e:
                logger.error("Account cannot be reported", client=account.client, error=str(e))
        return rows

    def transactions_count(self) -> int:
        return len(self.ledger)

    def _deposit(self, transaction: Deposit) -> TransactionOutcome:
        self._check_new(transaction)
        account = self.accounts_repo.get_or_create(transaction.client)
        account.deposit(transaction.amount)
        self.ledger.record(
            transaction.tx,
            DepositRecord(tx=transaction.tx, client=transaction.client, amount=transaction.amount)
        )

        logger.debug(
            "Deposit processed",
            client=transaction.client,
            tx=transaction.tx,
            amount=str(transaction.amount),
            available=str(account.available)
        )
        return TransactionOutcome.processed

    def _withdrawal(self, transaction: Withdrawal) -> TransactionOutcome:
        self._check_new(transaction)
        account = self.accounts_repo.get_or_create(transaction.client)
        account.withdraw(transaction.amount)
        self.ledger.record(
            transaction.tx,
            TransactionRecord(
                tx=transaction.tx,
                client=transaction.client,
                type=transaction.type,
                amount=transaction.amount
            )
        )

        logger.debug(
            "Withdrawal processed",
            client=transaction.client,
            tx=transaction.tx,
            amount=str(transaction.amount),
            available=str(account.available)
        )
        return TransactionOutcome.processed

    def _dispute(self, transaction: Dispute) -> TransactionOutcome:
        record = self._find_disputable(transaction)
        if record is None:
            return TransactionOutcome.ignored
        if record.state is DepositState.disputed:
            raise InvalidTransaction(f"Transaction {record.tx} is already disputed")
        if record.state is DepositState.charged_back:
            raise InvalidTransaction(f"Transaction {record.tx} was charged back")

        self._owner(record).hold(record.amount)
        record.state = DepositState.disputed

        logger.info("Dispute opened", client=record.client, tx=record.tx, amount=str(record.amount))
        return TransactionOutcome.processed

    def _resolve(self, transaction: Resolve) -> TransactionOutcome:
        record = self._find_disputable(transaction)
        if record is None:
            return TransactionOutcome.ignored
        if not record.disputed:
            raise InvalidTransaction(f"Transaction {record.tx} is not disputed")

        self._owner(record).release(record.amount)
        record.state = DepositState.posted

        logger.info("Dispute resolved", client=record.client, tx=record.tx, amount=str(record.amount))
        return TransactionOutcome.processed

    def _chargeback(self, transaction: Chargeback) -> TransactionOutcome:
        record = self._find_disputable(transaction)
        if record is None:
            return TransactionOutcome.ignored
        if not record.disputed:
            raise InvalidTransaction(f"Transaction {record.tx} is not disputed")

        self._owner(record).chargeback(record.amount)
        record.state = DepositState.charged_back

        logger.warning(
            "Chargeback applied, account locked",
            client=record.client,
            tx=record.tx,
            amount=str(record.amount)
        )
        return TransactionOutcome.processed

    def _check_new(self, transaction) -> None:
        if not isinstance(transaction.amount, CurrencyValue):
            raise InvalidTransaction(f"Transaction {transaction.tx} has an invalid amount")
        if self.ledger.contains(transaction.tx):
            raise DuplicateTransaction(transaction.tx)

    def _find_disputable(self, transaction) -> Optional[DepositRecord]:
        record = self.ledger.find_disputable(transaction.tx)
        if record is None:
            logger.info(
                "Ignoring reference to unknown or non-disputable transaction",
                type=transaction.type.value,
                client=transaction.client,
                tx=transaction.tx
            )
            return None
        if record.client != transaction.client:
            logger.warning(
                "Client mismatch on disputed transaction, using recorded client",
                type=transaction.type.value,
                request_client=transaction.client,
                recorded_client=record.client,
                tx=transaction.tx
            )
        return record

    def _owner(self, record: DepositRecord) -> ClientAccount:
        return self.accounts_repo.get_or_create(record.client)

    def _log_rejection(self, transaction: Transaction, error: LedgerError) -> None:
        if isinstance(error, InsufficientHeldFunds):
            logger.error(
                "Held balance inconsistent with dispute state",
                type=transaction.type.value,
                client=transaction.client,
                tx=transaction.tx,
                error=str(error)
            )
        else:
            logger.warning(
                "Transaction rejected",
                type=transaction.type.value,
                client=transaction.client,
                tx=transaction.tx,
                error_code=error.error_code,
                error=str(error)
            )


# Factory function for dependency injection
def get_ledger_engine(
    accounts: Optional[AccountRepository] = None,
    ledger: Optional[TransactionLedger] = None
) -> LedgerEngine:
    return LedgerEngine(accounts, ledger)

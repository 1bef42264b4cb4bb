import pytest
from unittest.mock import patch

from currency import CurrencyValue
from errors import (
    AccountLocked,
    DuplicateTransaction,
    InsufficientFunds,
    InvalidTransaction,
    Overflow,
)
from models import Chargeback, Deposit, Dispute, Resolve, TransactionType, Withdrawal
from repositories import DepositRecord, DepositState, TransactionLedger, TransactionRecord
from services import LedgerEngine, TransactionOutcome

D = CurrencyValue.parse


def balances(engine, client=1):
    account = engine.account(client)
    return account.available, account.held, account.is_locked


class TestScenarios:
    """End-to-end replay scenarios."""

    def test_single_deposit(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("1.0")))
        assert engine.account(1).available == D("1.0000")

    def test_two_deposits_accumulate(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("1.0")))
        engine.execute(Deposit(client=1, tx=2, amount=D("1.0")))
        assert engine.account(1).available == D("2.0")

    def test_deposit_then_withdrawal(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("2.0")))
        engine.execute(Withdrawal(client=1, tx=2, amount=D("0.5")))
        assert engine.account(1).available == D("1.5")

    def test_dispute_holds_funds(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("2.0")))
        engine.execute(Dispute(client=1, tx=1))

        account = engine.account(1)
        assert account.available == D("0")
        assert account.held == D("2.0")
        assert account.total() == D("2.0")

        with pytest.raises(InsufficientFunds):
            engine.execute(Withdrawal(client=1, tx=2, amount=D("0.5")))
        assert balances(engine) == (D("0"), D("2.0"), False)

    def test_dispute_then_resolve(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("2.0")))
        engine.execute(Dispute(client=1, tx=1))
        engine.execute(Resolve(client=1, tx=1))
        assert balances(engine) == (D("2.0"), D("0"), False)

    def test_dispute_then_chargeback(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("2.0")))
        engine.execute(Dispute(client=1, tx=1))
        engine.execute(Chargeback(client=1, tx=1))

        account = engine.account(1)
        assert account.available == D("0")
        assert account.held == D("0")
        assert account.total() == D("0")
        assert account.is_locked

    def test_resolve_restores_exact_pre_dispute_balances(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("10.1234")))
        engine.execute(Deposit(client=1, tx=2, amount=D("0.0007")))
        engine.execute(Withdrawal(client=1, tx=3, amount=D("3.3333")))
        before = balances(engine)

        engine.execute(Dispute(client=1, tx=2))
        engine.execute(Resolve(client=1, tx=2))
        assert balances(engine) == before

    def test_clients_are_independent(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("1.0")))
        engine.execute(Deposit(client=2, tx=2, amount=D("2.0")))
        engine.execute(Deposit(client=1, tx=3, amount=D("2.0")))
        engine.execute(Withdrawal(client=1, tx=4, amount=D("1.5")))
        with pytest.raises(InsufficientFunds):
            engine.execute(Withdrawal(client=2, tx=5, amount=D("3.0")))

        assert engine.account(1).available == D("1.5")
        assert engine.account(2).available == D("2.0")
        assert [a.client for a in engine.accounts()] == [1, 2]


class TestDepositWithdrawalRules:
    """Test duplicate detection and all-or-nothing failures."""

    def test_duplicate_deposit_rejected(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("1.0")))
        with pytest.raises(DuplicateTransaction) as excinfo:
            engine.execute(Deposit(client=1, tx=1, amount=D("5.0")))
        assert excinfo.value.tx == 1
        assert engine.account(1).available == D("1.0")

    def test_withdrawal_cannot_reuse_deposit_id(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("1.0")))
        with pytest.raises(DuplicateTransaction):
            engine.execute(Withdrawal(client=1, tx=1, amount=D("0.5")))
        assert engine.account(1).available == D("1.0")

    def test_failed_withdrawal_is_not_recorded(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("1.0")))
        with pytest.raises(InsufficientFunds):
            engine.execute(Withdrawal(client=1, tx=2, amount=D("2.0")))
        assert not engine.ledger.contains(2)

        engine.execute(Withdrawal(client=1, tx=2, amount=D("0.5")))
        assert engine.account(1).available == D("0.5")

    def test_withdrawal_for_unknown_client_creates_empty_account(self, engine):
        with pytest.raises(InsufficientFunds):
            engine.execute(Withdrawal(client=9, tx=1, amount=D("1.0")))
        assert balances(engine, 9) == (D("0"), D("0"), False)

    def test_deposit_overflow_is_not_recorded(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=CurrencyValue(2 ** 64 - 1)))
        with pytest.raises(Overflow):
            engine.execute(Deposit(client=1, tx=2, amount=D("1")))
        assert not engine.ledger.contains(2)

    def test_deposit_overflowing_total_with_held_funds(self, engine):
        half = CurrencyValue(2 ** 63)
        engine.execute(Deposit(client=1, tx=1, amount=half))
        engine.execute(Dispute(client=1, tx=1))
        with pytest.raises(Overflow):
            engine.execute(Deposit(client=1, tx=2, amount=half))

        assert not engine.ledger.contains(2)
        assert balances(engine) == (D("0"), half, False)
        assert [row.total for row in engine.report()] == [half]

    def test_locked_account_rejects_deposits(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("1.0")))
        engine.execute(Dispute(client=1, tx=1))
        engine.execute(Chargeback(client=1, tx=1))
        with pytest.raises(AccountLocked):
            engine.execute(Deposit(client=1, tx=2, amount=D("1.0")))
        with pytest.raises(AccountLocked):
            engine.execute(Withdrawal(client=1, tx=3, amount=D("0")))
        assert not engine.ledger.contains(2)

    def test_non_currency_amount_is_invalid(self, engine):
        deposit = Deposit.model_construct(client=1, tx=1, amount=-5)
        with pytest.raises(InvalidTransaction):
            engine.execute(deposit)
        assert engine.account(1) is None

    def test_unknown_transaction_type(self, engine):
        with pytest.raises(InvalidTransaction):
            engine.execute(object())


class TestDisputeLifecycle:
    """Test dispute, resolve and chargeback transitions."""

    def test_dispute_unknown_transaction_is_ignored(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("1.0")))
        assert engine.execute(Dispute(client=1, tx=99)) is TransactionOutcome.ignored
        assert engine.execute(Resolve(client=1, tx=99)) is TransactionOutcome.ignored
        assert engine.execute(Chargeback(client=1, tx=99)) is TransactionOutcome.ignored
        assert balances(engine) == (D("1.0"), D("0"), False)

    def test_withdrawal_dispute_is_ignored(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("2.0")))
        engine.execute(Withdrawal(client=1, tx=2, amount=D("1.0")))
        assert engine.execute(Dispute(client=1, tx=2)) is TransactionOutcome.ignored
        assert balances(engine) == (D("1.0"), D("0"), False)

    def test_double_dispute_rejected(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("2.0")))
        engine.execute(Dispute(client=1, tx=1))
        with pytest.raises(InvalidTransaction):
            engine.execute(Dispute(client=1, tx=1))
        assert balances(engine) == (D("0"), D("2.0"), False)

    def test_resolve_without_dispute_rejected(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("2.0")))
        with pytest.raises(InvalidTransaction):
            engine.execute(Resolve(client=1, tx=1))
        assert balances(engine) == (D("2.0"), D("0"), False)

    def test_chargeback_without_dispute_rejected(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("2.0")))
        with pytest.raises(InvalidTransaction):
            engine.execute(Chargeback(client=1, tx=1))
        assert balances(engine) == (D("2.0"), D("0"), False)

    def test_deposit_can_be_disputed_again_after_resolve(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("2.0")))
        engine.execute(Dispute(client=1, tx=1))
        engine.execute(Resolve(client=1, tx=1))
        engine.execute(Dispute(client=1, tx=1))
        assert balances(engine) == (D("0"), D("2.0"), False)
        assert engine.ledger.find_disputable(1).state is DepositState.disputed

    def test_charged_back_deposit_is_terminal(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("2.0")))
        engine.execute(Dispute(client=1, tx=1))
        engine.execute(Chargeback(client=1, tx=1))
        with pytest.raises(InvalidTransaction):
            engine.execute(Dispute(client=1, tx=1))
        with pytest.raises(InvalidTransaction):
            engine.execute(Resolve(client=1, tx=1))
        assert balances(engine) == (D("0"), D("0"), True)

    def test_dispute_after_withdrawal_fails_without_state_change(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("2.0")))
        engine.execute(Withdrawal(client=1, tx=2, amount=D("1.5")))
        with pytest.raises(Overflow):
            engine.execute(Dispute(client=1, tx=1))
        assert balances(engine) == (D("0.5"), D("0"), False)
        assert not engine.ledger.find_disputable(1).disputed

    def test_recorded_client_is_authoritative(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("2.0")))
        engine.execute(Deposit(client=2, tx=2, amount=D("3.0")))
        engine.execute(Dispute(client=2, tx=1))

        assert balances(engine, 1) == (D("0"), D("2.0"), False)
        assert balances(engine, 2) == (D("3.0"), D("0"), False)

    def test_dispute_on_locked_account_rejected(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("1.0")))
        engine.execute(Deposit(client=1, tx=2, amount=D("5.0")))
        engine.execute(Dispute(client=1, tx=1))
        engine.execute(Chargeback(client=1, tx=1))

        with pytest.raises(AccountLocked):
            engine.execute(Dispute(client=1, tx=2))
        assert balances(engine) == (D("5.0"), D("0"), True)
        assert engine.ledger.find_disputable(2).state is DepositState.posted

    def test_in_flight_dispute_on_locked_account_cannot_resolve(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("1.0")))
        engine.execute(Deposit(client=1, tx=2, amount=D("2.0")))
        engine.execute(Dispute(client=1, tx=1))
        engine.execute(Dispute(client=1, tx=2))
        engine.execute(Chargeback(client=1, tx=1))

        with pytest.raises(AccountLocked):
            engine.execute(Resolve(client=1, tx=2))
        assert balances(engine) == (D("0"), D("2.0"), True)
        assert engine.ledger.find_disputable(2).disputed

        # chargeback is still permitted on a locked account
        engine.execute(Chargeback(client=1, tx=2))
        assert balances(engine) == (D("0"), D("0"), True)

    def test_dispute_records_are_not_deduplicated(self, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("2.0")))
        engine.execute(Dispute(client=1, tx=1))
        engine.execute(Resolve(client=1, tx=1))
        assert engine.transactions_count() == 1


class TestProcess:
    """Test stream processing."""

    def test_errors_do_not_stop_the_stream(self, engine):
        report = engine.process([
            Deposit(client=1, tx=1, amount=D("1.0")),
            Withdrawal(client=1, tx=2, amount=D("5.0")),
            Deposit(client=1, tx=1, amount=D("1.0")),
            Dispute(client=1, tx=42),
            Deposit(client=1, tx=3, amount=D("0.25")),
        ])

        assert report.processed == 2
        assert report.ignored == 1
        assert report.failed == 2
        assert [index for index, _, _ in report.errors] == [1, 2]
        assert isinstance(report.errors[0][2], InsufficientFunds)
        assert isinstance(report.errors[1][2], DuplicateTransaction)
        assert engine.account(1).available == D("1.25")

    def test_fail_fast_raises_first_error(self, engine):
        with pytest.raises(InsufficientFunds):
            engine.process([
                Deposit(client=1, tx=1, amount=D("1.0")),
                Withdrawal(client=1, tx=2, amount=D("5.0")),
                Deposit(client=1, tx=3, amount=D("1.0")),
            ], fail_fast=True)
        assert engine.account(1).available == D("1.0")

    @patch('services.logger')
    def test_rejections_are_logged(self, mock_logger, engine):
        engine.process([Withdrawal(client=1, tx=1, amount=D("1.0"))])
        mock_logger.warning.assert_called()

    @patch('services.logger')
    def test_held_funds_fault_is_logged_as_error(self, mock_logger, engine):
        engine.execute(Deposit(client=1, tx=1, amount=D("2.0")))
        engine.execute(Dispute(client=1, tx=1))
        # Corrupt held so releasing the disputed amount is impossible
        engine.account(1)._held = D("1.0")
        report = engine.process([Resolve(client=1, tx=1)])

        assert report.failed == 1
        mock_logger.error.assert_called()
        assert engine.ledger.find_disputable(1).disputed

    def test_report_rows_in_client_order(self, engine):
        engine.process([
            Deposit(client=3, tx=1, amount=D("3.0")),
            Deposit(client=1, tx=2, amount=D("1.0")),
        ])
        rows = engine.report()
        assert [row.client for row in rows] == [1, 3]
        assert rows[0].total == D("1.0")


class TestTransactionLedger:
    """Test the transaction store directly."""

    def test_record_and_find(self):
        ledger = TransactionLedger()
        ledger.record(1, DepositRecord(tx=1, client=1, amount=D("1.0")))
        assert ledger.find_disputable(1).state is DepositState.posted
        assert len(ledger) == 1

    def test_record_duplicate(self):
        ledger = TransactionLedger()
        ledger.record(1, DepositRecord(tx=1, client=1, amount=D("1.0")))
        with pytest.raises(DuplicateTransaction):
            ledger.record(1, DepositRecord(tx=1, client=2, amount=D("9.0")))
        assert ledger.get(1).client == 1

    def test_find_disputable_skips_withdrawals(self):
        ledger = TransactionLedger()
        ledger.record(2, TransactionRecord(tx=2, client=1, type=TransactionType.withdrawal, amount=D("1")))
        assert ledger.find_disputable(2) is None
        assert ledger.find_disputable(3) is None

    def test_engines_do_not_share_state(self):
        first, second = LedgerEngine(), LedgerEngine()
        first.execute(Deposit(client=1, tx=1, amount=D("1.0")))
        assert second.account(1) is None
        second.execute(Deposit(client=1, tx=1, amount=D("1.0")))

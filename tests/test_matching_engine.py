"""
LedgerCore - Matching Engine Tests

Unit tests for the bank-to-book matcher. No database is needed.
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from ledger_core.models.accounting import GeneralLedgerEntry
from ledger_core.models.bank_reconciliation import (
    BankTransaction,
    BankTransactionStatus,
    BankTransactionType,
)
from ledger_core.services.matching_engine import MatchingConfig, MatchingEngine, TieBreaker


D = date(2026, 3, 10)


def bank_tx(n, amount, day=D, tx_type=BankTransactionType.CREDIT, status=BankTransactionStatus.UNMATCHED):
    return BankTransaction(
        id=UUID(int=n),
        transaction_date=day,
        amount=Decimal(amount),
        transaction_type=tx_type,
        status=status,
    )


def book_row(n, debit="0.00", credit="0.00", day=D, sequence=1, line=1):
    return GeneralLedgerEntry(
        id=UUID(int=n),
        journal_entry_id=UUID(int=1000 + n),
        entry_date=day,
        entry_sequence=sequence,
        line_number=line,
        debit_amount=Decimal(debit),
        credit_amount=Decimal(credit),
    )


class TestMatchingEngine:
    """Test cases for MatchingEngine."""

    def test_deposit_matches_book_debit_within_window(self):
        """A 250.00 deposit pairs with a 250.00 debit one day later."""
        engine = MatchingEngine(MatchingConfig(date_tolerance_days=3))

        matches = engine.match(
            [bank_tx(1, "250.00")],
            [book_row(101, debit="250.00", day=D + timedelta(days=1))],
        )

        assert len(matches) == 1
        assert matches[0].bank_transaction_id == UUID(int=1)
        assert matches[0].ledger_entry_id == UUID(int=101)
        assert matches[0].journal_entry_id == UUID(int=1101)
        assert matches[0].amount == Decimal("250.00")
        assert matches[0].day_distance == 1

    def test_withdrawal_matches_book_credit(self):
        """A bank DEBIT pairs with a book credit of the same amount."""
        engine = MatchingEngine(MatchingConfig())

        matches = engine.match(
            [bank_tx(1, "40.00", tx_type=BankTransactionType.DEBIT)],
            [book_row(101, debit="40.00"), book_row(102, credit="40.00")],
        )

        assert [m.ledger_entry_id for m in matches] == [UUID(int=102)]

    def test_outside_window_is_not_matched(self):
        """Rows further away than the tolerance stay unmatched."""
        engine = MatchingEngine(MatchingConfig(date_tolerance_days=3))

        matches = engine.match(
            [bank_tx(1, "250.00")],
            [book_row(101, debit="250.00", day=D + timedelta(days=4))],
        )

        assert matches == []

    def test_amount_must_match_exactly(self):
        """A one cent difference is not a match."""
        engine = MatchingEngine(MatchingConfig())

        matches = engine.match([bank_tx(1, "250.00")], [book_row(101, debit="249.99")])

        assert matches == []

    def test_zero_tolerance_requires_same_day(self):
        engine = MatchingEngine(MatchingConfig(date_tolerance_days=0))

        matches = engine.match(
            [bank_tx(1, "10.00"), bank_tx(2, "20.00")],
            [book_row(101, debit="10.00"), book_row(102, debit="20.00", day=D + timedelta(days=1))],
        )

        assert [m.bank_transaction_id for m in matches] == [UUID(int=1)]

    def test_negative_tolerance_rejected(self):
        with pytest.raises(ValueError):
            MatchingEngine(MatchingConfig(date_tolerance_days=-1))

    def test_nearest_date_wins(self):
        """Among equal amounts the row closest in date is taken."""
        engine = MatchingEngine(MatchingConfig())

        matches = engine.match(
            [bank_tx(1, "100.00")],
            [
                book_row(101, debit="100.00", day=D + timedelta(days=2)),
                book_row(102, debit="100.00", day=D - timedelta(days=1)),
            ],
        )

        assert matches[0].ledger_entry_id == UUID(int=102)

    def test_lowest_id_breaks_ties(self):
        """Equally distant rows go to the lowest id by default."""
        engine = MatchingEngine(MatchingConfig(tie_breaker=TieBreaker.LOWEST_ID))

        matches = engine.match(
            [bank_tx(1, "100.00")],
            [
                book_row(105, debit="100.00", sequence=1),
                book_row(103, debit="100.00", sequence=2),
            ],
        )

        assert matches[0].ledger_entry_id == UUID(int=103)

    def test_ledger_order_breaks_ties(self):
        """With LEDGER_ORDER the earliest posted row wins."""
        engine = MatchingEngine(MatchingConfig(tie_breaker=TieBreaker.LEDGER_ORDER))

        matches = engine.match(
            [bank_tx(1, "100.00")],
            [
                book_row(105, debit="100.00", sequence=1),
                book_row(103, debit="100.00", sequence=2),
            ],
        )

        assert matches[0].ledger_entry_id == UUID(int=105)

    def test_each_row_used_once(self):
        """Two equal deposits take two different rows; a third stays unmatched."""
        engine = MatchingEngine(MatchingConfig())

        matches = engine.match(
            [bank_tx(1, "50.00"), bank_tx(2, "50.00"), bank_tx(3, "50.00")],
            [book_row(101, debit="50.00"), book_row(102, debit="50.00")],
        )

        assert [(m.bank_transaction_id, m.ledger_entry_id) for m in matches] == [
            (UUID(int=1), UUID(int=101)),
            (UUID(int=2), UUID(int=102)),
        ]

    def test_bank_lines_visited_by_date(self):
        """The earlier statement line claims the shared row first."""
        engine = MatchingEngine(MatchingConfig(date_tolerance_days=5))

        matches = engine.match(
            [
                bank_tx(1, "80.00", day=D + timedelta(days=2)),
                bank_tx(2, "80.00", day=D),
            ],
            [book_row(101, debit="80.00", day=D + timedelta(days=2))],
        )

        assert [m.bank_transaction_id for m in matches] == [UUID(int=2)]

    def test_non_unmatched_lines_ignored(self):
        """Matched and disputed statement lines are left alone."""
        engine = MatchingEngine(MatchingConfig())

        matches = engine.match(
            [
                bank_tx(1, "10.00", status=BankTransactionStatus.DISPUTED),
                bank_tx(2, "10.00", status=BankTransactionStatus.MATCHED),
            ],
            [book_row(101, debit="10.00")],
        )

        assert matches == []

    def test_same_inputs_same_pairs(self):
        """Input order does not change the result."""
        engine = MatchingEngine(MatchingConfig())
        transactions = [bank_tx(n, "10.00", day=D + timedelta(days=n % 3)) for n in range(1, 6)]
        rows = [book_row(100 + n, debit="10.00", day=D + timedelta(days=n % 2)) for n in range(1, 6)]

        forward = engine.match(transactions, rows)
        backward = engine.match(list(reversed(transactions)), list(reversed(rows)))

        assert [(m.bank_transaction_id, m.ledger_entry_id) for m in forward] == [
            (m.bank_transaction_id, m.ledger_entry_id) for m in backward
        ]

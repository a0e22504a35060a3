"""
LedgerCore - Bank Reconciliation Tests

Unit tests for the reconciliation workflow: start, match, adjust, complete.
"""

import pytest
from datetime import date
from decimal import Decimal

from ledger_core.models.bank_reconciliation import (
    BankTransactionStatus,
    BankTransactionType,
    BookItemStatus,
    MatchType,
    ReconciliationStatus,
)
from ledger_core.schemas.bank_reconciliation import (
    AdjustmentCreate,
    BankTransactionCreate,
    ReconciliationCreate,
)
from ledger_core.services.account_registry import AccountRegistry
from ledger_core.services.bank_reconciliation_service import BankReconciliationService
from ledger_core.services.journal_engine import JournalEngine
from ledger_core.utils.error_handling import (
    InvalidOperationException,
    ReferencedByReconciliationException,
    UnresolvedDiscrepancyException,
)


def statement_line(amount, day, tx_type=BankTransactionType.CREDIT):
    return BankTransactionCreate(transaction_date=day, amount=Decimal(amount), transaction_type=tx_type)


async def start(db_session, organization_id, account_id, statement_balance, transactions, day=date(2026, 3, 31)):
    service = BankReconciliationService(db_session)
    return await service.start_reconciliation(
        organization_id,
        ReconciliationCreate(
            account_id=account_id,
            reconciliation_date=day,
            statement_balance=Decimal(statement_balance),
            transactions=transactions,
        ),
    )


class TestReconciliationWorkflow:
    """Test cases for a full reconciliation."""

    @pytest.mark.asyncio
    async def test_deposit_matched_and_completed(
        self, db_session, organization_id, cash_account, revenue_account, post_entry,
    ):
        """A 250.00 deposit on D matches a 250.00 book debit on D+1 and completes."""
        await post_entry(cash_account.id, revenue_account.id, "250.00", entry_date=date(2026, 3, 11))
        reconciliation = await start(
            db_session, organization_id, cash_account.id, "250.00", [statement_line("250.00", date(2026, 3, 10))]
        )
        assert reconciliation.status == ReconciliationStatus.IN_PROGRESS
        assert len(reconciliation.book_items) == 1

        service = BankReconciliationService(db_session)
        result = await service.auto_match(organization_id, reconciliation.id)

        assert result.matched_count == 1
        assert result.discrepancy_amount == Decimal("0.00")
        assert result.unmatched_bank_count == 0
        assert result.unmatched_book_count == 0

        completed = await service.complete(organization_id, reconciliation.id)

        assert completed.status == ReconciliationStatus.COMPLETED
        assert completed.completed_at is not None
        assert completed.ending_balance == Decimal("250.00")
        assert all(tx.status == BankTransactionStatus.VERIFIED for tx in completed.transactions)

    @pytest.mark.asyncio
    async def test_deposit_booked_after_statement_date_matches(
        self, db_session, organization_id, cash_account, revenue_account, post_entry,
    ):
        """A deposit on the statement date pairs with a book debit dated the next day."""
        await post_entry(cash_account.id, revenue_account.id, "250.00", entry_date=date(2026, 4, 1))
        reconciliation = await start(
            db_session, organization_id, cash_account.id, "250.00", [statement_line("250.00", date(2026, 3, 31))]
        )
        assert len(reconciliation.book_items) == 1

        service = BankReconciliationService(db_session)
        result = await service.auto_match(organization_id, reconciliation.id)

        assert result.matched_count == 1
        assert result.discrepancy_amount == Decimal("0.00")

        completed = await service.complete(organization_id, reconciliation.id)
        assert completed.status == ReconciliationStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_detail_lists_pairs_and_unmatched(
        self, db_session, organization_id, cash_account, revenue_account, post_entry,
    ):
        """The detail view splits matched pairs from both unmatched sets."""
        await post_entry(cash_account.id, revenue_account.id, "250.00", entry_date=date(2026, 3, 11))
        await post_entry(cash_account.id, revenue_account.id, "75.00", entry_date=date(2026, 3, 20))
        reconciliation = await start(
            db_session, organization_id, cash_account.id, "300.00",
            [statement_line("250.00", date(2026, 3, 10)), statement_line("50.00", date(2026, 3, 25))],
        )
        service = BankReconciliationService(db_session)
        await service.auto_match(organization_id, reconciliation.id)

        detail = await service.get_detail(organization_id, reconciliation.id)

        assert len(detail.matched_pairs) == 1
        assert detail.matched_pairs[0].amount == Decimal("250.00")
        assert detail.matched_pairs[0].match_type == MatchType.AUTO
        assert [tx.amount for tx in detail.unmatched_bank_transactions] == [Decimal("50.00")]
        assert [row.debit_amount for row in detail.unmatched_book_entries] == [Decimal("75.00")]
        assert detail.discrepancy_amount == Decimal("50.00")
        assert detail.unmatched_book_amount == Decimal("75.00")
        assert detail.status == ReconciliationStatus.DISCREPANCY

    @pytest.mark.asyncio
    async def test_complete_with_discrepancy_fails(
        self, db_session, organization_id, cash_account, revenue_account, post_entry,
    ):
        """Completion is refused while the discrepancy is not zero."""
        await post_entry(cash_account.id, revenue_account.id, "250.00", entry_date=date(2026, 3, 11))
        reconciliation = await start(
            db_session, organization_id, cash_account.id, "300.00", [statement_line("250.00", date(2026, 3, 10))]
        )
        reconciliation_id = reconciliation.id
        service = BankReconciliationService(db_session)
        await service.auto_match(organization_id, reconciliation_id)

        with pytest.raises(UnresolvedDiscrepancyException):
            await service.complete(organization_id, reconciliation_id)

        reloaded = await service.get_reconciliation(organization_id, reconciliation_id)
        assert reloaded.status == ReconciliationStatus.DISCREPANCY
        assert reloaded.discrepancy_amount == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_adjustment_clears_bank_charge(
        self, db_session, organization_id, cash_account, revenue_account, expense_account, post_entry,
    ):
        """A bank charge missing from the books is posted as an adjustment."""
        cash_id = cash_account.id
        await post_entry(cash_id, revenue_account.id, "250.00", entry_date=date(2026, 3, 11))
        reconciliation = await start(
            db_session, organization_id, cash_id, "240.00",
            [
                statement_line("250.00", date(2026, 3, 10)),
                statement_line("10.00", date(2026, 3, 31), tx_type=BankTransactionType.DEBIT),
            ],
        )
        service = BankReconciliationService(db_session)
        result = await service.auto_match(organization_id, reconciliation.id)
        assert result.discrepancy_amount == Decimal("-10.00")

        adjusted = await service.create_adjustment_entry(
            organization_id,
            reconciliation.id,
            AdjustmentCreate(offset_account_id=expense_account.id, description="Monthly bank charge"),
        )

        assert adjusted.adjustment_amount == Decimal("-10.00")
        assert adjusted.discrepancy_amount == Decimal("0.00")
        detail = await service.get_detail(organization_id, reconciliation.id)
        assert len(detail.adjustment_entry_ids) == 1

        completed = await service.complete(organization_id, reconciliation.id)
        assert completed.status == ReconciliationStatus.COMPLETED

        cash = await AccountRegistry(db_session).get_account(organization_id, cash_id)
        assert cash.current_balance == Decimal("240.00")

    @pytest.mark.asyncio
    async def test_adjustment_without_discrepancy_fails(
        self, db_session, organization_id, cash_account, revenue_account, expense_account, post_entry,
    ):
        """There is nothing to adjust when the statement already agrees."""
        expense_id = expense_account.id
        await post_entry(cash_account.id, revenue_account.id, "250.00", entry_date=date(2026, 3, 11))
        reconciliation = await start(
            db_session, organization_id, cash_account.id, "250.00", [statement_line("250.00", date(2026, 3, 10))]
        )
        reconciliation_id = reconciliation.id
        service = BankReconciliationService(db_session)
        await service.auto_match(organization_id, reconciliation_id)

        with pytest.raises(InvalidOperationException):
            await service.create_adjustment_entry(
                organization_id, reconciliation_id, AdjustmentCreate(offset_account_id=expense_id)
            )

    @pytest.mark.asyncio
    async def test_next_reconciliation_carries_forward(
        self, db_session, organization_id, cash_account, revenue_account, post_entry,
    ):
        """The next period starts from the last statement balance and skips settled rows."""
        cash_id, revenue_id = cash_account.id, revenue_account.id
        await post_entry(cash_id, revenue_id, "250.00", entry_date=date(2026, 3, 11))
        await post_entry(cash_id, revenue_id, "40.00", entry_date=date(2026, 3, 30))
        march = await start(
            db_session, organization_id, cash_id, "250.00", [statement_line("250.00", date(2026, 3, 10))]
        )
        service = BankReconciliationService(db_session)
        await service.auto_match(organization_id, march.id)
        await service.complete(organization_id, march.id)

        april = await start(
            db_session, organization_id, cash_id, "290.00",
            [statement_line("40.00", date(2026, 4, 2))],
            day=date(2026, 4, 30),
        )

        assert april.starting_balance == Decimal("250.00")
        assert len(april.book_items) == 1

        result = await service.auto_match(organization_id, april.id)
        assert result.matched_count == 1
        assert result.discrepancy_amount == Decimal("0.00")


class TestReconciliationRules:
    """Test cases for state rules around reconciliations."""

    @pytest.mark.asyncio
    async def test_one_open_reconciliation_per_account(self, db_session, organization_id, cash_account):
        """A second open reconciliation for the same account is refused."""
        cash_id = cash_account.id
        await start(db_session, organization_id, cash_id, "0.00", [])

        with pytest.raises(InvalidOperationException):
            await start(db_session, organization_id, cash_id, "0.00", [], day=date(2026, 4, 30))

    @pytest.mark.asyncio
    async def test_manual_match_and_unmatch(
        self, db_session, organization_id, cash_account, revenue_account, post_entry,
    ):
        """Lines outside the window can be matched by hand and undone."""
        await post_entry(cash_account.id, revenue_account.id, "100.00", entry_date=date(2026, 3, 1))
        reconciliation = await start(
            db_session, organization_id, cash_account.id, "100.00", [statement_line("100.00", date(2026, 3, 20))]
        )
        bank_tx_id = reconciliation.transactions[0].id
        ledger_entry_id = reconciliation.book_items[0].ledger_entry_id
        service = BankReconciliationService(db_session)

        result = await service.auto_match(organization_id, reconciliation.id)
        assert result.matched_count == 0

        matched = await service.manual_match(organization_id, reconciliation.id, bank_tx_id, ledger_entry_id)
        tx = matched.transactions[0]
        assert tx.status == BankTransactionStatus.MATCHED
        assert tx.match_type == MatchType.MANUAL
        assert matched.book_items[0].status == BookItemStatus.MATCHED
        assert matched.discrepancy_amount == Decimal("0.00")

        unmatched = await service.unmatch(organization_id, reconciliation.id, bank_tx_id)
        assert unmatched.transactions[0].status == BankTransactionStatus.UNMATCHED
        assert unmatched.book_items[0].status == BookItemStatus.UNMATCHED
        assert unmatched.discrepancy_amount == Decimal("100.00")
        assert unmatched.status == ReconciliationStatus.DISCREPANCY

    @pytest.mark.asyncio
    async def test_disputed_line_skipped_by_auto_match(
        self, db_session, organization_id, cash_account, revenue_account, post_entry,
    ):
        """A disputed statement line is not auto-matched until it is released."""
        await post_entry(cash_account.id, revenue_account.id, "60.00", entry_date=date(2026, 3, 5))
        reconciliation = await start(
            db_session, organization_id, cash_account.id, "60.00", [statement_line("60.00", date(2026, 3, 5))]
        )
        bank_tx_id = reconciliation.transactions[0].id
        service = BankReconciliationService(db_session)

        disputed = await service.dispute_transaction(
            organization_id, reconciliation.id, bank_tx_id, note="Unknown payer"
        )
        assert disputed.transactions[0].status == BankTransactionStatus.DISPUTED
        assert disputed.transactions[0].dispute_note == "Unknown payer"

        result = await service.auto_match(organization_id, reconciliation.id)
        assert result.matched_count == 0

        await service.unmatch(organization_id, reconciliation.id, bank_tx_id)
        result = await service.auto_match(organization_id, reconciliation.id)
        assert result.matched_count == 1

    @pytest.mark.asyncio
    async def test_reverse_blocked_while_matched(
        self, db_session, organization_id, cash_account, revenue_account, post_entry,
    ):
        """A journal entry matched in an open reconciliation cannot be reversed."""
        entry = await post_entry(cash_account.id, revenue_account.id, "250.00", entry_date=date(2026, 3, 11))
        entry_id = entry.id
        reconciliation = await start(
            db_session, organization_id, cash_account.id, "250.00", [statement_line("250.00", date(2026, 3, 10))]
        )
        await BankReconciliationService(db_session).auto_match(organization_id, reconciliation.id)

        with pytest.raises(ReferencedByReconciliationException):
            await JournalEngine(db_session).reverse(organization_id, entry_id, reason="Wrong customer")

    @pytest.mark.asyncio
    async def test_reversed_entries_not_auto_matched(
        self, db_session, organization_id, cash_account, revenue_account, post_entry,
    ):
        """Neither a reversed entry nor its reversal is offered to the matcher."""
        entry = await post_entry(cash_account.id, revenue_account.id, "250.00", entry_date=date(2026, 3, 11))
        await JournalEngine(db_session).reverse(
            organization_id, entry.id, reason="Posted in error", reversal_date=date(2026, 3, 12)
        )
        reconciliation = await start(
            db_session, organization_id, cash_account.id, "250.00", [statement_line("250.00", date(2026, 3, 10))]
        )

        result = await BankReconciliationService(db_session).auto_match(organization_id, reconciliation.id)

        assert result.matched_count == 0
        assert result.unmatched_book_count == 2

    @pytest.mark.asyncio
    async def test_completed_reconciliation_is_frozen(
        self, db_session, organization_id, cash_account, revenue_account, post_entry,
    ):
        """No changes are accepted after completion."""
        await post_entry(cash_account.id, revenue_account.id, "250.00", entry_date=date(2026, 3, 11))
        reconciliation = await start(
            db_session, organization_id, cash_account.id, "250.00", [statement_line("250.00", date(2026, 3, 10))]
        )
        reconciliation_id = reconciliation.id
        service = BankReconciliationService(db_session)
        await service.auto_match(organization_id, reconciliation_id)
        await service.complete(organization_id, reconciliation_id)

        with pytest.raises(InvalidOperationException):
            await service.import_transactions(
                organization_id, reconciliation_id, [statement_line("5.00", date(2026, 3, 31))]
            )

"""
LedgerCore - Concurrent Posting Tests

Posts from separate sessions racing on one organization.
"""

import asyncio
import pytest
from datetime import date
from decimal import Decimal

from ledger_core.schemas.accounting import JournalEntryCreate, JournalEntryLineCreate
from ledger_core.services.account_registry import AccountRegistry
from ledger_core.services.general_ledger import GeneralLedger
from ledger_core.services.journal_engine import JournalEngine


async def _draft(session, organization_id, debit_account_id, credit_account_id, amount):
    entry = await JournalEngine(session).create_entry(
        organization_id,
        JournalEntryCreate(
            entry_date=date(2026, 1, 15),
            description=f"Concurrent {amount}",
            lines=[
                JournalEntryLineCreate(account_id=debit_account_id, debit_amount=Decimal(amount)),
                JournalEntryLineCreate(account_id=credit_account_id, credit_amount=Decimal(amount)),
            ],
        ),
    )
    await session.commit()
    return entry.id


class TestConcurrentPosting:
    """Test cases for serialized posting."""

    @pytest.mark.asyncio
    async def test_parallel_posts_get_gapless_numbers(
        self, session_factory, organization_id, cash_account, revenue_account,
    ):
        """Two posts at once take consecutive numbers and both land in the balance."""
        cash_id, revenue_id = cash_account.id, revenue_account.id

        async with session_factory() as first, session_factory() as second:
            first_id = await _draft(first, organization_id, cash_id, revenue_id, "100.00")
            second_id = await _draft(second, organization_id, cash_id, revenue_id, "40.00")

            posted = await asyncio.gather(
                JournalEngine(first).post(organization_id, first_id),
                JournalEngine(second).post(organization_id, second_id),
            )

        assert sorted(entry.entry_number for entry in posted) == ["JE-000001", "JE-000002"]
        assert sorted(entry.entry_sequence for entry in posted) == [1, 2]

        async with session_factory() as session:
            cash = await AccountRegistry(session).get_account(organization_id, cash_id)
            ledger = GeneralLedger(session)

            assert cash.current_balance == Decimal("140.00")
            assert await ledger.current_sequence(organization_id) == 2
            assert await ledger.balance_drift(organization_id) == []

    @pytest.mark.asyncio
    async def test_many_parallel_posts(self, session_factory, organization_id, cash_account, revenue_account):
        """Sequences stay gapless across a burst of posts."""
        cash_id, revenue_id = cash_account.id, revenue_account.id
        sessions = [session_factory() for _ in range(5)]
        try:
            entry_ids = [
                await _draft(session, organization_id, cash_id, revenue_id, f"{n}.00")
                for n, session in enumerate(sessions, start=1)
            ]
            posted = await asyncio.gather(*[
                JournalEngine(session).post(organization_id, entry_id)
                for session, entry_id in zip(sessions, entry_ids)
            ])
        finally:
            for session in sessions:
                await session.close()

        assert sorted(entry.entry_sequence for entry in posted) == [1, 2, 3, 4, 5]

        async with session_factory() as session:
            cash = await AccountRegistry(session).get_account(organization_id, cash_id)
            assert cash.current_balance == Decimal("15.00")

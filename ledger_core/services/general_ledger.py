"""
LedgerCore - General Ledger Service

Read side of the append-only general ledger plus the append path the
journal engine uses while it holds the posting lock.

Reads are pinned to a snapshot: the highest entry sequence committed when
the read began. Passing the same snapshot_sequence back reproduces the
same rows even after later postings.
"""

import logging
import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import AsyncIterator, Dict, List, Optional, Tuple

from sqlalchemy import Select, select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_core.config import get_settings
from ledger_core.models.accounting import (
    Account,
    AccountType,
    GeneralLedgerEntry,
    JournalEntry,
    JournalEntryLine,
    LedgerSequence,
    signed_balance,
)
from ledger_core.services.ledger_integrity import LedgerIntegrityMonitor
from ledger_core.utils.error_handling import AccountNotFoundException, LedgerIntegrityException

logger = logging.getLogger(__name__)

JOURNAL_SEQUENCE = "journal_entry"

ZERO = Decimal("0.00")


def _money(value) -> Decimal:
    """Aggregate results come back as float on some backends."""
    return Decimal(str(value)).quantize(ZERO)


class LedgerCursor:
    """
    Lazy, restartable iteration over ledger rows in canonical order.

    Rows are fetched in pages using a keyset on
    (entry_date, entry_sequence, line_number). Each ``async for`` starts
    again from the first row. Every yielded row carries ``ledger_balance``,
    the account balance after that row in this order, starting from
    ``opening_balance``.
    """

    def __init__(
        self,
        db: AsyncSession,
        query: Select,
        snapshot_sequence: int,
        page_size: int,
        account_type: AccountType,
        opening_balance: Decimal = ZERO,
    ):
        self.db = db
        self.query = query
        self.snapshot_sequence = snapshot_sequence
        self.page_size = page_size
        self.account_type = account_type
        self.opening_balance = opening_balance

    def __aiter__(self) -> AsyncIterator[GeneralLedgerEntry]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[GeneralLedgerEntry]:
        last: Optional[GeneralLedgerEntry] = None
        balance = self.opening_balance
        while True:
            query = self.query
            if last is not None:
                query = query.where(
                    or_(
                        GeneralLedgerEntry.entry_date > last.entry_date,
                        and_(
                            GeneralLedgerEntry.entry_date == last.entry_date,
                            GeneralLedgerEntry.entry_sequence > last.entry_sequence,
                        ),
                        and_(
                            GeneralLedgerEntry.entry_date == last.entry_date,
                            GeneralLedgerEntry.entry_sequence == last.entry_sequence,
                            GeneralLedgerEntry.line_number > last.line_number,
                        ),
                    )
                )
            result = await self.db.execute(query.limit(self.page_size))
            rows = list(result.scalars().all())
            for row in rows:
                balance += signed_balance(self.account_type, row.debit_amount, row.credit_amount)
                row.ledger_balance = balance
                yield row
            if len(rows) < self.page_size:
                return
            last = rows[-1]

    async def to_list(self) -> List[GeneralLedgerEntry]:
        return [row async for row in self]


class GeneralLedger:
    """Service for general ledger reads and appends."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    # =========================================================================
    # APPEND (journal engine only)
    # =========================================================================

    def append(
        self,
        entry: JournalEntry,
        line: JournalEntryLine,
        running_balance: Decimal,
    ) -> GeneralLedgerEntry:
        """Stage one ledger row for a posted line. Caller flushes."""
        row = GeneralLedgerEntry(
            organization_id=entry.organization_id,
            account_id=line.account_id,
            journal_entry_id=entry.id,
            journal_entry_line_id=line.id,
            entry_date=entry.entry_date,
            entry_sequence=entry.entry_sequence,
            entry_number=entry.entry_number,
            line_number=line.line_number,
            description=line.description or entry.description,
            reference=line.reference or entry.reference,
            source_type=entry.source_type,
            source_id=entry.source_id,
            debit_amount=line.debit_amount,
            credit_amount=line.credit_amount,
            running_balance=running_balance,
        )
        self.db.add(row)
        return row

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    async def current_sequence(self, organization_id: uuid.UUID) -> int:
        """Highest entry sequence committed for the organization (0 if none)."""
        result = await self.db.execute(
            select(LedgerSequence.next_value).where(
                and_(
                    LedgerSequence.organization_id == organization_id,
                    LedgerSequence.name == JOURNAL_SEQUENCE,
                )
            )
        )
        next_value = result.scalar_one_or_none()
        return (next_value - 1) if next_value else 0

    async def resolve_snapshot(self, organization_id: uuid.UUID, snapshot_sequence: Optional[int]) -> int:
        if snapshot_sequence is not None:
            return snapshot_sequence
        return await self.current_sequence(organization_id)

    async def _account(self, organization_id: uuid.UUID, account_id: uuid.UUID) -> Account:
        result = await self.db.execute(
            select(Account).where(
                and_(Account.id == account_id, Account.organization_id == organization_id)
            )
        )
        account = result.scalar_one_or_none()
        if account is None:
            raise AccountNotFoundException(account_id)
        return account

    # =========================================================================
    # READS
    # =========================================================================

    async def entries_for_account(
        self,
        organization_id: uuid.UUID,
        account_id: uuid.UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        snapshot_sequence: Optional[int] = None,
    ) -> LedgerCursor:
        """Ledger rows of one account ordered by (date, entry number, line)."""
        account = await self._account(organization_id, account_id)
        snapshot = await self.resolve_snapshot(organization_id, snapshot_sequence)

        opening = ZERO
        if date_from:
            sums = await self.sums_by_account(
                organization_id, date_from - timedelta(days=1), snapshot, account_id=account.id
            )
            debit, credit = sums.get(account.id, (ZERO, ZERO))
            opening = signed_balance(account.account_type, debit, credit)

        query = select(GeneralLedgerEntry).where(
            and_(
                GeneralLedgerEntry.organization_id == organization_id,
                GeneralLedgerEntry.account_id == account_id,
                GeneralLedgerEntry.entry_sequence <= snapshot,
            )
        )
        if date_from:
            query = query.where(GeneralLedgerEntry.entry_date >= date_from)
        if date_to:
            query = query.where(GeneralLedgerEntry.entry_date <= date_to)
        query = query.order_by(
            GeneralLedgerEntry.entry_date,
            GeneralLedgerEntry.entry_sequence,
            GeneralLedgerEntry.line_number,
        )
        return LedgerCursor(
            self.db,
            query,
            snapshot,
            self.settings.ledger_page_size,
            account.account_type,
            opening,
        )

    async def sums_by_account(
        self,
        organization_id: uuid.UUID,
        as_of_date: Optional[date],
        snapshot_sequence: int,
        account_id: Optional[uuid.UUID] = None,
    ) -> Dict[uuid.UUID, Tuple[Decimal, Decimal]]:
        """Total debits and credits per account up to a date and snapshot."""
        query = (
            select(
                GeneralLedgerEntry.account_id,
                func.coalesce(func.sum(GeneralLedgerEntry.debit_amount), 0),
                func.coalesce(func.sum(GeneralLedgerEntry.credit_amount), 0),
            )
            .where(
                and_(
                    GeneralLedgerEntry.organization_id == organization_id,
                    GeneralLedgerEntry.entry_sequence <= snapshot_sequence,
                )
            )
            .group_by(GeneralLedgerEntry.account_id)
        )
        if as_of_date:
            query = query.where(GeneralLedgerEntry.entry_date <= as_of_date)
        if account_id:
            query = query.where(GeneralLedgerEntry.account_id == account_id)

        result = await self.db.execute(query)
        return {
            row[0]: (_money(row[1]), _money(row[2]))
            for row in result.all()
        }

    async def balance_as_of(
        self,
        organization_id: uuid.UUID,
        account_id: uuid.UUID,
        as_of_date: date,
        snapshot_sequence: Optional[int] = None,
    ) -> Decimal:
        """
        Balance of an account at the end of as_of_date, in its normal-side sign.

        Summed over rows in canonical order rather than read from the stored
        running_balance, which reflects posting order and so differs for
        back-dated entries. Zero when the account has no rows yet.
        """
        account = await self._account(organization_id, account_id)
        snapshot = await self.resolve_snapshot(organization_id, snapshot_sequence)
        sums = await self.sums_by_account(organization_id, as_of_date, snapshot, account_id=account.id)
        debit, credit = sums.get(account.id, (ZERO, ZERO))
        return signed_balance(account.account_type, debit, credit)

    async def account_ledger(
        self,
        organization_id: uuid.UUID,
        account_id: uuid.UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        snapshot_sequence: Optional[int] = None,
    ) -> dict:
        """T-account view: opening balance, rows in range, closing balance."""
        account = await self._account(organization_id, account_id)
        snapshot = await self.resolve_snapshot(organization_id, snapshot_sequence)

        cursor = await self.entries_for_account(organization_id, account_id, date_from, date_to, snapshot)
        rows = await cursor.to_list()

        opening = cursor.opening_balance
        closing = rows[-1].ledger_balance if rows else opening

        return {
            "account_id": account.id,
            "account_code": account.code,
            "account_name": account.name,
            "date_from": date_from,
            "date_to": date_to,
            "opening_balance": opening,
            "closing_balance": closing,
            "snapshot_sequence": snapshot,
            "entries": rows,
        }

    async def list_entries(
        self,
        organization_id: uuid.UUID,
        account_id: Optional[uuid.UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        source_type: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
        snapshot_sequence: Optional[int] = None,
    ) -> Tuple[List[GeneralLedgerEntry], int, int]:
        """Cross-account ledger listing. Returns (rows, total, snapshot)."""
        snapshot = await self.resolve_snapshot(organization_id, snapshot_sequence)
        query = select(GeneralLedgerEntry).where(
            and_(
                GeneralLedgerEntry.organization_id == organization_id,
                GeneralLedgerEntry.entry_sequence <= snapshot,
            )
        )
        if account_id:
            query = query.where(GeneralLedgerEntry.account_id == account_id)
        if date_from:
            query = query.where(GeneralLedgerEntry.entry_date >= date_from)
        if date_to:
            query = query.where(GeneralLedgerEntry.entry_date <= date_to)
        if source_type:
            query = query.where(GeneralLedgerEntry.source_type == source_type)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    GeneralLedgerEntry.description.ilike(pattern),
                    GeneralLedgerEntry.reference.ilike(pattern),
                    GeneralLedgerEntry.entry_number.ilike(pattern),
                )
            )

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(
            GeneralLedgerEntry.entry_date,
            GeneralLedgerEntry.entry_sequence,
            GeneralLedgerEntry.line_number,
        ).limit(page_size).offset((page - 1) * page_size)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total, snapshot

    # =========================================================================
    # INTEGRITY
    # =========================================================================

    async def balance_drift(self, organization_id: uuid.UUID) -> List[dict]:
        """Accounts whose cached balances disagree with their ledger rows."""
        snapshot = await self.current_sequence(organization_id)
        sums = await self.sums_by_account(organization_id, None, snapshot)

        result = await self.db.execute(
            select(Account)
            .where(Account.organization_id == organization_id)
            .execution_options(populate_existing=True)
        )
        drift = []
        for account in result.scalars().all():
            debit, credit = sums.get(account.id, (ZERO, ZERO))
            expected = signed_balance(account.account_type, debit, credit)
            if (
                account.debit_balance != debit
                or account.credit_balance != credit
                or account.current_balance != expected
            ):
                drift.append({
                    "account_id": str(account.id),
                    "account_code": account.code,
                    "cached_balance": str(account.current_balance),
                    "ledger_balance": str(expected),
                })
        return drift

    async def verify_account_balances(self, organization_id: uuid.UUID) -> None:
        """Raise LedgerIntegrityException if any cached balance drifted."""
        drift = await self.balance_drift(organization_id)
        if drift:
            message = f"{len(drift)} account balance(s) disagree with the general ledger"
            await LedgerIntegrityMonitor(self.db).record(
                organization_id, "balance_drift", message, {"accounts": drift}
            )
            raise LedgerIntegrityException(message, organization_id=organization_id, details={"accounts": drift})


def get_general_ledger(db: AsyncSession) -> GeneralLedger:
    """Factory function for dependency injection."""
    return GeneralLedger(db)

"""
LedgerCore - Bank Reconciliation Service

Service for reconciling an account against a bank statement.
Features:
- Reconciliation start with the book-side candidate set
- Statement line import
- Deterministic auto-matching and manual overrides
- Disputes and adjustment entries
- Summary recomputation and completion

Amounts are signed as debit minus credit on the reconciled account, so a
statement CREDIT (deposit) pairs with a book debit. Writers on one account
are serialized by the reconciliation lock keyed by account id; the journal
engine takes the same lock before reversing an entry.
"""

import logging
import uuid
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select, and_, desc
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_core.models.accounting import (
    GeneralLedgerEntry,
    JournalEntry,
    JournalEntryStatus,
    JournalEntryType,
)
from ledger_core.models.bank_reconciliation import (
    OPEN_RECONCILIATION_STATUSES,
    BankReconciliation,
    BankTransaction,
    BankTransactionStatus,
    BookItemStatus,
    MatchType,
    ReconciliationBookItem,
    ReconciliationStatus,
)
from ledger_core.models.base import utcnow
from ledger_core.schemas.accounting import (
    GeneralLedgerEntryResponse,
    JournalEntryCreate,
    JournalEntryLineCreate,
)
from ledger_core.schemas.bank_reconciliation import (
    AdjustmentCreate,
    AutoMatchResult,
    BankTransactionCreate,
    BankTransactionResponse,
    MatchedPair,
    ReconciliationCreate,
    ReconciliationDetail,
    ReconciliationResponse,
)
from ledger_core.services.account_registry import AccountRegistry
from ledger_core.services.general_ledger import GeneralLedger
from ledger_core.services.journal_engine import JournalEngine
from ledger_core.services.ledger_locks import KeyedLockRegistry, reconciliation_locks
from ledger_core.services.matching_engine import MatchingConfig, MatchingEngine
from ledger_core.utils.error_handling import (
    InvalidOperationException,
    JournalEntryNotFoundException,
    NotFoundException,
    ReconciliationNotFoundException,
    UnresolvedDiscrepancyException,
    ValidationException,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

ADJUSTMENT_SOURCE = "bank_reconciliation"

MATCHED_BANK_STATUSES = (BankTransactionStatus.MATCHED, BankTransactionStatus.VERIFIED)


class BankReconciliationService:
    """Service for bank reconciliation operations."""

    def __init__(
        self,
        db: AsyncSession,
        locks: Optional[KeyedLockRegistry] = None,
        matching_config: Optional[MatchingConfig] = None,
    ):
        self.db = db
        self.registry = AccountRegistry(db)
        self.ledger = GeneralLedger(db)
        self.locks = locks or reconciliation_locks
        self.matching_config = matching_config

    # ===========================================
    # LOOKUPS
    # ===========================================

    async def get_reconciliation(
        self,
        organization_id: uuid.UUID,
        reconciliation_id: uuid.UUID,
        for_update: bool = False,
    ) -> BankReconciliation:
        """Get a reconciliation with its statement lines and book items."""
        query = select(BankReconciliation).where(
            and_(
                BankReconciliation.id == reconciliation_id,
                BankReconciliation.organization_id == organization_id,
            )
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        reconciliation = result.scalar_one_or_none()
        if reconciliation is None:
            raise ReconciliationNotFoundException(reconciliation_id)
        return reconciliation

    async def list_reconciliations(
        self,
        organization_id: uuid.UUID,
        account_id: Optional[uuid.UUID] = None,
        status: Optional[ReconciliationStatus] = None,
    ) -> List[BankReconciliation]:
        """List reconciliations, latest statement date first."""
        query = select(BankReconciliation).where(BankReconciliation.organization_id == organization_id)
        if account_id:
            query = query.where(BankReconciliation.account_id == account_id)
        if status:
            query = query.where(BankReconciliation.status == status)
        result = await self.db.execute(query.order_by(desc(BankReconciliation.reconciliation_date)))
        return list(result.scalars().all())

    @staticmethod
    def _require_open(reconciliation: BankReconciliation) -> None:
        if not reconciliation.is_open:
            raise InvalidOperationException(
                f"Reconciliation {reconciliation.id} is {reconciliation.status.value} and can no longer change",
            )

    @staticmethod
    def _find_transaction(reconciliation: BankReconciliation, bank_transaction_id: uuid.UUID) -> BankTransaction:
        for transaction in reconciliation.transactions:
            if transaction.id == bank_transaction_id:
                return transaction
        raise NotFoundException("BankTransaction", bank_transaction_id)

    @staticmethod
    def _new_transaction(organization_id: uuid.UUID, data: BankTransactionCreate) -> BankTransaction:
        return BankTransaction(
            organization_id=organization_id,
            transaction_date=data.transaction_date,
            amount=data.amount,
            transaction_type=data.transaction_type,
            description=data.description,
            bank_reference=data.bank_reference,
            check_number=data.check_number,
            counterparty=data.counterparty,
            status=BankTransactionStatus.UNMATCHED,
        )

    async def _load_rows(self, ledger_entry_ids) -> Dict[uuid.UUID, GeneralLedgerEntry]:
        ids = list(ledger_entry_ids)
        if not ids:
            return {}
        result = await self.db.execute(
            select(GeneralLedgerEntry).where(GeneralLedgerEntry.id.in_(ids))
        )
        return {row.id: row for row in result.scalars().all()}

    # ===========================================
    # BOOK-SIDE CANDIDATES
    # ===========================================

    async def _book_candidates(
        self,
        organization_id: uuid.UUID,
        account_id: uuid.UUID,
    ) -> List[GeneralLedgerEntry]:
        """
        Ledger rows of the account not yet settled by a completed reconciliation.

        Rows dated after the statement date are included so a deposit booked
        a day or two late can still be matched.
        """
        settled = (
            select(ReconciliationBookItem.id)
            .join(BankReconciliation, BankReconciliation.id == ReconciliationBookItem.reconciliation_id)
            .where(
                and_(
                    ReconciliationBookItem.ledger_entry_id == GeneralLedgerEntry.id,
                    ReconciliationBookItem.status.in_([BookItemStatus.MATCHED, BookItemStatus.ADJUSTMENT]),
                    BankReconciliation.status == ReconciliationStatus.COMPLETED,
                )
            )
        )
        result = await self.db.execute(
            select(GeneralLedgerEntry)
            .where(
                and_(
                    GeneralLedgerEntry.organization_id == organization_id,
                    GeneralLedgerEntry.account_id == account_id,
                    ~settled.exists(),
                )
            )
            .order_by(
                GeneralLedgerEntry.entry_date,
                GeneralLedgerEntry.entry_sequence,
                GeneralLedgerEntry.line_number,
            )
        )
        return list(result.scalars().all())

    async def _sync_book_items(self, reconciliation: BankReconciliation) -> int:
        """Add rows posted since the reconciliation started. Returns how many."""
        known = {item.ledger_entry_id for item in reconciliation.book_items}
        candidates = await self._book_candidates(
            reconciliation.organization_id,
            reconciliation.account_id,
        )
        added = 0
        for row in candidates:
            if row.id in known:
                continue
            reconciliation.book_items.append(ReconciliationBookItem(
                ledger_entry_id=row.id,
                journal_entry_id=row.journal_entry_id,
                status=BookItemStatus.UNMATCHED,
            ))
            added += 1
        return added

    async def _matchable_rows(
        self,
        reconciliation: BankReconciliation,
    ) -> List[GeneralLedgerEntry]:
        """Unmatched book rows, leaving out reversed entries and their reversals."""
        item_ids = [
            item.ledger_entry_id for item in reconciliation.book_items
            if item.status == BookItemStatus.UNMATCHED
        ]
        if not item_ids:
            return []
        result = await self.db.execute(
            select(GeneralLedgerEntry)
            .join(JournalEntry, JournalEntry.id == GeneralLedgerEntry.journal_entry_id)
            .where(
                and_(
                    GeneralLedgerEntry.id.in_(item_ids),
                    JournalEntry.status == JournalEntryStatus.POSTED,
                    JournalEntry.reverses_entry_id.is_(None),
                )
            )
        )
        return list(result.scalars().all())

    # ===========================================
    # SUMMARY
    # ===========================================

    async def _recompute(self, reconciliation: BankReconciliation, update_status: bool = True) -> None:
        """
        Refresh the computed balances.

        discrepancy = statement_balance - (starting_balance + reconciled + adjustments)
        """
        reconciled = sum(
            (tx.signed_amount for tx in reconciliation.transactions if tx.status in MATCHED_BANK_STATUSES),
            ZERO,
        )

        rows = await self._load_rows(item.ledger_entry_id for item in reconciliation.book_items)
        adjustments = ZERO
        unmatched_book = ZERO
        for item in reconciliation.book_items:
            row = rows.get(item.ledger_entry_id)
            if row is None:
                continue
            if item.status == BookItemStatus.ADJUSTMENT:
                adjustments += row.bank_amount
            elif item.status == BookItemStatus.UNMATCHED:
                unmatched_book += row.bank_amount

        snapshot = await self.ledger.current_sequence(reconciliation.organization_id)
        sums = await self.ledger.sums_by_account(
            reconciliation.organization_id,
            reconciliation.reconciliation_date,
            snapshot,
            account_id=reconciliation.account_id,
        )
        debit, credit = sums.get(reconciliation.account_id, (ZERO, ZERO))

        reconciliation.reconciled_amount = reconciled
        reconciliation.adjustment_amount = adjustments
        reconciliation.unmatched_book_amount = unmatched_book
        reconciliation.ending_balance = debit - credit
        reconciliation.discrepancy_amount = reconciliation.statement_balance - (
            reconciliation.starting_balance + reconciled + adjustments
        )

        if update_status:
            if reconciliation.discrepancy_amount != 0:
                reconciliation.status = ReconciliationStatus.DISCREPANCY
            else:
                reconciliation.status = ReconciliationStatus.IN_PROGRESS

    async def recompute_summary(
        self,
        organization_id: uuid.UUID,
        reconciliation_id: uuid.UUID,
    ) -> BankReconciliation:
        """Recompute balances and status. Completed reconciliations are returned untouched."""
        reconciliation = await self.get_reconciliation(organization_id, reconciliation_id)
        if not reconciliation.is_open:
            return reconciliation

        async with self.locks.hold(reconciliation.account_id):
            try:
                reconciliation = await self.get_reconciliation(organization_id, reconciliation_id, for_update=True)
                self._require_open(reconciliation)
                await self._sync_book_items(reconciliation)
                await self._recompute(reconciliation)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
        return reconciliation

    # ===========================================
    # START AND IMPORT
    # ===========================================

    async def start_reconciliation(
        self,
        organization_id: uuid.UUID,
        data: ReconciliationCreate,
        user_id: Optional[uuid.UUID] = None,
    ) -> BankReconciliation:
        """
        Start reconciling an account against a statement.

        The record starts IN_PROGRESS with every ledger row of the account that
        no completed reconciliation has settled.
        """
        account = await self.registry.get_account(organization_id, data.account_id)

        async with self.locks.hold(account.id):
            try:
                open_result = await self.db.execute(
                    select(BankReconciliation.id).where(
                        and_(
                            BankReconciliation.account_id == account.id,
                            BankReconciliation.status.in_(OPEN_RECONCILIATION_STATUSES),
                        )
                    )
                )
                open_id = open_result.scalars().first()
                if open_id is not None:
                    raise InvalidOperationException(
                        f"Account {account.code} already has an open reconciliation",
                        details={"reconciliation_id": str(open_id)},
                    )

                dated = await self.db.execute(
                    select(BankReconciliation.id).where(
                        and_(
                            BankReconciliation.account_id == account.id,
                            BankReconciliation.reconciliation_date == data.reconciliation_date,
                        )
                    )
                )
                if dated.scalars().first() is not None:
                    raise ValidationException(
                        f"Account {account.code} is already reconciled for {data.reconciliation_date}",
                        field="reconciliation_date",
                    )

                starting_balance = data.starting_balance
                if starting_balance is None:
                    previous = await self.db.execute(
                        select(BankReconciliation.statement_balance)
                        .where(
                            and_(
                                BankReconciliation.account_id == account.id,
                                BankReconciliation.status == ReconciliationStatus.COMPLETED,
                            )
                        )
                        .order_by(desc(BankReconciliation.reconciliation_date))
                        .limit(1)
                    )
                    starting_balance = previous.scalar_one_or_none() or ZERO

                reconciliation = BankReconciliation(
                    organization_id=organization_id,
                    account_id=account.id,
                    period_start=data.period_start,
                    reconciliation_date=data.reconciliation_date,
                    starting_balance=starting_balance,
                    statement_balance=data.statement_balance,
                    status=ReconciliationStatus.IN_PROGRESS,
                    notes=data.notes,
                    created_by_id=user_id,
                )
                reconciliation.transactions = [
                    self._new_transaction(organization_id, tx) for tx in data.transactions
                ]
                reconciliation.book_items = []
                self.db.add(reconciliation)

                await self._sync_book_items(reconciliation)
                await self._recompute(reconciliation, update_status=False)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(
            f"Started reconciliation {reconciliation.id} for account {account.code} "
            f"as of {reconciliation.reconciliation_date} "
            f"({len(reconciliation.transactions)} bank, {len(reconciliation.book_items)} book items)"
        )
        return reconciliation

    async def import_transactions(
        self,
        organization_id: uuid.UUID,
        reconciliation_id: uuid.UUID,
        transactions: List[BankTransactionCreate],
    ) -> BankReconciliation:
        """Append statement lines to an open reconciliation."""
        reconciliation = await self.get_reconciliation(organization_id, reconciliation_id)

        async with self.locks.hold(reconciliation.account_id):
            try:
                reconciliation = await self.get_reconciliation(organization_id, reconciliation_id, for_update=True)
                self._require_open(reconciliation)
                for tx in transactions:
                    reconciliation.transactions.append(self._new_transaction(organization_id, tx))
                await self.db.flush()
                await self._recompute(reconciliation)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
        return reconciliation

    # ===========================================
    # MATCHING
    # ===========================================

    async def auto_match(
        self,
        organization_id: uuid.UUID,
        reconciliation_id: uuid.UUID,
    ) -> AutoMatchResult:
        """Run the matching engine over the unmatched lines of both sides."""
        reconciliation = await self.get_reconciliation(organization_id, reconciliation_id)

        async with self.locks.hold(reconciliation.account_id):
            try:
                reconciliation = await self.get_reconciliation(organization_id, reconciliation_id, for_update=True)
                self._require_open(reconciliation)
                await self._sync_book_items(reconciliation)
                await self.db.flush()

                rows = await self._matchable_rows(reconciliation)
                engine = MatchingEngine(self.matching_config)
                candidates = engine.match(reconciliation.transactions, rows)

                items = {item.ledger_entry_id: item for item in reconciliation.book_items}
                transactions = {tx.id: tx for tx in reconciliation.transactions}
                matched_at = utcnow()
                for candidate in candidates:
                    tx = transactions[candidate.bank_transaction_id]
                    tx.status = BankTransactionStatus.MATCHED
                    tx.match_type = MatchType.AUTO
                    tx.matched_ledger_entry_id = candidate.ledger_entry_id
                    tx.matched_journal_entry_id = candidate.journal_entry_id
                    tx.matched_at = matched_at

                    item = items[candidate.ledger_entry_id]
                    item.status = BookItemStatus.MATCHED
                    item.bank_transaction_id = tx.id

                await self._recompute(reconciliation)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(f"Auto-matched {len(candidates)} transaction(s) in reconciliation {reconciliation.id}")

        return AutoMatchResult(
            reconciliation_id=reconciliation.id,
            matched_count=len(candidates),
            matches=[
                MatchedPair(
                    bank_transaction_id=c.bank_transaction_id,
                    ledger_entry_id=c.ledger_entry_id,
                    journal_entry_id=c.journal_entry_id,
                    amount=c.amount,
                    match_type=MatchType.AUTO,
                )
                for c in candidates
            ],
            unmatched_bank_count=sum(
                1 for tx in reconciliation.transactions if tx.status == BankTransactionStatus.UNMATCHED
            ),
            unmatched_book_count=sum(
                1 for item in reconciliation.book_items if item.status == BookItemStatus.UNMATCHED
            ),
            discrepancy_amount=reconciliation.discrepancy_amount,
            status=reconciliation.status,
        )

    async def manual_match(
        self,
        organization_id: uuid.UUID,
        reconciliation_id: uuid.UUID,
        bank_transaction_id: uuid.UUID,
        ledger_entry_id: uuid.UUID,
    ) -> BankReconciliation:
        """
        Pair a statement line with a ledger row chosen by the user.

        Amounts and dates may differ; the difference shows up in the
        discrepancy.
        """
        reconciliation = await self.get_reconciliation(organization_id, reconciliation_id)

        async with self.locks.hold(reconciliation.account_id):
            try:
                reconciliation = await self.get_reconciliation(organization_id, reconciliation_id, for_update=True)
                self._require_open(reconciliation)

                tx = self._find_transaction(reconciliation, bank_transaction_id)
                if tx.status != BankTransactionStatus.UNMATCHED:
                    raise InvalidOperationException(
                        f"Bank transaction is {tx.status.value}; unmatch it first",
                        details={"bank_transaction_id": str(tx.id)},
                    )

                items = {item.ledger_entry_id: item for item in reconciliation.book_items}
                if ledger_entry_id not in items:
                    await self._sync_book_items(reconciliation)
                    await self.db.flush()
                    items = {item.ledger_entry_id: item for item in reconciliation.book_items}
                item = items.get(ledger_entry_id)
                if item is None:
                    raise ValidationException(
                        "Ledger entry is not a candidate for this reconciliation",
                        field="ledger_entry_id",
                        details={"ledger_entry_id": str(ledger_entry_id)},
                    )
                if item.status != BookItemStatus.UNMATCHED:
                    raise InvalidOperationException(
                        f"Ledger entry is already {item.status.value} in this reconciliation",
                        details={"ledger_entry_id": str(ledger_entry_id)},
                    )

                entry_result = await self.db.execute(
                    select(JournalEntry.status).where(JournalEntry.id == item.journal_entry_id)
                )
                if entry_result.scalar_one() == JournalEntryStatus.REVERSED:
                    raise InvalidOperationException("Cannot match a ledger entry whose journal entry was reversed")

                tx.status = BankTransactionStatus.MATCHED
                tx.match_type = MatchType.MANUAL
                tx.matched_ledger_entry_id = item.ledger_entry_id
                tx.matched_journal_entry_id = item.journal_entry_id
                tx.matched_at = utcnow()
                item.status = BookItemStatus.MATCHED
                item.bank_transaction_id = tx.id

                await self._recompute(reconciliation)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
        return reconciliation

    async def unmatch(
        self,
        organization_id: uuid.UUID,
        reconciliation_id: uuid.UUID,
        bank_transaction_id: uuid.UUID,
    ) -> BankReconciliation:
        """Return a matched or disputed statement line to UNMATCHED."""
        reconciliation = await self.get_reconciliation(organization_id, reconciliation_id)

        async with self.locks.hold(reconciliation.account_id):
            try:
                reconciliation = await self.get_reconciliation(organization_id, reconciliation_id, for_update=True)
                self._require_open(reconciliation)

                tx = self._find_transaction(reconciliation, bank_transaction_id)
                if tx.status not in (BankTransactionStatus.MATCHED, BankTransactionStatus.DISPUTED):
                    raise InvalidOperationException(f"Bank transaction is {tx.status.value}; nothing to unmatch")

                for item in reconciliation.book_items:
                    if item.bank_transaction_id == tx.id:
                        item.status = BookItemStatus.UNMATCHED
                        item.bank_transaction_id = None

                tx.status = BankTransactionStatus.UNMATCHED
                tx.match_type = None
                tx.matched_ledger_entry_id = None
                tx.matched_journal_entry_id = None
                tx.matched_at = None
                tx.dispute_note = None

                await self._recompute(reconciliation)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
        return reconciliation

    async def dispute_transaction(
        self,
        organization_id: uuid.UUID,
        reconciliation_id: uuid.UUID,
        bank_transaction_id: uuid.UUID,
        note: Optional[str] = None,
    ) -> BankReconciliation:
        """Flag an unmatched statement line as disputed with the bank."""
        reconciliation = await self.get_reconciliation(organization_id, reconciliation_id)

        async with self.locks.hold(reconciliation.account_id):
            try:
                reconciliation = await self.get_reconciliation(organization_id, reconciliation_id, for_update=True)
                self._require_open(reconciliation)

                tx = self._find_transaction(reconciliation, bank_transaction_id)
                if tx.status != BankTransactionStatus.UNMATCHED:
                    raise InvalidOperationException(
                        f"Only unmatched bank transactions can be disputed; transaction is {tx.status.value}",
                    )
                tx.status = BankTransactionStatus.DISPUTED
                tx.dispute_note = note

                await self._recompute(reconciliation)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
        return reconciliation

    # ===========================================
    # ADJUSTMENTS
    # ===========================================

    async def attach_adjustment_entry(
        self,
        organization_id: uuid.UUID,
        reconciliation_id: uuid.UUID,
        journal_entry_id: uuid.UUID,
    ) -> BankReconciliation:
        """Count a posted entry's rows on the reconciled account as adjustments."""
        reconciliation = await self.get_reconciliation(organization_id, reconciliation_id)

        async with self.locks.hold(reconciliation.account_id):
            try:
                reconciliation = await self.get_reconciliation(organization_id, reconciliation_id, for_update=True)
                self._require_open(reconciliation)

                entry_result = await self.db.execute(
                    select(JournalEntry).where(
                        and_(
                            JournalEntry.id == journal_entry_id,
                            JournalEntry.organization_id == organization_id,
                        )
                    )
                )
                entry = entry_result.scalar_one_or_none()
                if entry is None:
                    raise JournalEntryNotFoundException(journal_entry_id)
                if entry.status != JournalEntryStatus.POSTED:
                    raise InvalidOperationException(
                        f"Only posted entries can be attached as adjustments; entry is {entry.status.value}",
                    )
                if entry.reconciliation_id is not None and entry.reconciliation_id != reconciliation.id:
                    raise InvalidOperationException(
                        "Journal entry is already attached to another reconciliation",
                        details={"reconciliation_id": str(entry.reconciliation_id)},
                    )

                rows_result = await self.db.execute(
                    select(GeneralLedgerEntry).where(
                        and_(
                            GeneralLedgerEntry.journal_entry_id == entry.id,
                            GeneralLedgerEntry.account_id == reconciliation.account_id,
                        )
                    )
                )
                rows = list(rows_result.scalars().all())
                if not rows:
                    raise ValidationException(
                        "Journal entry does not post to the reconciled account",
                        field="journal_entry_id",
                    )

                items = {item.ledger_entry_id: item for item in reconciliation.book_items}
                for row in rows:
                    item = items.get(row.id)
                    if item is None:
                        reconciliation.book_items.append(ReconciliationBookItem(
                            ledger_entry_id=row.id,
                            journal_entry_id=entry.id,
                            status=BookItemStatus.ADJUSTMENT,
                        ))
                    elif item.status == BookItemStatus.MATCHED:
                        raise InvalidOperationException(
                            "A matched ledger entry cannot also be an adjustment; unmatch it first",
                        )
                    else:
                        item.status = BookItemStatus.ADJUSTMENT

                entry.reconciliation_id = reconciliation.id
                await self.db.flush()
                await self._recompute(reconciliation)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(f"Attached adjustment entry {entry.entry_number} to reconciliation {reconciliation.id}")
        return reconciliation

    async def create_adjustment_entry(
        self,
        organization_id: uuid.UUID,
        reconciliation_id: uuid.UUID,
        data: AdjustmentCreate,
        user_id: Optional[uuid.UUID] = None,
    ) -> BankReconciliation:
        """
        Post an ADJUSTING entry for the current discrepancy and attach it.

        A positive discrepancy (bank higher than books) debits the reconciled
        account; a negative one credits it. The offset account takes the
        other side.
        """
        reconciliation = await self.recompute_summary(organization_id, reconciliation_id)
        self._require_open(reconciliation)

        discrepancy = reconciliation.discrepancy_amount
        if discrepancy == 0:
            raise InvalidOperationException("Reconciliation has no discrepancy to adjust")

        amount = abs(discrepancy)
        account_line = JournalEntryLineCreate(
            account_id=reconciliation.account_id,
            description="Bank reconciliation adjustment",
            debit_amount=amount if discrepancy > 0 else ZERO,
            credit_amount=ZERO if discrepancy > 0 else amount,
        )
        offset_line = JournalEntryLineCreate(
            account_id=data.offset_account_id,
            description="Bank reconciliation adjustment",
            debit_amount=ZERO if discrepancy > 0 else amount,
            credit_amount=amount if discrepancy > 0 else ZERO,
        )

        # Posting takes the posting lock, so it runs before the reconciliation lock
        engine = JournalEngine(self.db, account_locks=self.locks)
        entry = await engine.create_and_post(
            organization_id,
            JournalEntryCreate(
                entry_date=data.entry_date or reconciliation.reconciliation_date,
                entry_type=JournalEntryType.ADJUSTING,
                description=data.description or f"Reconciliation adjustment as of {reconciliation.reconciliation_date}",
                source_type=ADJUSTMENT_SOURCE,
                source_id=str(reconciliation.id),
                lines=[account_line, offset_line],
            ),
            user_id,
        )
        return await self.attach_adjustment_entry(organization_id, reconciliation_id, entry.id)

    # ===========================================
    # COMPLETION
    # ===========================================

    async def complete(
        self,
        organization_id: uuid.UUID,
        reconciliation_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
    ) -> BankReconciliation:
        """
        Close the reconciliation.

        Fails with UnresolvedDiscrepancyException unless the discrepancy,
        after attached adjustments, is zero. Matched lines become VERIFIED.
        """
        reconciliation = await self.get_reconciliation(organization_id, reconciliation_id)

        async with self.locks.hold(reconciliation.account_id):
            try:
                reconciliation = await self.get_reconciliation(organization_id, reconciliation_id, for_update=True)
                self._require_open(reconciliation)
                await self._sync_book_items(reconciliation)
                await self.db.flush()
                await self._recompute(reconciliation)

                if reconciliation.discrepancy_amount != 0:
                    logger.warning(
                        f"Reconciliation {reconciliation.id} cannot complete: "
                        f"discrepancy {reconciliation.discrepancy_amount}"
                    )
                    raise UnresolvedDiscrepancyException(reconciliation.id, reconciliation.discrepancy_amount)

                for tx in reconciliation.transactions:
                    if tx.status == BankTransactionStatus.MATCHED:
                        tx.status = BankTransactionStatus.VERIFIED

                reconciliation.status = ReconciliationStatus.COMPLETED
                reconciliation.completed_at = utcnow()
                reconciliation.updated_by_id = user_id
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(f"Completed reconciliation {reconciliation.id} as of {reconciliation.reconciliation_date}")
        return reconciliation

    # ===========================================
    # DETAIL VIEW
    # ===========================================

    async def get_detail(
        self,
        organization_id: uuid.UUID,
        reconciliation_id: uuid.UUID,
    ) -> ReconciliationDetail:
        """Reconciliation with matched pairs and both unmatched sets."""
        reconciliation = await self.get_reconciliation(organization_id, reconciliation_id)

        matched_pairs = []
        unmatched_bank = []
        disputed = []
        for tx in reconciliation.transactions:
            if tx.status in MATCHED_BANK_STATUSES:
                matched_pairs.append(MatchedPair(
                    bank_transaction_id=tx.id,
                    ledger_entry_id=tx.matched_ledger_entry_id,
                    journal_entry_id=tx.matched_journal_entry_id,
                    amount=tx.signed_amount,
                    match_type=tx.match_type,
                ))
            elif tx.status == BankTransactionStatus.DISPUTED:
                disputed.append(BankTransactionResponse.model_validate(tx))
            else:
                unmatched_bank.append(BankTransactionResponse.model_validate(tx))

        rows = await self._load_rows(
            item.ledger_entry_id for item in reconciliation.book_items
            if item.status == BookItemStatus.UNMATCHED
        )
        unmatched_book = sorted(
            rows.values(),
            key=lambda row: (row.entry_date, row.entry_sequence, row.line_number),
        )

        adjustment_entry_ids = []
        for item in reconciliation.book_items:
            if item.status == BookItemStatus.ADJUSTMENT and item.journal_entry_id not in adjustment_entry_ids:
                adjustment_entry_ids.append(item.journal_entry_id)

        return ReconciliationDetail(
            **ReconciliationResponse.model_validate(reconciliation).model_dump(),
            matched_pairs=matched_pairs,
            unmatched_bank_transactions=unmatched_bank,
            unmatched_book_entries=[GeneralLedgerEntryResponse.model_validate(row) for row in unmatched_book],
            disputed_bank_transactions=disputed,
            adjustment_entry_ids=adjustment_entry_ids,
        )


def get_bank_reconciliation_service(db: AsyncSession) -> BankReconciliationService:
    """Factory function for dependency injection."""
    return BankReconciliationService(db)

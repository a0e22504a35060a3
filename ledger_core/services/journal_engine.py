"""
LedgerCore - Journal Engine

Validates and posts balanced multi-line journal entries.

Entry lifecycle: DRAFT -> POSTED -> REVERSED. Posting assigns the next
gapless entry number for the organization, updates account balances and
appends general ledger rows, all inside one critical section per
organization. post() and reverse() commit their own transaction while the
posting lock is held; a failure rolls the whole session back.
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, func, and_, or_, desc, exists
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_core.config import get_settings
from ledger_core.models.accounting import (
    Account,
    JournalEntry,
    JournalEntryLine,
    JournalEntryStatus,
    JournalEntryType,
    LedgerSequence,
    NormalBalance,
)
from ledger_core.models.bank_reconciliation import (
    OPEN_RECONCILIATION_STATUSES,
    BankReconciliation,
    BookItemStatus,
    ReconciliationBookItem,
)
from ledger_core.models.base import utcnow
from ledger_core.schemas.accounting import (
    JournalEntryCreate,
    JournalEntryLineCreate,
    JournalEntryUpdate,
    JournalEntryValidation,
    OpeningBalanceRequest,
)
from ledger_core.services.account_registry import AccountRegistry
from ledger_core.services.general_ledger import GeneralLedger, JOURNAL_SEQUENCE
from ledger_core.services.ledger_locks import KeyedLockRegistry, posting_locks, reconciliation_locks
from ledger_core.utils.error_handling import (
    AlreadyPostedException,
    ErrorCode,
    InvalidOperationException,
    JournalEntryNotFoundException,
    NotFoundException,
    PostingNotAllowedException,
    ReferencedByReconciliationException,
    ValidationException,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

OPENING_BALANCE_SOURCE = "opening_balance"
REVERSAL_SOURCE = "journal_entry"


class JournalEngine:
    """Service for journal entry operations."""

    def __init__(
        self,
        db: AsyncSession,
        locks: Optional[KeyedLockRegistry] = None,
        account_locks: Optional[KeyedLockRegistry] = None,
    ):
        self.db = db
        self.registry = AccountRegistry(db)
        self.ledger = GeneralLedger(db)
        self.locks = locks or posting_locks
        self.account_locks = account_locks or reconciliation_locks
        self.settings = get_settings()

    # =========================================================================
    # HELPERS
    # =========================================================================

    @property
    def quantum(self) -> Decimal:
        return Decimal(1).scaleb(-self.settings.money_decimal_places)

    def format_entry_number(self, sequence: int) -> str:
        return f"{self.settings.entry_number_prefix}-{sequence:06d}"

    def _amount_errors(self, line_number: int, debit: Decimal, credit: Decimal) -> List[str]:
        errors = []
        if debit < 0 or credit < 0:
            errors.append(f"Line {line_number}: amounts cannot be negative")
        for amount in (debit, credit):
            if amount != amount.quantize(self.quantum):
                errors.append(
                    f"Line {line_number}: amount {amount} has more than "
                    f"{self.settings.money_decimal_places} decimal places"
                )
        return errors

    async def _build_lines(
        self,
        organization_id: uuid.UUID,
        lines: Sequence[JournalEntryLineCreate],
    ) -> List[JournalEntryLine]:
        """Turn line payloads into ORM lines, rejecting unusable amounts and foreign accounts."""
        built = []
        for number, line in enumerate(lines, start=1):
            errors = self._amount_errors(number, line.debit_amount, line.credit_amount)
            if errors:
                raise ValidationException(errors[0], field="lines", details={"errors": errors})
            await self.registry.get_account(organization_id, line.account_id)
            built.append(JournalEntryLine(
                account_id=line.account_id,
                line_number=number,
                description=line.description,
                reference=line.reference,
                debit_amount=line.debit_amount,
                credit_amount=line.credit_amount,
            ))
        return built

    @staticmethod
    def _totals(lines) -> Tuple[Decimal, Decimal]:
        debit_total = sum((Decimal(line.debit_amount or 0) for line in lines), ZERO)
        credit_total = sum((Decimal(line.credit_amount or 0) for line in lines), ZERO)
        return debit_total, credit_total

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_entry(
        self,
        organization_id: uuid.UUID,
        entry_id: uuid.UUID,
    ) -> JournalEntry:
        """Get journal entry by ID with lines."""
        result = await self.db.execute(
            select(JournalEntry)
            .where(
                and_(
                    JournalEntry.id == entry_id,
                    JournalEntry.organization_id == organization_id,
                )
            )
            .execution_options(populate_existing=True)
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise JournalEntryNotFoundException(entry_id)
        return entry

    async def _load_for_update(
        self,
        organization_id: uuid.UUID,
        entry_id: uuid.UUID,
    ) -> JournalEntry:
        result = await self.db.execute(
            select(JournalEntry)
            .where(
                and_(
                    JournalEntry.id == entry_id,
                    JournalEntry.organization_id == organization_id,
                )
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise JournalEntryNotFoundException(entry_id)
        return entry

    async def list_entries(
        self,
        organization_id: uuid.UUID,
        entry_type: Optional[JournalEntryType] = None,
        status: Optional[JournalEntryStatus] = None,
        account_id: Optional[uuid.UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        source_type: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Tuple[List[JournalEntry], int]:
        """Get journal entries with filtering, newest first."""
        query = select(JournalEntry).where(JournalEntry.organization_id == organization_id)

        if entry_type:
            query = query.where(JournalEntry.entry_type == entry_type)
        if status:
            query = query.where(JournalEntry.status == status)
        if account_id:
            query = query.where(
                exists().where(
                    and_(
                        JournalEntryLine.journal_entry_id == JournalEntry.id,
                        JournalEntryLine.account_id == account_id,
                    )
                )
            )
        if date_from:
            query = query.where(JournalEntry.entry_date >= date_from)
        if date_to:
            query = query.where(JournalEntry.entry_date <= date_to)
        if source_type:
            query = query.where(JournalEntry.source_type == source_type)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    JournalEntry.description.ilike(pattern),
                    JournalEntry.reference.ilike(pattern),
                    JournalEntry.entry_number.ilike(pattern),
                )
            )

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(
            desc(JournalEntry.entry_date),
            desc(JournalEntry.entry_sequence),
            desc(JournalEntry.created_at),
        ).limit(page_size).offset((page - 1) * page_size)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    # =========================================================================
    # DRAFTS
    # =========================================================================

    async def create_entry(
        self,
        organization_id: uuid.UUID,
        data: JournalEntryCreate,
        user_id: Optional[uuid.UUID] = None,
    ) -> JournalEntry:
        """Create a DRAFT journal entry. Nothing is posted."""
        lines = await self._build_lines(organization_id, data.lines)
        debit_total, credit_total = self._totals(lines)

        entry = JournalEntry(
            organization_id=organization_id,
            entry_date=data.entry_date,
            entry_type=data.entry_type,
            status=JournalEntryStatus.DRAFT,
            description=data.description,
            reference=data.reference,
            source_type=data.source_type,
            source_id=data.source_id,
            total_debit=debit_total,
            total_credit=credit_total,
            created_by_id=user_id,
        )
        entry.lines = lines
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def update_draft(
        self,
        organization_id: uuid.UUID,
        entry_id: uuid.UUID,
        data: JournalEntryUpdate,
        user_id: Optional[uuid.UUID] = None,
    ) -> JournalEntry:
        """Edit a DRAFT. Posted entries are immutable."""
        entry = await self.get_entry(organization_id, entry_id)
        if entry.status != JournalEntryStatus.DRAFT:
            raise InvalidOperationException(
                f"Only draft entries can be edited; entry is {entry.status.value}",
            )

        patch = data.model_dump(exclude_unset=True, exclude={"lines"})
        for field, value in patch.items():
            setattr(entry, field, value)

        if data.lines is not None:
            entry.lines = await self._build_lines(organization_id, data.lines)
            entry.total_debit, entry.total_credit = self._totals(entry.lines)

        entry.updated_by_id = user_id
        await self.db.flush()
        return entry

    async def delete_draft(
        self,
        organization_id: uuid.UUID,
        entry_id: uuid.UUID,
    ) -> None:
        """Delete a DRAFT entry."""
        entry = await self.get_entry(organization_id, entry_id)
        if entry.status != JournalEntryStatus.DRAFT:
            raise InvalidOperationException("Only draft entries can be deleted; reverse posted entries instead")
        await self.db.delete(entry)
        await self.db.flush()

    # =========================================================================
    # VALIDATION
    # =========================================================================

    async def validate_lines(
        self,
        organization_id: uuid.UUID,
        lines: Sequence,
        entry_date: Optional[date] = None,
        description: Optional[str] = None,
    ) -> JournalEntryValidation:
        """
        Check a set of lines without changing anything.

        Works on unsaved payload lines and on stored JournalEntryLine rows alike.
        """
        errors: List[str] = []
        warnings: List[str] = []

        if len(lines) < 2:
            errors.append("A journal entry needs at least two lines")

        eligibility: Dict[uuid.UUID, Optional[str]] = {}
        debit_accounts = set()
        credit_accounts = set()

        for number, line in enumerate(lines, start=1):
            debit = Decimal(line.debit_amount or 0)
            credit = Decimal(line.credit_amount or 0)
            errors.extend(self._amount_errors(number, debit, credit))
            if (debit != 0) == (credit != 0):
                errors.append(f"Line {number}: exactly one of debit or credit must be non-zero")

            if line.account_id not in eligibility:
                try:
                    await self.registry.resolve_for_posting(organization_id, line.account_id)
                    eligibility[line.account_id] = None
                except (NotFoundException, PostingNotAllowedException) as exc:
                    eligibility[line.account_id] = exc.message
            if eligibility[line.account_id]:
                errors.append(f"Line {number}: {eligibility[line.account_id]}")

            if debit > 0:
                debit_accounts.add(line.account_id)
            if credit > 0:
                credit_accounts.add(line.account_id)

        debit_total, credit_total = self._totals(lines)
        difference = debit_total - credit_total
        is_balanced = difference == 0
        if not is_balanced:
            errors.append(f"Entry is not balanced: debits {debit_total} != credits {credit_total}")

        if entry_date and entry_date > date.today():
            warnings.append("Entry date is in the future")
        if debit_accounts & credit_accounts:
            warnings.append("The same account is both debited and credited")
        if not description:
            warnings.append("Entry has no description")

        return JournalEntryValidation(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            is_balanced=is_balanced,
            debit_total=debit_total,
            credit_total=credit_total,
            difference=difference,
        )

    async def validate(
        self,
        organization_id: uuid.UUID,
        entry_id: uuid.UUID,
    ) -> JournalEntryValidation:
        """Validate a stored entry."""
        entry = await self.get_entry(organization_id, entry_id)
        return await self.validate_lines(organization_id, entry.lines, entry.entry_date, entry.description)

    # =========================================================================
    # POSTING
    # =========================================================================

    async def _next_sequence(self, organization_id: uuid.UUID) -> int:
        """Take the next entry sequence. Must run under the posting lock."""
        result = await self.db.execute(
            select(LedgerSequence)
            .where(
                and_(
                    LedgerSequence.organization_id == organization_id,
                    LedgerSequence.name == JOURNAL_SEQUENCE,
                )
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        sequence = result.scalar_one_or_none()
        if sequence is None:
            sequence = LedgerSequence(
                organization_id=organization_id,
                name=JOURNAL_SEQUENCE,
                next_value=1,
            )
            self.db.add(sequence)

        value = sequence.next_value
        sequence.next_value = value + 1
        return value

    async def _post_locked(self, entry: JournalEntry, user_id: Optional[uuid.UUID]) -> None:
        """Post a flushed DRAFT. Caller holds the organization posting lock."""
        organization_id = entry.organization_id

        for line in entry.lines:
            await self.registry.resolve_for_posting(organization_id, line.account_id)

        validation = await self.validate_lines(organization_id, entry.lines, entry.entry_date, entry.description)
        if not validation.is_valid:
            logger.warning(f"Rejected posting of journal entry {entry.id}: {validation.errors}")
            raise ValidationException(
                validation.errors[0],
                details=validation.model_dump(mode="json"),
                code=ErrorCode.VALIDATION_ERROR if validation.is_balanced else ErrorCode.UNBALANCED_ENTRY,
            )

        sequence = await self._next_sequence(organization_id)
        entry.entry_sequence = sequence
        entry.entry_number = self.format_entry_number(sequence)

        accounts = await self.registry.lock_accounts(
            organization_id, sorted({line.account_id for line in entry.lines}, key=str)
        )
        for line in entry.lines:
            account = accounts[line.account_id]
            running_balance = account.apply_posting(line.debit_amount, line.credit_amount)
            self.ledger.append(entry, line, running_balance)

        entry.total_debit = validation.debit_total
        entry.total_credit = validation.credit_total
        entry.status = JournalEntryStatus.POSTED
        entry.posted_at = utcnow()
        entry.updated_by_id = user_id
        await self.db.flush()

    async def post(
        self,
        organization_id: uuid.UUID,
        entry_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
    ) -> JournalEntry:
        """
        Post a DRAFT entry and commit.

        Raises AlreadyPostedException when the entry already left DRAFT.
        Not idempotent: check the entry status before retrying.
        """
        async with self.locks.hold(organization_id):
            try:
                entry = await self._load_for_update(organization_id, entry_id)
                if entry.status != JournalEntryStatus.DRAFT:
                    raise AlreadyPostedException(entry.id, entry.entry_number)
                await self._post_locked(entry, user_id)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(
            f"Posted journal entry {entry.entry_number} for organization {organization_id} "
            f"(debits {entry.total_debit}, credits {entry.total_credit})"
        )
        return entry

    async def create_and_post(
        self,
        organization_id: uuid.UUID,
        data: JournalEntryCreate,
        user_id: Optional[uuid.UUID] = None,
    ) -> JournalEntry:
        """Create a draft and post it straight away."""
        entry = await self.create_entry(organization_id, data, user_id)
        return await self.post(organization_id, entry.id, user_id)

    # =========================================================================
    # REVERSAL
    # =========================================================================

    async def _reconciliation_references(self, entry: JournalEntry) -> List[uuid.UUID]:
        result = await self.db.execute(
            select(ReconciliationBookItem.reconciliation_id)
            .join(BankReconciliation, BankReconciliation.id == ReconciliationBookItem.reconciliation_id)
            .where(
                and_(
                    ReconciliationBookItem.journal_entry_id == entry.id,
                    ReconciliationBookItem.status == BookItemStatus.MATCHED,
                    BankReconciliation.status.in_(OPEN_RECONCILIATION_STATUSES),
                )
            )
            .distinct()
        )
        return list(result.scalars().all())

    async def reverse(
        self,
        organization_id: uuid.UUID,
        entry_id: uuid.UUID,
        reason: str,
        reversal_date: Optional[date] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> JournalEntry:
        """
        Reverse a POSTED entry by posting a mirror entry.

        The original's lines are never touched; the two entries are linked
        through reversal_entry_id and reverses_entry_id. Returns the new
        reversing entry.
        """
        async with self.locks.hold(organization_id):
            try:
                original = await self._load_for_update(organization_id, entry_id)
                if original.status == JournalEntryStatus.DRAFT:
                    raise InvalidOperationException("Only posted entries can be reversed; entry is a draft")
                if original.status == JournalEntryStatus.REVERSED or original.reversal_entry_id:
                    raise InvalidOperationException(
                        f"Journal entry {original.entry_number} has already been reversed",
                        details={"reversal_entry_id": str(original.reversal_entry_id)},
                    )

                account_ids = {line.account_id for line in original.lines}
                async with self.account_locks.hold(*account_ids):
                    referenced = await self._reconciliation_references(original)
                    if referenced:
                        logger.warning(
                            f"Reversal of {original.entry_number} blocked by open reconciliation(s) {referenced}"
                        )
                        raise ReferencedByReconciliationException(original.id, referenced)

                    reversal = JournalEntry(
                        organization_id=organization_id,
                        entry_date=reversal_date or date.today(),
                        entry_type=JournalEntryType.REVERSING,
                        status=JournalEntryStatus.DRAFT,
                        description=f"Reversal of {original.entry_number}: {reason}",
                        reference=original.entry_number,
                        source_type=REVERSAL_SOURCE,
                        source_id=str(original.id),
                        reverses_entry_id=original.id,
                        created_by_id=user_id,
                    )
                    reversal.lines = [
                        JournalEntryLine(
                            account_id=line.account_id,
                            line_number=line.line_number,
                            description=line.description,
                            reference=line.reference,
                            debit_amount=line.credit_amount,
                            credit_amount=line.debit_amount,
                        )
                        for line in original.lines
                    ]
                    self.db.add(reversal)
                    await self.db.flush()
                    await self._post_locked(reversal, user_id)

                    original.status = JournalEntryStatus.REVERSED
                    original.reversal_entry_id = reversal.id
                    original.reversed_at = utcnow()
                    original.reversal_reason = reason
                    original.updated_by_id = user_id
                    await self.db.flush()
                    await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(
            f"Reversed journal entry {original.entry_number} with {reversal.entry_number} "
            f"for organization {organization_id}"
        )
        return reversal

    # =========================================================================
    # OPENING BALANCES
    # =========================================================================

    async def seed_opening_balances(
        self,
        organization_id: uuid.UUID,
        data: OpeningBalanceRequest,
        user_id: Optional[uuid.UUID] = None,
    ) -> JournalEntry:
        """
        Post one balanced opening entry.

        Each balance is in the account's normal-side sign; the offset account
        (usually an equity account) takes the net difference.
        """
        lines: List[JournalEntryLineCreate] = []
        for item in data.balances:
            if item.balance == 0:
                continue
            account: Account = await self.registry.get_account(organization_id, item.account_id)
            debit_side = (account.normal_balance == NormalBalance.DEBIT) == (item.balance > 0)
            amount = abs(item.balance)
            lines.append(JournalEntryLineCreate(
                account_id=account.id,
                description="Opening balance",
                debit_amount=amount if debit_side else ZERO,
                credit_amount=ZERO if debit_side else amount,
            ))

        if not lines:
            raise ValidationException("No non-zero opening balances were given", field="balances")

        debit_total, credit_total = self._totals(lines)
        net = debit_total - credit_total
        if net != 0:
            lines.append(JournalEntryLineCreate(
                account_id=data.offset_account_id,
                description="Opening balance offset",
                debit_amount=ZERO if net > 0 else -net,
                credit_amount=net if net > 0 else ZERO,
            ))

        entry = await self.create_and_post(
            organization_id,
            JournalEntryCreate(
                entry_date=data.entry_date,
                description=data.description,
                entry_type=JournalEntryType.STANDARD,
                source_type=OPENING_BALANCE_SOURCE,
                lines=lines,
            ),
            user_id,
        )
        return entry


def get_journal_engine(db: AsyncSession) -> JournalEngine:
    """Factory function for dependency injection."""
    return JournalEngine(db)

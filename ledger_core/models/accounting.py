"""
LedgerCore - Chart of Accounts & General Ledger Models

Double-entry accounting tables:
- Chart of Accounts (Assets, Liabilities, Equity, Revenue, Expenses)
- Journal Entries and their lines
- Append-only General Ledger rows
- Per-organization entry sequences and integrity incidents
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid,
    Enum as SQLEnum, UniqueConstraint, Index, CheckConstraint, event
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_core.models.base import BaseModel, AuditMixin
from ledger_core.utils.error_handling import LedgerIntegrityException


# =============================================================================
# ENUMS
# =============================================================================

class AccountType(str, Enum):
    """Main account types."""
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


class AccountSubType(str, Enum):
    """Sub-types for detailed classification."""
    # Asset sub-types
    CURRENT_ASSET = "current_asset"
    FIXED_ASSET = "fixed_asset"
    OTHER_ASSET = "other_asset"

    # Liability sub-types
    CURRENT_LIABILITY = "current_liability"
    LONG_TERM_LIABILITY = "long_term_liability"
    OTHER_LIABILITY = "other_liability"

    # Equity sub-types
    OWNERS_EQUITY = "owners_equity"
    RETAINED_EARNINGS = "retained_earnings"
    CAPITAL = "capital"

    # Revenue sub-types
    OPERATING_REVENUE = "operating_revenue"
    OTHER_REVENUE = "other_revenue"

    # Expense sub-types
    OPERATING_EXPENSE = "operating_expense"
    OTHER_EXPENSE = "other_expense"
    COST_OF_GOODS_SOLD = "cost_of_goods_sold"


ALLOWED_SUB_TYPES: Dict[AccountType, FrozenSet[AccountSubType]] = {
    AccountType.ASSET: frozenset({
        AccountSubType.CURRENT_ASSET,
        AccountSubType.FIXED_ASSET,
        AccountSubType.OTHER_ASSET,
    }),
    AccountType.LIABILITY: frozenset({
        AccountSubType.CURRENT_LIABILITY,
        AccountSubType.LONG_TERM_LIABILITY,
        AccountSubType.OTHER_LIABILITY,
    }),
    AccountType.EQUITY: frozenset({
        AccountSubType.OWNERS_EQUITY,
        AccountSubType.RETAINED_EARNINGS,
        AccountSubType.CAPITAL,
    }),
    AccountType.REVENUE: frozenset({
        AccountSubType.OPERATING_REVENUE,
        AccountSubType.OTHER_REVENUE,
    }),
    AccountType.EXPENSE: frozenset({
        AccountSubType.OPERATING_EXPENSE,
        AccountSubType.OTHER_EXPENSE,
        AccountSubType.COST_OF_GOODS_SOLD,
    }),
}


class NormalBalance(str, Enum):
    """Normal balance direction."""
    DEBIT = "debit"
    CREDIT = "credit"


class StatementType(str, Enum):
    """Financial statement an account rolls up into."""
    BALANCE_SHEET = "balance_sheet"
    INCOME_STATEMENT = "income_statement"


class AccountStatus(str, Enum):
    """Lifecycle status of an account."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class JournalEntryStatus(str, Enum):
    """Status of a journal entry."""
    DRAFT = "draft"
    POSTED = "posted"
    REVERSED = "reversed"


class JournalEntryType(str, Enum):
    """Kind of journal entry."""
    STANDARD = "standard"
    ADJUSTING = "adjusting"
    CLOSING = "closing"
    REVERSING = "reversing"


def normal_balance_for(account_type: AccountType) -> NormalBalance:
    """ASSET and EXPENSE are debit-normal; everything else is credit-normal."""
    if account_type in (AccountType.ASSET, AccountType.EXPENSE):
        return NormalBalance.DEBIT
    return NormalBalance.CREDIT


def statement_type_for(account_type: AccountType) -> StatementType:
    if account_type in (AccountType.REVENUE, AccountType.EXPENSE):
        return StatementType.INCOME_STATEMENT
    return StatementType.BALANCE_SHEET


def signed_balance(account_type: AccountType, debit: Decimal, credit: Decimal) -> Decimal:
    """Express debit minus credit in the account's normal-side sign."""
    if normal_balance_for(account_type) == NormalBalance.DEBIT:
        return debit - credit
    return credit - debit


# =============================================================================
# CHART OF ACCOUNTS
# =============================================================================

class Account(BaseModel, AuditMixin):
    """
    Chart of Accounts node.

    The tree is stored as parent_account_id lookups only; children are
    resolved by querying, never through embedded references.
    """

    __tablename__ = "accounts"

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True,
    )

    # Account Identification
    code: Mapped[str] = mapped_column(
        String(20), nullable=False,
        comment="Account code, unique per organization (e.g., 1000, 1100)",
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Classification
    account_type: Mapped[AccountType] = mapped_column(SQLEnum(AccountType), nullable=False)
    sub_type: Mapped[AccountSubType] = mapped_column(SQLEnum(AccountSubType), nullable=False)
    normal_balance: Mapped[NormalBalance] = mapped_column(SQLEnum(NormalBalance), nullable=False)
    statement_type: Mapped[StatementType] = mapped_column(SQLEnum(StatementType), nullable=False)
    status: Mapped[AccountStatus] = mapped_column(
        SQLEnum(AccountStatus), default=AccountStatus.ACTIVE, nullable=False,
    )

    # Hierarchy
    parent_account_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=True,
    )
    level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Posting Rules
    allow_transactions: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    require_sub_accounts: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Balance Tracking (written only by the journal engine)
    debit_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )
    credit_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )
    current_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
        comment="debit_balance - credit_balance in the normal-side sign",
    )

    __table_args__ = (
        UniqueConstraint('organization_id', 'code', name='uq_account_org_code'),
        Index('ix_account_org_type', 'organization_id', 'account_type'),
        Index('ix_account_org_parent', 'organization_id', 'parent_account_id'),
    )

    def apply_posting(self, debit: Decimal, credit: Decimal) -> Decimal:
        """Add one line's amounts and return the new current balance."""
        self.debit_balance = (self.debit_balance or Decimal("0")) + debit
        self.credit_balance = (self.credit_balance or Decimal("0")) + credit
        self.current_balance = signed_balance(self.account_type, self.debit_balance, self.credit_balance)
        return self.current_balance

    def __repr__(self) -> str:
        return f"<Account({self.code}: {self.name})>"


# =============================================================================
# ENTRY SEQUENCES
# =============================================================================

class LedgerSequence(BaseModel):
    """
    Per-organization counter for gapless entry numbering.

    The row is locked FOR UPDATE while an entry is posted, so the counter
    increments in the same transaction as the ledger rows it numbers.
    """

    __tablename__ = "ledger_sequences"

    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    next_value: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (
        UniqueConstraint('organization_id', 'name', name='uq_ledger_sequence_org_name'),
    )


# =============================================================================
# JOURNAL ENTRIES
# =============================================================================

class JournalEntry(BaseModel, AuditMixin):
    """
    Journal Entry - The core of double-entry accounting.

    Drafts carry no number. Posting assigns entry_sequence/entry_number and
    appends general ledger rows; after that only the reversal link changes.
    """

    __tablename__ = "journal_entries"

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True,
    )

    # Entry Identification (assigned at posting)
    entry_sequence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    entry_number: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True,
        comment="Human-readable entry number (e.g., JE-000001)",
    )
    entry_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    entry_type: Mapped[JournalEntryType] = mapped_column(
        SQLEnum(JournalEntryType), default=JournalEntryType.STANDARD, nullable=False,
    )
    status: Mapped[JournalEntryStatus] = mapped_column(
        SQLEnum(JournalEntryStatus), default=JournalEntryStatus.DRAFT, nullable=False,
    )

    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Source document (invoice, payment, manual, ...)
    source_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    source_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Totals (must always balance once posted)
    total_debit: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )
    total_credit: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )

    posted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Reversal tracking
    reversed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reversal_entry_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("journal_entries.id", ondelete="SET NULL"),
        nullable=True,
        comment="ID of the reversing entry",
    )
    reverses_entry_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("journal_entries.id", ondelete="SET NULL"),
        nullable=True,
        comment="ID of original entry (if this is a reversal)",
    )
    reversal_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Bank reconciliation adjustment link
    reconciliation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bank_reconciliations.id", ondelete="SET NULL"),
        nullable=True,
    )

    lines: Mapped[List["JournalEntryLine"]] = relationship(
        "JournalEntryLine",
        back_populates="journal_entry",
        cascade="all, delete-orphan",
        order_by="JournalEntryLine.line_number",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint('organization_id', 'entry_sequence', name='uq_journal_entry_org_sequence'),
        Index('ix_journal_entry_org_status', 'organization_id', 'status'),
        CheckConstraint('total_debit >= 0 AND total_credit >= 0', name='ck_journal_entry_totals'),
    )

    def __repr__(self) -> str:
        return f"<JournalEntry({self.entry_number or 'draft'}: {self.status})>"


class JournalEntryLine(BaseModel):
    """One debit or credit line of a journal entry."""

    __tablename__ = "journal_entry_lines"

    journal_entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("journal_entries.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    debit_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )
    credit_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )

    journal_entry: Mapped["JournalEntry"] = relationship("JournalEntry", back_populates="lines")

    __table_args__ = (
        CheckConstraint('debit_amount >= 0 AND credit_amount >= 0', name='ck_journal_line_amounts'),
    )


# =============================================================================
# GENERAL LEDGER
# =============================================================================

class GeneralLedgerEntry(BaseModel):
    """
    One posted journal line as seen by its account.

    Append-only: rows are written once by the journal engine and are
    guarded against UPDATE and DELETE at the ORM level.
    """

    __tablename__ = "general_ledger_entries"

    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    journal_entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("journal_entries.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    journal_entry_line_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("journal_entry_lines.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )

    # Canonical ordering key: (entry_date, entry_sequence, line_number)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    entry_sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    entry_number: Mapped[str] = mapped_column(String(50), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    source_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    source_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    debit_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )
    credit_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )
    running_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), nullable=False,
        comment="Account balance after this row, in posting order",
    )

    # Not stored. Set by LedgerCursor: the balance after this row in
    # canonical order, which differs from running_balance for back-dated rows.
    ledger_balance = None

    __table_args__ = (
        Index('ix_gl_org_account_order', 'organization_id', 'account_id', 'entry_date', 'entry_sequence', 'line_number'),
        Index('ix_gl_org_sequence', 'organization_id', 'entry_sequence'),
    )

    @property
    def bank_amount(self) -> Decimal:
        """Debit minus credit; a bank deposit is a positive amount."""
        return self.debit_amount - self.credit_amount


@event.listens_for(GeneralLedgerEntry, "before_update")
def _reject_ledger_update(mapper, connection, target):
    raise LedgerIntegrityException(
        "General ledger rows are append-only and cannot be updated",
        organization_id=target.organization_id,
        details={"ledger_entry_id": str(target.id)},
    )


@event.listens_for(GeneralLedgerEntry, "before_delete")
def _reject_ledger_delete(mapper, connection, target):
    raise LedgerIntegrityException(
        "General ledger rows are append-only and cannot be deleted",
        organization_id=target.organization_id,
        details={"ledger_entry_id": str(target.id)},
    )


# =============================================================================
# INTEGRITY INCIDENTS
# =============================================================================

class LedgerIntegrityIncident(BaseModel):
    """
    A detected ledger invariant violation.

    While an incident is unresolved, trial balance generation for the
    organization is refused.
    """

    __tablename__ = "ledger_integrity_incidents"

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True,
    )
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

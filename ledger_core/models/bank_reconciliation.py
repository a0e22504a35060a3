"""
LedgerCore - Bank Reconciliation Models

Statement lines imported from the bank, the reconciliation header for an
(account, statement date) pair, and the book-side candidate set the
matcher works against.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Date, DateTime, ForeignKey, Numeric, String, Text, Uuid,
    Enum as SQLEnum, UniqueConstraint, Index, CheckConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_core.models.base import BaseModel, AuditMixin


# =============================================================================
# ENUMS
# =============================================================================

class BankTransactionType(str, Enum):
    """Direction of a statement line, from the bank's point of view."""
    DEBIT = "debit"    # money out of the account
    CREDIT = "credit"  # money into the account


class BankTransactionStatus(str, Enum):
    """Matching status of a statement line."""
    UNMATCHED = "unmatched"
    MATCHED = "matched"
    VERIFIED = "verified"
    DISPUTED = "disputed"


class MatchType(str, Enum):
    """How a match was made."""
    AUTO = "auto"
    MANUAL = "manual"


class ReconciliationStatus(str, Enum):
    """Reconciliation workflow status."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DISCREPANCY = "discrepancy"


OPEN_RECONCILIATION_STATUSES = (
    ReconciliationStatus.PENDING,
    ReconciliationStatus.IN_PROGRESS,
    ReconciliationStatus.DISCREPANCY,
)


class BookItemStatus(str, Enum):
    """State of a ledger row inside one reconciliation."""
    UNMATCHED = "unmatched"
    MATCHED = "matched"
    ADJUSTMENT = "adjustment"


# =============================================================================
# BANK RECONCILIATION
# =============================================================================

class BankReconciliation(BaseModel, AuditMixin):
    """
    Reconciliation of one account against one bank statement.

    Balances are expressed as debit minus credit on the reconciled account,
    so a bank deposit (statement CREDIT) is positive.
    """

    __tablename__ = "bank_reconciliations"

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True,
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Statement period
    period_start: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    reconciliation_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Balances
    starting_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )
    statement_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), nullable=False,
    )
    ending_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
        comment="Book balance as of reconciliation_date",
    )
    reconciled_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )
    adjustment_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )
    unmatched_book_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )
    discrepancy_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False,
    )

    status: Mapped[ReconciliationStatus] = mapped_column(
        SQLEnum(ReconciliationStatus), default=ReconciliationStatus.PENDING, nullable=False,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    transactions: Mapped[List["BankTransaction"]] = relationship(
        "BankTransaction",
        back_populates="reconciliation",
        cascade="all, delete-orphan",
        order_by="BankTransaction.transaction_date",
        lazy="selectin",
    )
    book_items: Mapped[List["ReconciliationBookItem"]] = relationship(
        "ReconciliationBookItem",
        back_populates="reconciliation",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint('account_id', 'reconciliation_date', name='uq_reconciliation_account_date'),
        Index('ix_reconciliation_org_status', 'organization_id', 'status'),
    )

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_RECONCILIATION_STATUSES


class BankTransaction(BaseModel):
    """A single imported bank statement line."""

    __tablename__ = "bank_transactions"

    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    reconciliation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bank_reconciliations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=2), nullable=False)
    transaction_type: Mapped[BankTransactionType] = mapped_column(
        SQLEnum(BankTransactionType), nullable=False,
    )
    bank_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    check_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    counterparty: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Matching
    status: Mapped[BankTransactionStatus] = mapped_column(
        SQLEnum(BankTransactionStatus), default=BankTransactionStatus.UNMATCHED, nullable=False,
    )
    match_type: Mapped[Optional[MatchType]] = mapped_column(SQLEnum(MatchType), nullable=True)
    matched_ledger_entry_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("general_ledger_entries.id", ondelete="RESTRICT"),
        nullable=True,
    )
    matched_journal_entry_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("journal_entries.id", ondelete="RESTRICT"),
        nullable=True,
    )
    matched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    dispute_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    reconciliation: Mapped["BankReconciliation"] = relationship(
        "BankReconciliation", back_populates="transactions",
    )

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_bank_transaction_amount'),
    )

    @property
    def signed_amount(self) -> Decimal:
        """Deposits positive, withdrawals negative."""
        if self.transaction_type == BankTransactionType.CREDIT:
            return self.amount
        return -self.amount


class ReconciliationBookItem(BaseModel):
    """A general ledger row taking part in one reconciliation."""

    __tablename__ = "reconciliation_book_items"

    reconciliation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bank_reconciliations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ledger_entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("general_ledger_entries.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    journal_entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("journal_entries.id", ondelete="RESTRICT"),
        nullable=False,
    )
    status: Mapped[BookItemStatus] = mapped_column(
        SQLEnum(BookItemStatus), default=BookItemStatus.UNMATCHED, nullable=False,
    )
    bank_transaction_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bank_transactions.id", ondelete="SET NULL"),
        nullable=True,
    )

    reconciliation: Mapped["BankReconciliation"] = relationship(
        "BankReconciliation", back_populates="book_items",
    )

    __table_args__ = (
        UniqueConstraint('reconciliation_id', 'ledger_entry_id', name='uq_book_item_reconciliation_ledger'),
    )

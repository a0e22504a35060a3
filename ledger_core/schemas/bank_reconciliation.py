"""
LedgerCore - Bank Reconciliation Schemas

Pydantic schemas for statement imports, matching and reconciliation results.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict

from ledger_core.models.bank_reconciliation import (
    BankTransactionStatus,
    BankTransactionType,
    MatchType,
    ReconciliationStatus,
)
from ledger_core.schemas.accounting import GeneralLedgerEntryResponse


# =============================================================================
# BANK TRANSACTION SCHEMAS
# =============================================================================

class BankTransactionCreate(BaseModel):
    """One bank statement line to import."""
    transaction_date: date
    amount: Decimal = Field(..., gt=0)
    transaction_type: BankTransactionType
    description: Optional[str] = Field(None, max_length=500)
    bank_reference: Optional[str] = Field(None, max_length=100)
    check_number: Optional[str] = Field(None, max_length=50)
    counterparty: Optional[str] = Field(None, max_length=200)


class BankTransactionResponse(BaseModel):
    """Imported bank statement line."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    reconciliation_id: UUID
    transaction_date: date
    amount: Decimal
    transaction_type: BankTransactionType
    description: Optional[str] = None
    bank_reference: Optional[str] = None
    check_number: Optional[str] = None
    counterparty: Optional[str] = None
    status: BankTransactionStatus
    match_type: Optional[MatchType] = None
    matched_ledger_entry_id: Optional[UUID] = None
    matched_journal_entry_id: Optional[UUID] = None
    matched_at: Optional[datetime] = None
    dispute_note: Optional[str] = None


class BankTransactionImport(BaseModel):
    """A batch of statement lines added to an open reconciliation."""
    transactions: List[BankTransactionCreate] = Field(..., min_length=1)


# =============================================================================
# RECONCILIATION SCHEMAS
# =============================================================================

class ReconciliationCreate(BaseModel):
    """Start reconciling an account against a bank statement."""
    account_id: UUID
    reconciliation_date: date
    statement_balance: Decimal
    period_start: Optional[date] = None
    starting_balance: Optional[Decimal] = None
    notes: Optional[str] = None
    transactions: List[BankTransactionCreate] = Field(default_factory=list)


class MatchRequest(BaseModel):
    """Manually pair a statement line with a ledger row."""
    bank_transaction_id: UUID
    ledger_entry_id: UUID


class UnmatchRequest(BaseModel):
    """Undo the match of a statement line."""
    bank_transaction_id: UUID


class DisputeRequest(BaseModel):
    """Flag a statement line as disputed with the bank."""
    bank_transaction_id: UUID
    note: Optional[str] = None


class AdjustmentAttach(BaseModel):
    """Attach an already posted journal entry as an adjustment."""
    journal_entry_id: UUID


class AdjustmentCreate(BaseModel):
    """Post an adjustment for the current discrepancy against an offset account."""
    offset_account_id: UUID
    description: Optional[str] = Field(None, max_length=500)
    entry_date: Optional[date] = None


class MatchedPair(BaseModel):
    """A confirmed statement line to ledger row pairing."""
    bank_transaction_id: UUID
    ledger_entry_id: UUID
    journal_entry_id: Optional[UUID] = None
    amount: Decimal
    match_type: Optional[MatchType] = None


class ReconciliationResponse(BaseModel):
    """Reconciliation header with computed balances."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    account_id: UUID
    period_start: Optional[date] = None
    reconciliation_date: date
    starting_balance: Decimal
    statement_balance: Decimal
    ending_balance: Decimal
    reconciled_amount: Decimal
    adjustment_amount: Decimal
    unmatched_book_amount: Decimal
    discrepancy_amount: Decimal
    status: ReconciliationStatus
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ReconciliationDetail(ReconciliationResponse):
    """Reconciliation with the matched pair set and both unmatched sets."""
    matched_pairs: List[MatchedPair] = []
    unmatched_bank_transactions: List[BankTransactionResponse] = []
    unmatched_book_entries: List[GeneralLedgerEntryResponse] = []
    disputed_bank_transactions: List[BankTransactionResponse] = []
    adjustment_entry_ids: List[UUID] = []


class AutoMatchResult(BaseModel):
    """Outcome of one auto-match run."""
    reconciliation_id: UUID
    matched_count: int
    matches: List[MatchedPair]
    unmatched_bank_count: int
    unmatched_book_count: int
    discrepancy_amount: Decimal
    status: ReconciliationStatus

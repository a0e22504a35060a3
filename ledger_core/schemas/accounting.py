"""
LedgerCore - Accounting Schemas

Pydantic schemas for Chart of Accounts, Journal Entries, the General Ledger
and the Trial Balance.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, ConfigDict

from ledger_core.models.accounting import (
    AccountStatus,
    AccountSubType,
    AccountType,
    JournalEntryStatus,
    JournalEntryType,
    NormalBalance,
    StatementType,
)


# =============================================================================
# CHART OF ACCOUNTS SCHEMAS
# =============================================================================

class AccountBase(BaseModel):
    """Base schema for an account."""
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    account_type: AccountType
    sub_type: AccountSubType
    parent_account_id: Optional[UUID] = None
    allow_transactions: bool = True
    require_sub_accounts: bool = False


class AccountCreate(AccountBase):
    """Schema for creating a new account."""
    pass


class AccountUpdate(BaseModel):
    """Schema for updating an account. Only fields that are set are applied."""
    code: Optional[str] = Field(None, min_length=1, max_length=20)
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    account_type: Optional[AccountType] = None
    sub_type: Optional[AccountSubType] = None
    parent_account_id: Optional[UUID] = None
    status: Optional[AccountStatus] = None
    allow_transactions: Optional[bool] = None
    require_sub_accounts: Optional[bool] = None


class AccountResponse(AccountBase):
    """Schema for account response."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    normal_balance: NormalBalance
    statement_type: StatementType
    status: AccountStatus
    level: int
    debit_balance: Decimal
    credit_balance: Decimal
    current_balance: Decimal
    created_at: datetime
    updated_at: datetime


class AccountTreeNode(BaseModel):
    """One node of the chart of accounts hierarchy."""
    account: AccountResponse
    depth: int
    path: List[str]
    children: List["AccountTreeNode"] = []


AccountTreeNode.model_rebuild()


class AccountBalanceResponse(BaseModel):
    """Balance of one account as of a date."""
    account_id: UUID
    account_code: str
    as_of_date: date
    balance: Decimal
    snapshot_sequence: int


# =============================================================================
# JOURNAL ENTRY SCHEMAS
# =============================================================================

class JournalEntryLineBase(BaseModel):
    """Base schema for journal entry line."""
    account_id: UUID
    description: Optional[str] = None
    reference: Optional[str] = None
    debit_amount: Decimal = Decimal("0.00")
    credit_amount: Decimal = Decimal("0.00")

    @field_validator('debit_amount', 'credit_amount')
    @classmethod
    def validate_amounts(cls, v):
        if v < 0:
            raise ValueError('Amount cannot be negative')
        return v


class JournalEntryLineCreate(JournalEntryLineBase):
    """Schema for creating journal entry line."""
    pass


class JournalEntryLineResponse(JournalEntryLineBase):
    """Schema for journal entry line response."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    journal_entry_id: UUID
    line_number: int


class JournalEntryBase(BaseModel):
    """Base schema for journal entry."""
    entry_date: date
    description: Optional[str] = Field(None, max_length=500)
    reference: Optional[str] = Field(None, max_length=100)
    entry_type: JournalEntryType = JournalEntryType.STANDARD
    source_type: Optional[str] = Field(None, max_length=50)
    source_id: Optional[str] = Field(None, max_length=100)


class JournalEntryCreate(JournalEntryBase):
    """
    Schema for creating a draft journal entry.

    Balance is not enforced here; drafts may be saved unbalanced and are
    checked by validation before posting.
    """
    lines: List[JournalEntryLineCreate] = Field(default_factory=list)


class JournalEntryUpdate(BaseModel):
    """Schema for updating a journal entry (draft only)."""
    entry_date: Optional[date] = None
    description: Optional[str] = Field(None, max_length=500)
    reference: Optional[str] = Field(None, max_length=100)
    entry_type: Optional[JournalEntryType] = None
    lines: Optional[List[JournalEntryLineCreate]] = None


class JournalEntryValidateRequest(BaseModel):
    """Unsaved lines submitted for validation only."""
    entry_date: Optional[date] = None
    description: Optional[str] = None
    lines: List[JournalEntryLineCreate] = Field(default_factory=list)


class JournalEntryResponse(JournalEntryBase):
    """Schema for journal entry response."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    entry_number: Optional[str] = None
    entry_sequence: Optional[int] = None
    total_debit: Decimal
    total_credit: Decimal
    status: JournalEntryStatus
    posted_at: Optional[datetime] = None
    reversed_at: Optional[datetime] = None
    reversal_entry_id: Optional[UUID] = None
    reverses_entry_id: Optional[UUID] = None
    reversal_reason: Optional[str] = None
    reconciliation_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    lines: List[JournalEntryLineResponse] = []


class JournalEntryListResponse(BaseModel):
    """Paginated journal entries."""
    items: List[JournalEntryResponse]
    total: int
    page: int
    page_size: int


class JournalEntryReverse(BaseModel):
    """Schema for reversing a journal entry."""
    reason: str = Field(..., min_length=1, max_length=500)
    reversal_date: Optional[date] = None


class AccountingValidation(BaseModel):
    """Outcome of a validation pass."""
    is_valid: bool
    errors: List[str] = []
    warnings: List[str] = []


class JournalEntryValidation(AccountingValidation):
    """Validation outcome for a journal entry, with its totals."""
    is_balanced: bool
    debit_total: Decimal
    credit_total: Decimal
    difference: Decimal


class OpeningBalanceLine(BaseModel):
    """Opening balance for one account, in its normal-side sign."""
    account_id: UUID
    balance: Decimal


class OpeningBalanceRequest(BaseModel):
    """Seed opening balances through one balanced opening entry."""
    entry_date: date
    offset_account_id: UUID
    balances: List[OpeningBalanceLine] = Field(..., min_length=1)
    description: Optional[str] = "Opening balances"


# =============================================================================
# GENERAL LEDGER SCHEMAS
# =============================================================================

class GeneralLedgerEntryResponse(BaseModel):
    """One general ledger row."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    account_id: UUID
    journal_entry_id: UUID
    journal_entry_line_id: UUID
    entry_date: date
    entry_number: str
    entry_sequence: int
    line_number: int
    description: Optional[str] = None
    reference: Optional[str] = None
    source_type: Optional[str] = None
    source_id: Optional[str] = None
    debit_amount: Decimal
    credit_amount: Decimal
    running_balance: Decimal
    ledger_balance: Optional[Decimal] = None  # canonical order; account ledger view only


class GeneralLedgerListResponse(BaseModel):
    """Ledger rows read at one snapshot."""
    items: List[GeneralLedgerEntryResponse]
    total: int
    page: int
    page_size: int
    snapshot_sequence: int


class AccountLedgerResponse(BaseModel):
    """Ledger rows of one account in canonical order."""
    account_id: UUID
    account_code: str
    account_name: str
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    opening_balance: Decimal
    closing_balance: Decimal
    snapshot_sequence: int
    entries: List[GeneralLedgerEntryResponse]


# =============================================================================
# TRIAL BALANCE SCHEMAS
# =============================================================================

class TrialBalanceItem(BaseModel):
    """Single line in trial balance."""
    account_id: UUID
    account_code: str
    account_name: str
    account_type: AccountType
    status: AccountStatus
    debit_balance: Decimal
    credit_balance: Decimal
    net_balance: Decimal


class TrialBalanceReport(BaseModel):
    """Trial balance report."""
    organization_id: UUID
    as_of_date: date
    snapshot_sequence: int
    generated_at: datetime
    include_inactive: bool
    items: List[TrialBalanceItem]
    total_debits: Decimal
    total_credits: Decimal
    is_balanced: bool


class LedgerIntegrityIncidentResponse(BaseModel):
    """A recorded ledger integrity incident."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    kind: str
    message: str
    details: Optional[str] = None
    detected_at: datetime
    resolved_at: Optional[datetime] = None
    resolution_note: Optional[str] = None


class IncidentResolve(BaseModel):
    """Close an integrity incident after investigation."""
    note: str = Field(..., min_length=1)

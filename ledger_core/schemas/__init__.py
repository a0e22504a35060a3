"""
LedgerCore - Pydantic Schemas Package

Request and response schemas for the API.
"""

from ledger_core.schemas.accounting import (
    AccountCreate,
    AccountUpdate,
    AccountResponse,
    AccountTreeNode,
    AccountBalanceResponse,
    JournalEntryCreate,
    JournalEntryUpdate,
    JournalEntryLineCreate,
    JournalEntryResponse,
    JournalEntryListResponse,
    JournalEntryReverse,
    JournalEntryValidateRequest,
    AccountingValidation,
    JournalEntryValidation,
    OpeningBalanceRequest,
    GeneralLedgerEntryResponse,
    GeneralLedgerListResponse,
    AccountLedgerResponse,
    TrialBalanceItem,
    TrialBalanceReport,
    LedgerIntegrityIncidentResponse,
    IncidentResolve,
)
from ledger_core.schemas.bank_reconciliation import (
    BankTransactionCreate,
    BankTransactionResponse,
    BankTransactionImport,
    ReconciliationCreate,
    ReconciliationResponse,
    ReconciliationDetail,
    MatchRequest,
    UnmatchRequest,
    DisputeRequest,
    AdjustmentAttach,
    AdjustmentCreate,
    MatchedPair,
    AutoMatchResult,
)

"""
LedgerCore - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from ledger_core.models.base import BaseModel, TimestampMixin, AuditMixin
from ledger_core.models.accounting import (
    Account,
    AccountType,
    AccountSubType,
    AccountStatus,
    NormalBalance,
    StatementType,
    ALLOWED_SUB_TYPES,
    JournalEntry,
    JournalEntryLine,
    JournalEntryStatus,
    JournalEntryType,
    GeneralLedgerEntry,
    LedgerSequence,
    LedgerIntegrityIncident,
)
from ledger_core.models.bank_reconciliation import (
    BankReconciliation,
    BankTransaction,
    BankTransactionStatus,
    BankTransactionType,
    BookItemStatus,
    MatchType,
    ReconciliationBookItem,
    ReconciliationStatus,
)

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "AuditMixin",
    # Chart of accounts
    "Account",
    "AccountType",
    "AccountSubType",
    "AccountStatus",
    "NormalBalance",
    "StatementType",
    "ALLOWED_SUB_TYPES",
    # Journal & ledger
    "JournalEntry",
    "JournalEntryLine",
    "JournalEntryStatus",
    "JournalEntryType",
    "GeneralLedgerEntry",
    "LedgerSequence",
    "LedgerIntegrityIncident",
    # Bank reconciliation
    "BankReconciliation",
    "BankTransaction",
    "BankTransactionStatus",
    "BankTransactionType",
    "BookItemStatus",
    "MatchType",
    "ReconciliationBookItem",
    "ReconciliationStatus",
]

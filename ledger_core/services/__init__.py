"""
LedgerCore - Services Package

Business logic services.
"""

from ledger_core.services.account_registry import AccountRegistry, get_account_registry
from ledger_core.services.journal_engine import JournalEngine, get_journal_engine
from ledger_core.services.general_ledger import GeneralLedger, LedgerCursor, get_general_ledger
from ledger_core.services.trial_balance import TrialBalanceGenerator, get_trial_balance_generator
from ledger_core.services.ledger_integrity import LedgerIntegrityMonitor
from ledger_core.services.matching_engine import MatchingConfig, MatchingEngine, MatchCandidate, TieBreaker
from ledger_core.services.bank_reconciliation_service import (
    BankReconciliationService,
    get_bank_reconciliation_service,
)
from ledger_core.services.ledger_locks import KeyedLockRegistry, posting_locks, reconciliation_locks

__all__ = [
    "AccountRegistry",
    "get_account_registry",
    "JournalEngine",
    "get_journal_engine",
    "GeneralLedger",
    "LedgerCursor",
    "get_general_ledger",
    "TrialBalanceGenerator",
    "get_trial_balance_generator",
    "LedgerIntegrityMonitor",
    "MatchingConfig",
    "MatchingEngine",
    "MatchCandidate",
    "TieBreaker",
    "BankReconciliationService",
    "get_bank_reconciliation_service",
    "KeyedLockRegistry",
    "posting_locks",
    "reconciliation_locks",
]

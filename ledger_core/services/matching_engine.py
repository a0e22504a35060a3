"""
LedgerCore - Transaction Matching Engine

Greedy, single-pass matcher pairing bank statement lines with general
ledger rows:
- Exact amount and direction (statement CREDIT pairs with a book debit)
- Date within a configurable tolerance window
- Ties broken by nearest date, then a stable key

A pairing is never undone within a run, so the same inputs always give the
same pairs. The engine does no I/O.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional, Set, Tuple
from uuid import UUID

from ledger_core.config import get_settings
from ledger_core.models.accounting import GeneralLedgerEntry
from ledger_core.models.bank_reconciliation import BankTransaction, BankTransactionStatus

logger = logging.getLogger(__name__)


class TieBreaker(str, Enum):
    """Rule applied after date proximity when several rows qualify."""
    LOWEST_ID = "lowest_id"
    LEDGER_ORDER = "ledger_order"


@dataclass
class MatchingConfig:
    """Configuration for the matching engine."""

    date_tolerance_days: int = 3
    tie_breaker: TieBreaker = TieBreaker.LOWEST_ID

    @classmethod
    def from_settings(cls) -> "MatchingConfig":
        settings = get_settings()
        return cls(
            date_tolerance_days=settings.reconciliation_date_tolerance_days,
            tie_breaker=TieBreaker(settings.reconciliation_tie_breaker),
        )


@dataclass
class MatchCandidate:
    """A proposed pairing of one bank line with one ledger row."""

    bank_transaction_id: UUID
    ledger_entry_id: UUID
    journal_entry_id: UUID
    amount: Decimal
    day_distance: int

    # Details for display
    bank_date: Optional[date] = None
    ledger_date: Optional[date] = None


class MatchingEngine:
    """Deterministic bank-to-book matcher."""

    def __init__(self, config: Optional[MatchingConfig] = None):
        self.config = config or MatchingConfig.from_settings()
        if self.config.date_tolerance_days < 0:
            raise ValueError("date_tolerance_days cannot be negative")

    def _tie_key(self, row: GeneralLedgerEntry) -> Tuple:
        if self.config.tie_breaker == TieBreaker.LEDGER_ORDER:
            return (row.entry_date, row.entry_sequence, row.line_number, row.id)
        return (row.id,)

    def _qualifies(self, bank_tx: BankTransaction, row: GeneralLedgerEntry) -> bool:
        if row.bank_amount != bank_tx.signed_amount:
            return False
        return abs((row.entry_date - bank_tx.transaction_date).days) <= self.config.date_tolerance_days

    def match(
        self,
        bank_transactions: Iterable[BankTransaction],
        book_entries: Iterable[GeneralLedgerEntry],
    ) -> List[MatchCandidate]:
        """
        Pair unmatched bank lines with book rows.

        Bank lines are visited in (transaction_date, id) order; each takes
        the best remaining row or stays unmatched. Lines in any status other
        than UNMATCHED, disputed ones included, are ignored.
        """
        pending = sorted(
            (tx for tx in bank_transactions if tx.status == BankTransactionStatus.UNMATCHED),
            key=lambda tx: (tx.transaction_date, tx.id),
        )
        book = list(book_entries)
        used: Set[UUID] = set()
        matches: List[MatchCandidate] = []

        for bank_tx in pending:
            candidates = [
                row for row in book
                if row.id not in used and self._qualifies(bank_tx, row)
            ]
            if not candidates:
                continue

            best = min(
                candidates,
                key=lambda row: (
                    abs((row.entry_date - bank_tx.transaction_date).days),
                    self._tie_key(row),
                ),
            )
            used.add(best.id)
            matches.append(MatchCandidate(
                bank_transaction_id=bank_tx.id,
                ledger_entry_id=best.id,
                journal_entry_id=best.journal_entry_id,
                amount=bank_tx.signed_amount,
                day_distance=abs((best.entry_date - bank_tx.transaction_date).days),
                bank_date=bank_tx.transaction_date,
                ledger_date=best.entry_date,
            ))

        logger.debug(f"Matching run paired {len(matches)} of {len(pending)} bank transactions")
        return matches

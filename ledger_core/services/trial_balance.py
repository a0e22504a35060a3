"""
LedgerCore - Trial Balance Generator

Builds the per-account debit/credit summary from general ledger rows as of
a date. An out-of-balance ledger is a defect in the posting engine, so it
is recorded as an integrity incident instead of being returned as a report.
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_core.models.accounting import (
    Account,
    AccountStatus,
    LedgerIntegrityIncident,
    NormalBalance,
    signed_balance,
)
from ledger_core.models.base import utcnow
from ledger_core.schemas.accounting import TrialBalanceItem, TrialBalanceReport
from ledger_core.services.general_ledger import GeneralLedger
from ledger_core.services.ledger_integrity import LedgerIntegrityMonitor
from ledger_core.utils.error_handling import LedgerIntegrityException

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def place_balance(normal_balance: NormalBalance, net_balance: Decimal) -> Tuple[Decimal, Decimal]:
    """Put a normal-side balance into the debit or credit column."""
    if normal_balance == NormalBalance.DEBIT:
        debit_balance = net_balance if net_balance >= 0 else ZERO
        credit_balance = abs(net_balance) if net_balance < 0 else ZERO
    else:
        credit_balance = net_balance if net_balance >= 0 else ZERO
        debit_balance = abs(net_balance) if net_balance < 0 else ZERO
    return debit_balance, credit_balance


class TrialBalanceGenerator:
    """Service for trial balance reports."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = GeneralLedger(db)
        self.monitor = LedgerIntegrityMonitor(db)

    async def generate(
        self,
        organization_id: uuid.UUID,
        as_of_date: date,
        include_inactive: bool = False,
        snapshot_sequence: Optional[int] = None,
    ) -> TrialBalanceReport:
        """
        Generate a trial balance as of a date.

        Raises LedgerIntegrityException while an incident is open, and
        records a new one when debits and credits across all accounts differ.
        """
        await self.monitor.ensure_clear(organization_id)

        snapshot = await self.ledger.resolve_snapshot(organization_id, snapshot_sequence)
        sums = await self.ledger.sums_by_account(organization_id, as_of_date, snapshot)

        result = await self.db.execute(
            select(Account)
            .where(Account.organization_id == organization_id)
            .order_by(Account.code)
        )
        accounts = list(result.scalars().all())

        items: List[TrialBalanceItem] = []
        total_debits = ZERO
        total_credits = ZERO
        ledger_debits = ZERO
        ledger_credits = ZERO

        for account in accounts:
            debit, credit = sums.get(account.id, (ZERO, ZERO))
            ledger_debits += debit
            ledger_credits += credit

            if not include_inactive and account.status != AccountStatus.ACTIVE:
                continue

            net_balance = signed_balance(account.account_type, debit, credit)
            debit_balance, credit_balance = place_balance(account.normal_balance, net_balance)
            items.append(TrialBalanceItem(
                account_id=account.id,
                account_code=account.code,
                account_name=account.name,
                account_type=account.account_type,
                status=account.status,
                debit_balance=debit_balance,
                credit_balance=credit_balance,
                net_balance=net_balance,
            ))
            total_debits += debit_balance
            total_credits += credit_balance

        if ledger_debits != ledger_credits:
            message = (
                f"Trial balance as of {as_of_date} is out of balance: "
                f"debits {ledger_debits} != credits {ledger_credits}"
            )
            details = {
                "as_of_date": as_of_date.isoformat(),
                "snapshot_sequence": snapshot,
                "total_debits": str(ledger_debits),
                "total_credits": str(ledger_credits),
            }
            await self.monitor.record(organization_id, "unbalanced_trial_balance", message, details)
            raise LedgerIntegrityException(message, organization_id=organization_id, details=details)

        return TrialBalanceReport(
            organization_id=organization_id,
            as_of_date=as_of_date,
            snapshot_sequence=snapshot,
            generated_at=utcnow(),
            include_inactive=include_inactive,
            items=items,
            total_debits=total_debits,
            total_credits=total_credits,
            is_balanced=total_debits == total_credits,
        )

    async def list_incidents(
        self,
        organization_id: uuid.UUID,
        include_resolved: bool = False,
    ) -> List[LedgerIntegrityIncident]:
        return await self.monitor.list_incidents(organization_id, include_resolved)

    async def resolve_incident(
        self,
        organization_id: uuid.UUID,
        incident_id: uuid.UUID,
        note: str,
    ) -> LedgerIntegrityIncident:
        return await self.monitor.resolve(organization_id, incident_id, note)


def get_trial_balance_generator(db: AsyncSession) -> TrialBalanceGenerator:
    """Factory function for dependency injection."""
    return TrialBalanceGenerator(db)

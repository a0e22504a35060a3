"""
LedgerCore - Bank Reconciliation Router

API endpoints for reconciling accounts against bank statements.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_core.database import get_db
from ledger_core.dependencies import OrganizationAccess, require_ledger_read, require_ledger_write
from ledger_core.models.bank_reconciliation import ReconciliationStatus
from ledger_core.schemas.bank_reconciliation import (
    AdjustmentAttach,
    AdjustmentCreate,
    AutoMatchResult,
    BankTransactionImport,
    DisputeRequest,
    MatchRequest,
    ReconciliationCreate,
    ReconciliationDetail,
    ReconciliationResponse,
    UnmatchRequest,
)
from ledger_core.services.bank_reconciliation_service import BankReconciliationService


router = APIRouter(
    prefix="/api/v1/organizations/{organization_id}/bank-reconciliations",
    tags=["Bank Reconciliation"],
)


@router.post("", response_model=ReconciliationDetail, status_code=status.HTTP_201_CREATED)
async def start_reconciliation(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    data: ReconciliationCreate = ...,
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Start a reconciliation and load the book-side candidates."""
    service = BankReconciliationService(db)
    reconciliation = await service.start_reconciliation(organization_id, data, user_id=access.user_id)
    return await service.get_detail(organization_id, reconciliation.id)


@router.get("", response_model=List[ReconciliationResponse])
async def list_reconciliations(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    account_id: Optional[uuid.UUID] = Query(None, description="Filter by account"),
    reconciliation_status: Optional[ReconciliationStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_read()),
):
    """List reconciliations."""
    service = BankReconciliationService(db)
    return await service.list_reconciliations(
        organization_id,
        account_id=account_id,
        status=reconciliation_status,
    )


@router.get("/{reconciliation_id}", response_model=ReconciliationDetail)
async def get_reconciliation(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    reconciliation_id: uuid.UUID = Path(..., description="Reconciliation ID"),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_read()),
):
    """Get a reconciliation with matched pairs and unmatched sets."""
    service = BankReconciliationService(db)
    return await service.get_detail(organization_id, reconciliation_id)


@router.post("/{reconciliation_id}/transactions", response_model=ReconciliationDetail)
async def import_transactions(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    reconciliation_id: uuid.UUID = Path(..., description="Reconciliation ID"),
    data: BankTransactionImport = ...,
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Add statement lines to an open reconciliation."""
    service = BankReconciliationService(db)
    await service.import_transactions(organization_id, reconciliation_id, data.transactions)
    return await service.get_detail(organization_id, reconciliation_id)


@router.post("/{reconciliation_id}/auto-match", response_model=AutoMatchResult)
async def auto_match(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    reconciliation_id: uuid.UUID = Path(..., description="Reconciliation ID"),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Run automatic matching."""
    service = BankReconciliationService(db)
    return await service.auto_match(organization_id, reconciliation_id)


@router.post("/{reconciliation_id}/match", response_model=ReconciliationDetail)
async def manual_match(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    reconciliation_id: uuid.UUID = Path(..., description="Reconciliation ID"),
    data: MatchRequest = ...,
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Manually pair a statement line with a ledger row."""
    service = BankReconciliationService(db)
    await service.manual_match(
        organization_id,
        reconciliation_id,
        data.bank_transaction_id,
        data.ledger_entry_id,
    )
    return await service.get_detail(organization_id, reconciliation_id)


@router.post("/{reconciliation_id}/unmatch", response_model=ReconciliationDetail)
async def unmatch(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    reconciliation_id: uuid.UUID = Path(..., description="Reconciliation ID"),
    data: UnmatchRequest = ...,
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Undo a match or a dispute."""
    service = BankReconciliationService(db)
    await service.unmatch(organization_id, reconciliation_id, data.bank_transaction_id)
    return await service.get_detail(organization_id, reconciliation_id)


@router.post("/{reconciliation_id}/dispute", response_model=ReconciliationDetail)
async def dispute_transaction(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    reconciliation_id: uuid.UUID = Path(..., description="Reconciliation ID"),
    data: DisputeRequest = ...,
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Flag a statement line as disputed."""
    service = BankReconciliationService(db)
    await service.dispute_transaction(organization_id, reconciliation_id, data.bank_transaction_id, data.note)
    return await service.get_detail(organization_id, reconciliation_id)


@router.post("/{reconciliation_id}/adjustments", response_model=ReconciliationDetail)
async def attach_adjustment(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    reconciliation_id: uuid.UUID = Path(..., description="Reconciliation ID"),
    data: AdjustmentAttach = ...,
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Attach a posted journal entry as an adjustment."""
    service = BankReconciliationService(db)
    await service.attach_adjustment_entry(organization_id, reconciliation_id, data.journal_entry_id)
    return await service.get_detail(organization_id, reconciliation_id)


@router.post("/{reconciliation_id}/adjustments/generate", response_model=ReconciliationDetail)
async def create_adjustment(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    reconciliation_id: uuid.UUID = Path(..., description="Reconciliation ID"),
    data: AdjustmentCreate = ...,
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Post an adjusting entry for the current discrepancy and attach it."""
    service = BankReconciliationService(db)
    await service.create_adjustment_entry(organization_id, reconciliation_id, data, user_id=access.user_id)
    return await service.get_detail(organization_id, reconciliation_id)


@router.post("/{reconciliation_id}/summary", response_model=ReconciliationDetail)
async def recompute_summary(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    reconciliation_id: uuid.UUID = Path(..., description="Reconciliation ID"),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Recompute reconciled, adjustment and discrepancy amounts."""
    service = BankReconciliationService(db)
    await service.recompute_summary(organization_id, reconciliation_id)
    return await service.get_detail(organization_id, reconciliation_id)


@router.post("/{reconciliation_id}/complete", response_model=ReconciliationDetail)
async def complete_reconciliation(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    reconciliation_id: uuid.UUID = Path(..., description="Reconciliation ID"),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Complete a reconciliation with no outstanding discrepancy."""
    service = BankReconciliationService(db)
    await service.complete(organization_id, reconciliation_id, user_id=access.user_id)
    return await service.get_detail(organization_id, reconciliation_id)

"""
LedgerCore - Accounting Router

API endpoints for the chart of accounts, journal entries, the general
ledger and the trial balance.
"""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Path, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_core.database import get_db
from ledger_core.dependencies import OrganizationAccess, require_ledger_read, require_ledger_write
from ledger_core.models.accounting import (
    AccountStatus, AccountSubType, AccountType, JournalEntryStatus, JournalEntryType,
)
from ledger_core.schemas.accounting import (
    AccountCreate, AccountUpdate, AccountResponse, AccountTreeNode, AccountBalanceResponse,
    JournalEntryCreate, JournalEntryUpdate, JournalEntryResponse, JournalEntryListResponse,
    JournalEntryReverse, JournalEntryValidateRequest, JournalEntryValidation,
    OpeningBalanceRequest,
    GeneralLedgerEntryResponse, GeneralLedgerListResponse, AccountLedgerResponse,
    TrialBalanceReport, LedgerIntegrityIncidentResponse, IncidentResolve,
)
from ledger_core.services.account_registry import AccountRegistry
from ledger_core.services.general_ledger import GeneralLedger
from ledger_core.services.journal_engine import JournalEngine
from ledger_core.services.trial_balance import TrialBalanceGenerator
from ledger_core.utils.error_handling import AppException


router = APIRouter(prefix="/api/v1/organizations/{organization_id}", tags=["Accounting"])


# ============================================================================
# CHART OF ACCOUNTS ENDPOINTS
# ============================================================================

@router.get("/accounts", response_model=List[AccountResponse])
async def list_accounts(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    account_type: Optional[AccountType] = Query(None, description="Filter by account type"),
    sub_type: Optional[AccountSubType] = Query(None, description="Filter by sub type"),
    account_status: Optional[AccountStatus] = Query(None, alias="status", description="Filter by status"),
    parent_account_id: Optional[uuid.UUID] = Query(None, description="Filter by parent account"),
    search: Optional[str] = Query(None, description="Search code or name"),
    include_inactive: bool = Query(False, description="Include inactive and archived accounts"),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_read()),
):
    """Get chart of accounts for organization."""
    registry = AccountRegistry(db)
    return await registry.list_accounts(
        organization_id,
        account_type=account_type,
        sub_type=sub_type,
        status=account_status,
        parent_account_id=parent_account_id,
        search=search,
        include_inactive=include_inactive,
    )


@router.get("/accounts/tree", response_model=List[AccountTreeNode])
async def get_account_tree(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_read()),
):
    """Get chart of accounts as hierarchical tree."""
    registry = AccountRegistry(db)
    return await registry.get_account_tree(organization_id, include_inactive=include_inactive)


@router.post("/accounts", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def create_account(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    data: AccountCreate = ...,
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Create a new account in the chart of accounts."""
    registry = AccountRegistry(db)
    try:
        account = await registry.create_account(organization_id, data, user_id=access.user_id)
        await db.commit()
        return account
    except AppException:
        await db.rollback()
        raise


@router.get("/accounts/{account_id}", response_model=AccountResponse)
async def get_account(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    account_id: uuid.UUID = Path(..., description="Account ID"),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_read()),
):
    """Get account by ID."""
    registry = AccountRegistry(db)
    return await registry.get_account(organization_id, account_id)


@router.patch("/accounts/{account_id}", response_model=AccountResponse)
async def update_account(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    account_id: uuid.UUID = Path(..., description="Account ID"),
    data: AccountUpdate = ...,
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Update account metadata."""
    registry = AccountRegistry(db)
    try:
        account = await registry.update_account(organization_id, account_id, data, user_id=access.user_id)
        await db.commit()
        return account
    except AppException:
        await db.rollback()
        raise


@router.delete("/accounts/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_account(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    account_id: uuid.UUID = Path(..., description="Account ID"),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Delete an account that never received postings."""
    registry = AccountRegistry(db)
    try:
        await registry.delete_account(organization_id, account_id)
        await db.commit()
    except AppException:
        await db.rollback()
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/accounts/{account_id}/archive", response_model=AccountResponse)
async def archive_account(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    account_id: uuid.UUID = Path(..., description="Account ID"),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Archive an account with a zero balance."""
    registry = AccountRegistry(db)
    try:
        account = await registry.archive_account(organization_id, account_id, user_id=access.user_id)
        await db.commit()
        return account
    except AppException:
        await db.rollback()
        raise


@router.get("/accounts/{account_id}/balance", response_model=AccountBalanceResponse)
async def get_account_balance(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    account_id: uuid.UUID = Path(..., description="Account ID"),
    as_of_date: Optional[date] = Query(None, description="Balance at end of this date, default today"),
    snapshot_sequence: Optional[int] = Query(None, ge=0),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_read()),
):
    """Get account balance as of a date."""
    as_of_date = as_of_date or date.today()
    ledger = GeneralLedger(db)
    registry = AccountRegistry(db)
    account = await registry.get_account(organization_id, account_id)
    snapshot = await ledger.resolve_snapshot(organization_id, snapshot_sequence)
    balance = await ledger.balance_as_of(organization_id, account_id, as_of_date, snapshot)
    return AccountBalanceResponse(
        account_id=account.id,
        account_code=account.code,
        as_of_date=as_of_date,
        balance=balance,
        snapshot_sequence=snapshot,
    )


@router.get("/accounts/{account_id}/ledger", response_model=AccountLedgerResponse)
async def get_account_ledger(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    account_id: uuid.UUID = Path(..., description="Account ID"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    snapshot_sequence: Optional[int] = Query(None, ge=0),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_read()),
):
    """Get the ledger rows of one account with opening and closing balances."""
    ledger = GeneralLedger(db)
    return await ledger.account_ledger(organization_id, account_id, date_from, date_to, snapshot_sequence)


# ============================================================================
# JOURNAL ENTRY ENDPOINTS
# ============================================================================

@router.get("/journal-entries", response_model=JournalEntryListResponse)
async def list_journal_entries(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    entry_type: Optional[JournalEntryType] = Query(None),
    entry_status: Optional[JournalEntryStatus] = Query(None, alias="status"),
    account_id: Optional[uuid.UUID] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    source_type: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_read()),
):
    """Get journal entries with filtering."""
    engine = JournalEngine(db)
    entries, total = await engine.list_entries(
        organization_id,
        entry_type=entry_type,
        status=entry_status,
        account_id=account_id,
        date_from=date_from,
        date_to=date_to,
        source_type=source_type,
        search=search,
        page=page,
        page_size=page_size,
    )
    return JournalEntryListResponse(
        items=[JournalEntryResponse.model_validate(e) for e in entries],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/journal-entries", response_model=JournalEntryResponse, status_code=status.HTTP_201_CREATED)
async def create_journal_entry(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    data: JournalEntryCreate = ...,
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Create a draft journal entry."""
    engine = JournalEngine(db)
    try:
        entry = await engine.create_entry(organization_id, data, user_id=access.user_id)
        await db.commit()
        return entry
    except AppException:
        await db.rollback()
        raise


@router.post("/journal-entries/validate", response_model=JournalEntryValidation)
async def validate_journal_lines(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    data: JournalEntryValidateRequest = ...,
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_read()),
):
    """Validate unsaved journal lines without storing anything."""
    engine = JournalEngine(db)
    return await engine.validate_lines(organization_id, data.lines, data.entry_date, data.description)


@router.post(
    "/journal-entries/opening-balances",
    response_model=JournalEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def seed_opening_balances(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    data: OpeningBalanceRequest = ...,
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Post the opening balances entry."""
    engine = JournalEngine(db)
    return await engine.seed_opening_balances(organization_id, data, user_id=access.user_id)


@router.get("/journal-entries/{entry_id}", response_model=JournalEntryResponse)
async def get_journal_entry(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    entry_id: uuid.UUID = Path(..., description="Journal Entry ID"),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_read()),
):
    """Get journal entry by ID with lines."""
    engine = JournalEngine(db)
    return await engine.get_entry(organization_id, entry_id)


@router.patch("/journal-entries/{entry_id}", response_model=JournalEntryResponse)
async def update_journal_entry(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    entry_id: uuid.UUID = Path(..., description="Journal Entry ID"),
    data: JournalEntryUpdate = ...,
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Update a draft journal entry."""
    engine = JournalEngine(db)
    try:
        entry = await engine.update_draft(organization_id, entry_id, data, user_id=access.user_id)
        await db.commit()
        return entry
    except AppException:
        await db.rollback()
        raise


@router.delete("/journal-entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_journal_entry(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    entry_id: uuid.UUID = Path(..., description="Journal Entry ID"),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Delete a draft journal entry."""
    engine = JournalEngine(db)
    try:
        await engine.delete_draft(organization_id, entry_id)
        await db.commit()
    except AppException:
        await db.rollback()
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/journal-entries/{entry_id}/validate", response_model=JournalEntryValidation)
async def validate_journal_entry(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    entry_id: uuid.UUID = Path(..., description="Journal Entry ID"),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_read()),
):
    """Validate a stored journal entry."""
    engine = JournalEngine(db)
    return await engine.validate(organization_id, entry_id)


@router.post("/journal-entries/{entry_id}/post", response_model=JournalEntryResponse)
async def post_journal_entry(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    entry_id: uuid.UUID = Path(..., description="Journal Entry ID"),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Post a draft journal entry to the general ledger."""
    engine = JournalEngine(db)
    return await engine.post(organization_id, entry_id, user_id=access.user_id)


@router.post("/journal-entries/{entry_id}/reverse", response_model=JournalEntryResponse)
async def reverse_journal_entry(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    entry_id: uuid.UUID = Path(..., description="Journal Entry ID"),
    data: JournalEntryReverse = ...,
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Reverse a posted journal entry. Returns the reversing entry."""
    engine = JournalEngine(db)
    return await engine.reverse(
        organization_id,
        entry_id,
        reason=data.reason,
        reversal_date=data.reversal_date,
        user_id=access.user_id,
    )


# ============================================================================
# GENERAL LEDGER ENDPOINTS
# ============================================================================

@router.get("/general-ledger", response_model=GeneralLedgerListResponse)
async def list_general_ledger(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    account_id: Optional[uuid.UUID] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    source_type: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    snapshot_sequence: Optional[int] = Query(None, ge=0),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_read()),
):
    """Get general ledger rows across accounts."""
    ledger = GeneralLedger(db)
    rows, total, snapshot = await ledger.list_entries(
        organization_id,
        account_id=account_id,
        date_from=date_from,
        date_to=date_to,
        source_type=source_type,
        search=search,
        page=page,
        page_size=page_size,
        snapshot_sequence=snapshot_sequence,
    )
    return GeneralLedgerListResponse(
        items=[GeneralLedgerEntryResponse.model_validate(r) for r in rows],
        total=total,
        page=page,
        page_size=page_size,
        snapshot_sequence=snapshot,
    )


@router.post("/general-ledger/verify", status_code=status.HTTP_200_OK)
async def verify_general_ledger(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_read()),
):
    """Check cached account balances against the ledger rows."""
    ledger = GeneralLedger(db)
    await ledger.verify_account_balances(organization_id)
    return {
        "organization_id": str(organization_id),
        "is_consistent": True,
        "snapshot_sequence": await ledger.current_sequence(organization_id),
    }


# ============================================================================
# TRIAL BALANCE ENDPOINTS
# ============================================================================

@router.get("/trial-balance", response_model=TrialBalanceReport)
async def get_trial_balance(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    as_of_date: Optional[date] = Query(None, description="Report date, default today"),
    include_inactive: bool = Query(False),
    snapshot_sequence: Optional[int] = Query(None, ge=0),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_read()),
):
    """Generate trial balance report."""
    as_of_date = as_of_date or date.today()
    generator = TrialBalanceGenerator(db)
    return await generator.generate(
        organization_id,
        as_of_date,
        include_inactive=include_inactive,
        snapshot_sequence=snapshot_sequence,
    )


@router.get("/integrity-incidents", response_model=List[LedgerIntegrityIncidentResponse])
async def list_integrity_incidents(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    include_resolved: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_read()),
):
    """List ledger integrity incidents."""
    generator = TrialBalanceGenerator(db)
    return await generator.list_incidents(organization_id, include_resolved=include_resolved)


@router.post(
    "/integrity-incidents/{incident_id}/resolve",
    response_model=LedgerIntegrityIncidentResponse,
)
async def resolve_integrity_incident(
    organization_id: uuid.UUID = Path(..., description="Organization ID"),
    incident_id: uuid.UUID = Path(..., description="Incident ID"),
    data: IncidentResolve = ...,
    db: AsyncSession = Depends(get_db),
    access: OrganizationAccess = Depends(require_ledger_write()),
):
    """Resolve an integrity incident so trial balances can be generated again."""
    generator = TrialBalanceGenerator(db)
    try:
        incident = await generator.resolve_incident(organization_id, incident_id, data.note)
        await db.commit()
        return incident
    except AppException:
        await db.rollback()
        raise

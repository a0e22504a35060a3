"""
LedgerCore - Ledger Integrity Monitor

Records ledger invariant violations. An organization with an unresolved
incident gets no trial balance until someone resolves it.
"""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_core.models.accounting import LedgerIntegrityIncident
from ledger_core.models.base import utcnow
from ledger_core.utils.error_handling import (
    InvalidOperationException,
    LedgerIntegrityException,
    NotFoundException,
)

logger = logging.getLogger(__name__)


class LedgerIntegrityMonitor:
    """Service for ledger integrity incidents."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        organization_id: uuid.UUID,
        kind: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> LedgerIntegrityIncident:
        """Persist an incident and commit it immediately."""
        incident = LedgerIntegrityIncident(
            organization_id=organization_id,
            kind=kind,
            message=message,
            details=json.dumps(details, default=str) if details else None,
            detected_at=utcnow(),
        )
        self.db.add(incident)
        await self.db.commit()

        logger.critical(
            f"Ledger integrity violation ({kind}) for organization {organization_id}: {message}"
        )
        return incident

    async def open_incidents(self, organization_id: uuid.UUID) -> List[LedgerIntegrityIncident]:
        result = await self.db.execute(
            select(LedgerIntegrityIncident)
            .where(
                and_(
                    LedgerIntegrityIncident.organization_id == organization_id,
                    LedgerIntegrityIncident.resolved_at.is_(None),
                )
            )
            .order_by(LedgerIntegrityIncident.detected_at)
        )
        return list(result.scalars().all())

    async def list_incidents(
        self,
        organization_id: uuid.UUID,
        include_resolved: bool = False,
    ) -> List[LedgerIntegrityIncident]:
        if not include_resolved:
            return await self.open_incidents(organization_id)
        result = await self.db.execute(
            select(LedgerIntegrityIncident)
            .where(LedgerIntegrityIncident.organization_id == organization_id)
            .order_by(LedgerIntegrityIncident.detected_at)
        )
        return list(result.scalars().all())

    async def ensure_clear(self, organization_id: uuid.UUID) -> None:
        """Raise while the organization has an unresolved incident."""
        incidents = await self.open_incidents(organization_id)
        if incidents:
            raise LedgerIntegrityException(
                "Trial balance generation is halted until open ledger integrity incidents are resolved",
                organization_id=organization_id,
                details={"incident_ids": [str(i.id) for i in incidents]},
            )

    async def resolve(
        self,
        organization_id: uuid.UUID,
        incident_id: uuid.UUID,
        note: str,
    ) -> LedgerIntegrityIncident:
        """Mark an incident resolved. Caller commits."""
        result = await self.db.execute(
            select(LedgerIntegrityIncident).where(
                and_(
                    LedgerIntegrityIncident.id == incident_id,
                    LedgerIntegrityIncident.organization_id == organization_id,
                )
            )
        )
        incident = result.scalar_one_or_none()
        if incident is None:
            raise NotFoundException("LedgerIntegrityIncident", incident_id)
        if incident.is_resolved:
            raise InvalidOperationException("Incident is already resolved")

        incident.resolved_at = utcnow()
        incident.resolution_note = note
        await self.db.flush()

        logger.warning(f"Ledger integrity incident {incident_id} resolved for organization {organization_id}")
        return incident

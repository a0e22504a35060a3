"""
LedgerCore - Account Registry

Service layer for the Chart of Accounts:
- Account creation, metadata edits, archiving and deletion
- Posting eligibility checks used by the journal engine
- Hierarchy views computed from parent_account_id lookups
"""

import logging
import uuid
from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_core.models.accounting import (
    ALLOWED_SUB_TYPES,
    Account,
    AccountStatus,
    AccountSubType,
    AccountType,
    GeneralLedgerEntry,
    JournalEntryLine,
    normal_balance_for,
    statement_type_for,
)
from ledger_core.schemas.accounting import AccountCreate, AccountUpdate, AccountResponse, AccountTreeNode
from ledger_core.utils.error_handling import (
    AccountNotFoundException,
    InvalidOperationException,
    PostingNotAllowedException,
    ValidationException,
)

logger = logging.getLogger(__name__)


def check_sub_type(account_type: AccountType, sub_type: AccountSubType) -> None:
    if sub_type not in ALLOWED_SUB_TYPES[account_type]:
        allowed = sorted(s.value for s in ALLOWED_SUB_TYPES[account_type])
        raise ValidationException(
            f"Sub type '{sub_type.value}' is not allowed for {account_type.value} accounts",
            field="sub_type",
            details={"allowed_sub_types": allowed},
        )


class AccountRegistry:
    """Service for chart of accounts operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def get_account(
        self,
        organization_id: uuid.UUID,
        account_id: uuid.UUID,
    ) -> Account:
        """Get account by ID, scoped to the organization."""
        result = await self.db.execute(
            select(Account).where(
                and_(
                    Account.id == account_id,
                    Account.organization_id == organization_id,
                )
            )
        )
        account = result.scalar_one_or_none()
        if account is None:
            raise AccountNotFoundException(account_id)
        return account

    async def get_account_by_code(
        self,
        organization_id: uuid.UUID,
        code: str,
    ) -> Optional[Account]:
        """Get account by code."""
        result = await self.db.execute(
            select(Account).where(
                and_(
                    Account.organization_id == organization_id,
                    Account.code == code,
                )
            )
        )
        return result.scalar_one_or_none()

    async def list_accounts(
        self,
        organization_id: uuid.UUID,
        account_type: Optional[AccountType] = None,
        sub_type: Optional[AccountSubType] = None,
        status: Optional[AccountStatus] = None,
        parent_account_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        include_inactive: bool = False,
    ) -> List[Account]:
        """List accounts ordered by code."""
        query = select(Account).where(Account.organization_id == organization_id)

        if account_type:
            query = query.where(Account.account_type == account_type)
        if sub_type:
            query = query.where(Account.sub_type == sub_type)
        if status:
            query = query.where(Account.status == status)
        elif not include_inactive:
            query = query.where(Account.status == AccountStatus.ACTIVE)
        if parent_account_id:
            query = query.where(Account.parent_account_id == parent_account_id)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(Account.code.ilike(pattern), Account.name.ilike(pattern)))

        result = await self.db.execute(query.order_by(Account.code))
        return list(result.scalars().all())

    async def has_postings(self, account_id: uuid.UUID) -> bool:
        """True once any general ledger row references the account."""
        result = await self.db.execute(
            select(func.count(GeneralLedgerEntry.id)).where(GeneralLedgerEntry.account_id == account_id)
        )
        return (result.scalar() or 0) > 0

    async def _active_parent(self, organization_id: uuid.UUID, parent_id: uuid.UUID) -> Account:
        result = await self.db.execute(
            select(Account).where(
                and_(Account.id == parent_id, Account.organization_id == organization_id)
            )
        )
        parent = result.scalar_one_or_none()
        if parent is None or parent.status != AccountStatus.ACTIVE:
            raise ValidationException(
                "Parent account must be an active account in the same organization",
                field="parent_account_id",
                details={"parent_account_id": str(parent_id)},
            )
        return parent

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def create_account(
        self,
        organization_id: uuid.UUID,
        data: AccountCreate,
        user_id: Optional[uuid.UUID] = None,
    ) -> Account:
        """Create a new account with zero balances."""
        if await self.get_account_by_code(organization_id, data.code):
            raise ValidationException(
                f"Account code {data.code} already exists",
                field="code",
            )
        check_sub_type(data.account_type, data.sub_type)

        level = 0
        if data.parent_account_id:
            parent = await self._active_parent(organization_id, data.parent_account_id)
            level = parent.level + 1

        account = Account(
            organization_id=organization_id,
            code=data.code,
            name=data.name,
            description=data.description,
            account_type=data.account_type,
            sub_type=data.sub_type,
            normal_balance=normal_balance_for(data.account_type),
            statement_type=statement_type_for(data.account_type),
            status=AccountStatus.ACTIVE,
            parent_account_id=data.parent_account_id,
            level=level,
            allow_transactions=data.allow_transactions,
            require_sub_accounts=data.require_sub_accounts,
            debit_balance=Decimal("0.00"),
            credit_balance=Decimal("0.00"),
            current_balance=Decimal("0.00"),
            created_by_id=user_id,
        )
        self.db.add(account)
        await self.db.flush()

        logger.info(f"Created account {account.code} ({account.account_type.value}) for organization {organization_id}")
        return account

    async def update_account(
        self,
        organization_id: uuid.UUID,
        account_id: uuid.UUID,
        data: AccountUpdate,
        user_id: Optional[uuid.UUID] = None,
    ) -> Account:
        """Apply a metadata patch. Balances are never touched here."""
        account = await self.get_account(organization_id, account_id)
        patch = data.model_dump(exclude_unset=True)

        if "account_type" in patch and patch["account_type"] != account.account_type:
            if await self.has_postings(account.id):
                raise InvalidOperationException(
                    f"Cannot change the type of account {account.code}: it already has postings",
                    details={"account_id": str(account.id)},
                )

        new_type = patch.get("account_type") or account.account_type
        new_sub_type = patch.get("sub_type") or account.sub_type
        check_sub_type(new_type, new_sub_type)

        if "code" in patch and patch["code"] != account.code:
            if await self.get_account_by_code(organization_id, patch["code"]):
                raise ValidationException(f"Account code {patch['code']} already exists", field="code")
            account.code = patch["code"]

        if "status" in patch and patch["status"] != account.status:
            if account.status == AccountStatus.ARCHIVED:
                raise InvalidOperationException(f"Account {account.code} is archived and cannot be reactivated")
            if patch["status"] == AccountStatus.ARCHIVED:
                raise InvalidOperationException("Use archive to archive an account")
            account.status = patch["status"]

        if "parent_account_id" in patch and patch["parent_account_id"] != account.parent_account_id:
            await self._reparent(account, patch["parent_account_id"])

        for field in ("name", "description", "allow_transactions", "require_sub_accounts"):
            if field in patch:
                setattr(account, field, patch[field])

        account.account_type = new_type
        account.sub_type = new_sub_type
        account.normal_balance = normal_balance_for(new_type)
        account.statement_type = statement_type_for(new_type)
        account.updated_by_id = user_id

        await self.db.flush()
        return account

    async def _reparent(self, account: Account, parent_id: Optional[uuid.UUID]) -> None:
        arena = await self._arena(account.organization_id)

        level = 0
        if parent_id is not None:
            parent = await self._active_parent(account.organization_id, parent_id)
            # Walk up from the new parent; meeting the account itself means a cycle
            cursor: Optional[uuid.UUID] = parent.id
            while cursor is not None:
                if cursor == account.id:
                    raise ValidationException(
                        "An account cannot be moved under itself or one of its descendants",
                        field="parent_account_id",
                    )
                cursor = arena[cursor].parent_account_id if cursor in arena else None
            level = parent.level + 1

        account.parent_account_id = parent_id
        account.level = level

        children = self._children_index(arena.values())
        stack = [account]
        while stack:
            node = stack.pop()
            for child in children.get(node.id, []):
                child.level = node.level + 1
                stack.append(child)

    async def archive_account(
        self,
        organization_id: uuid.UUID,
        account_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
    ) -> Account:
        """Archive an account. Archived accounts never post again."""
        account = await self.get_account(organization_id, account_id)

        if account.status == AccountStatus.ARCHIVED:
            return account
        if account.current_balance != 0:
            raise InvalidOperationException(
                f"Cannot archive account {account.code} with a non-zero balance",
                details={"current_balance": str(account.current_balance)},
            )

        result = await self.db.execute(
            select(func.count(Account.id)).where(
                and_(
                    Account.parent_account_id == account.id,
                    Account.status == AccountStatus.ACTIVE,
                )
            )
        )
        if (result.scalar() or 0) > 0:
            raise InvalidOperationException(f"Cannot archive account {account.code}: it has active child accounts")

        account.status = AccountStatus.ARCHIVED
        account.updated_by_id = user_id
        await self.db.flush()

        logger.info(f"Archived account {account.code} for organization {organization_id}")
        return account

    async def delete_account(
        self,
        organization_id: uuid.UUID,
        account_id: uuid.UUID,
    ) -> None:
        """Physically delete an account that was never used."""
        account = await self.get_account(organization_id, account_id)

        if await self.has_postings(account.id):
            raise InvalidOperationException(
                f"Account {account.code} has postings and can only be archived",
            )
        lines = await self.db.execute(
            select(func.count(JournalEntryLine.id)).where(JournalEntryLine.account_id == account.id)
        )
        if (lines.scalar() or 0) > 0:
            raise InvalidOperationException(f"Account {account.code} is used by draft journal entries")
        children = await self.db.execute(
            select(func.count(Account.id)).where(Account.parent_account_id == account.id)
        )
        if (children.scalar() or 0) > 0:
            raise InvalidOperationException(f"Account {account.code} has child accounts")

        await self.db.delete(account)
        await self.db.flush()

    # =========================================================================
    # POSTING ELIGIBILITY
    # =========================================================================

    @staticmethod
    def posting_restriction(account: Account) -> Optional[str]:
        """Reason the account cannot take postings, or None."""
        if account.status != AccountStatus.ACTIVE:
            return f"account is {account.status.value}"
        if not account.allow_transactions:
            return "account does not allow transactions"
        if account.require_sub_accounts:
            return "account requires postings to sub-accounts"
        return None

    async def resolve_for_posting(
        self,
        organization_id: uuid.UUID,
        account_id: uuid.UUID,
    ) -> Account:
        """Return the account only if it may receive postings."""
        account = await self.get_account(organization_id, account_id)
        reason = self.posting_restriction(account)
        if reason:
            raise PostingNotAllowedException(account.id, account.code, reason)
        return account

    async def lock_accounts(
        self,
        organization_id: uuid.UUID,
        account_ids: Sequence[uuid.UUID],
    ) -> Dict[uuid.UUID, Account]:
        """Load accounts FOR UPDATE with fresh balances, in id order."""
        result = await self.db.execute(
            select(Account)
            .where(
                and_(
                    Account.organization_id == organization_id,
                    Account.id.in_(list(account_ids)),
                )
            )
            .order_by(Account.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {account.id: account for account in result.scalars().all()}

    # =========================================================================
    # HIERARCHY
    # =========================================================================

    async def _arena(self, organization_id: uuid.UUID) -> Dict[uuid.UUID, Account]:
        result = await self.db.execute(
            select(Account).where(Account.organization_id == organization_id)
        )
        return {account.id: account for account in result.scalars().all()}

    @staticmethod
    def _children_index(accounts) -> Dict[uuid.UUID, List[Account]]:
        index: Dict[uuid.UUID, List[Account]] = defaultdict(list)
        for account in accounts:
            if account.parent_account_id is not None:
                index[account.parent_account_id].append(account)
        for children in index.values():
            children.sort(key=lambda a: a.code)
        return index

    async def get_account_tree(
        self,
        organization_id: uuid.UUID,
        include_inactive: bool = False,
    ) -> List[AccountTreeNode]:
        """Build the chart of accounts hierarchy."""
        arena = await self._arena(organization_id)
        if not include_inactive:
            arena = {aid: a for aid, a in arena.items() if a.status == AccountStatus.ACTIVE}
        children = self._children_index(arena.values())

        def build(account: Account, path: List[str]) -> AccountTreeNode:
            node_path = path + [account.code]
            return AccountTreeNode(
                account=AccountResponse.model_validate(account),
                depth=len(path),
                path=node_path,
                children=[build(child, node_path) for child in children.get(account.id, [])],
            )

        # Accounts whose parent is filtered out are shown as roots
        roots = sorted(
            (a for a in arena.values() if a.parent_account_id not in arena),
            key=lambda a: a.code,
        )
        return [build(root, []) for root in roots]


def get_account_registry(db: AsyncSession) -> AccountRegistry:
    """Factory function for dependency injection."""
    return AccountRegistry(db)

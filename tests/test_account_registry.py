"""
LedgerCore - Account Registry Tests

Unit tests for chart of accounts operations.
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from ledger_core.models.accounting import (
    AccountStatus,
    AccountSubType,
    AccountType,
    NormalBalance,
    StatementType,
)
from ledger_core.schemas.accounting import AccountCreate, AccountUpdate
from ledger_core.services.account_registry import AccountRegistry
from ledger_core.utils.error_handling import (
    AccountNotFoundException,
    InvalidOperationException,
    PostingNotAllowedException,
    ValidationException,
)


class TestAccountCreation:
    """Test cases for creating accounts."""

    @pytest.mark.asyncio
    async def test_create_account_derives_normal_balance(self, db_session, organization_id):
        """Asset accounts are debit-normal balance sheet accounts with zero balances."""
        registry = AccountRegistry(db_session)

        account = await registry.create_account(
            organization_id,
            AccountCreate(
                code="1000",
                name="Cash",
                account_type=AccountType.ASSET,
                sub_type=AccountSubType.CURRENT_ASSET,
            ),
        )

        assert account.normal_balance == NormalBalance.DEBIT
        assert account.statement_type == StatementType.BALANCE_SHEET
        assert account.status == AccountStatus.ACTIVE
        assert account.current_balance == Decimal("0.00")
        assert account.level == 0

    @pytest.mark.asyncio
    async def test_revenue_is_credit_normal(self, revenue_account):
        """Revenue accounts are credit-normal income statement accounts."""
        assert revenue_account.normal_balance == NormalBalance.CREDIT
        assert revenue_account.statement_type == StatementType.INCOME_STATEMENT

    @pytest.mark.asyncio
    async def test_duplicate_code_rejected(self, db_session, organization_id, cash_account):
        """Account codes are unique per organization."""
        registry = AccountRegistry(db_session)

        with pytest.raises(ValidationException):
            await registry.create_account(
                organization_id,
                AccountCreate(
                    code=cash_account.code,
                    name="Another Cash",
                    account_type=AccountType.ASSET,
                    sub_type=AccountSubType.CURRENT_ASSET,
                ),
            )

    @pytest.mark.asyncio
    async def test_same_code_in_other_organization(self, db_session, cash_account):
        """A different organization may reuse the code."""
        registry = AccountRegistry(db_session)

        account = await registry.create_account(
            uuid4(),
            AccountCreate(
                code=cash_account.code,
                name="Cash",
                account_type=AccountType.ASSET,
                sub_type=AccountSubType.CURRENT_ASSET,
            ),
        )

        assert account.id != cash_account.id

    @pytest.mark.asyncio
    async def test_sub_type_must_fit_account_type(self, db_session, organization_id):
        """A revenue sub type cannot be used on an asset account."""
        registry = AccountRegistry(db_session)

        with pytest.raises(ValidationException) as exc_info:
            await registry.create_account(
                organization_id,
                AccountCreate(
                    code="1500",
                    name="Odd",
                    account_type=AccountType.ASSET,
                    sub_type=AccountSubType.OPERATING_REVENUE,
                ),
            )

        assert exc_info.value.field == "sub_type"

    @pytest.mark.asyncio
    async def test_child_account_level(self, db_session, organization_id, cash_account):
        """Children sit one level below their parent."""
        registry = AccountRegistry(db_session)

        child = await registry.create_account(
            organization_id,
            AccountCreate(
                code="1010",
                name="Operating Account",
                account_type=AccountType.ASSET,
                sub_type=AccountSubType.CURRENT_ASSET,
                parent_account_id=cash_account.id,
            ),
        )

        assert child.level == 1

    @pytest.mark.asyncio
    async def test_get_account_from_other_organization(self, db_session, cash_account):
        """Lookups are scoped to the organization."""
        registry = AccountRegistry(db_session)

        with pytest.raises(AccountNotFoundException):
            await registry.get_account(uuid4(), cash_account.id)


class TestAccountUpdates:
    """Test cases for account metadata edits and archiving."""

    @pytest.mark.asyncio
    async def test_update_name(self, db_session, organization_id, cash_account):
        """Metadata edits do not touch balances."""
        registry = AccountRegistry(db_session)

        account = await registry.update_account(
            organization_id, cash_account.id, AccountUpdate(name="Main Bank")
        )

        assert account.name == "Main Bank"
        assert account.current_balance == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_type_change_blocked_after_posting(
        self, db_session, organization_id, cash_account, revenue_account, post_entry,
    ):
        """An account with postings keeps its type."""
        await post_entry(cash_account.id, revenue_account.id, "100.00")
        registry = AccountRegistry(db_session)

        with pytest.raises(InvalidOperationException):
            await registry.update_account(
                organization_id,
                revenue_account.id,
                AccountUpdate(account_type=AccountType.LIABILITY, sub_type=AccountSubType.CURRENT_LIABILITY),
            )

    @pytest.mark.asyncio
    async def test_reparent_under_descendant_rejected(self, db_session, organization_id, cash_account):
        """The hierarchy cannot contain a cycle."""
        registry = AccountRegistry(db_session)
        child = await registry.create_account(
            organization_id,
            AccountCreate(
                code="1010",
                name="Operating Account",
                account_type=AccountType.ASSET,
                sub_type=AccountSubType.CURRENT_ASSET,
                parent_account_id=cash_account.id,
            ),
        )

        with pytest.raises(ValidationException):
            await registry.update_account(
                organization_id, cash_account.id, AccountUpdate(parent_account_id=child.id)
            )

    @pytest.mark.asyncio
    async def test_archive_with_balance_fails(
        self, db_session, organization_id, cash_account, revenue_account, post_entry,
    ):
        """Archiving an account with a non-zero balance is an invalid operation."""
        await post_entry(cash_account.id, revenue_account.id, "100.00")
        registry = AccountRegistry(db_session)

        with pytest.raises(InvalidOperationException):
            await registry.archive_account(organization_id, cash_account.id)

    @pytest.mark.asyncio
    async def test_archived_account_rejects_postings(self, db_session, organization_id, expense_account):
        """Archived accounts are no longer eligible for postings."""
        registry = AccountRegistry(db_session)

        archived = await registry.archive_account(organization_id, expense_account.id)
        assert archived.status == AccountStatus.ARCHIVED

        with pytest.raises(PostingNotAllowedException):
            await registry.resolve_for_posting(organization_id, expense_account.id)

    @pytest.mark.asyncio
    async def test_archived_account_cannot_be_reactivated(self, db_session, organization_id, expense_account):
        """Archiving is one way."""
        registry = AccountRegistry(db_session)
        await registry.archive_account(organization_id, expense_account.id)

        with pytest.raises(InvalidOperationException):
            await registry.update_account(
                organization_id, expense_account.id, AccountUpdate(status=AccountStatus.ACTIVE)
            )

    @pytest.mark.asyncio
    async def test_header_account_rejects_postings(self, db_session, organization_id):
        """Accounts that require sub-accounts take no direct postings."""
        registry = AccountRegistry(db_session)
        header = await registry.create_account(
            organization_id,
            AccountCreate(
                code="1",
                name="Assets",
                account_type=AccountType.ASSET,
                sub_type=AccountSubType.CURRENT_ASSET,
                require_sub_accounts=True,
            ),
        )

        with pytest.raises(PostingNotAllowedException):
            await registry.resolve_for_posting(organization_id, header.id)

    @pytest.mark.asyncio
    async def test_delete_unused_account(self, db_session, organization_id, expense_account):
        """An account that was never used can be deleted."""
        registry = AccountRegistry(db_session)

        await registry.delete_account(organization_id, expense_account.id)

        with pytest.raises(AccountNotFoundException):
            await registry.get_account(organization_id, expense_account.id)

    @pytest.mark.asyncio
    async def test_delete_account_with_postings_fails(
        self, db_session, organization_id, cash_account, revenue_account, post_entry,
    ):
        """Accounts with postings can only be archived."""
        await post_entry(cash_account.id, revenue_account.id, "100.00")
        registry = AccountRegistry(db_session)

        with pytest.raises(InvalidOperationException):
            await registry.delete_account(organization_id, cash_account.id)


class TestAccountTree:
    """Test cases for the hierarchy view."""

    @pytest.mark.asyncio
    async def test_tree_nests_children(self, db_session, organization_id, cash_account, revenue_account):
        """Children appear under their parent with their path."""
        registry = AccountRegistry(db_session)
        await registry.create_account(
            organization_id,
            AccountCreate(
                code="1010",
                name="Operating Account",
                account_type=AccountType.ASSET,
                sub_type=AccountSubType.CURRENT_ASSET,
                parent_account_id=cash_account.id,
            ),
        )

        tree = await registry.get_account_tree(organization_id)

        assert [node.account.code for node in tree] == ["1000", "4000"]
        cash_node = tree[0]
        assert len(cash_node.children) == 1
        assert cash_node.children[0].depth == 1
        assert cash_node.children[0].path == ["1000", "1010"]

    @pytest.mark.asyncio
    async def test_list_hides_archived_by_default(self, db_session, organization_id, cash_account, expense_account):
        """Archived accounts are listed only on request."""
        registry = AccountRegistry(db_session)
        await registry.archive_account(organization_id, expense_account.id)

        active = await registry.list_accounts(organization_id)
        everything = await registry.list_accounts(organization_id, include_inactive=True)

        assert [a.code for a in active] == ["1000"]
        assert {a.code for a in everything} == {"1000", "6100"}

"""
LedgerCore - Test Configuration

Pytest fixtures and configuration.
"""

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

import ledger_core.models  # noqa: F401
from ledger_core.database import Base, get_async_session
from ledger_core.models.accounting import AccountSubType, AccountType
from ledger_core.schemas.accounting import AccountCreate, JournalEntryCreate, JournalEntryLineCreate
from ledger_core.services.account_registry import AccountRegistry
from ledger_core.services.journal_engine import JournalEngine
from main import app


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """One SQLite file per test, so separate sessions see each other's commits."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
def organization_id():
    return uuid4()


# ===========================================
# CHART OF ACCOUNTS FIXTURES
# ===========================================

async def _create_account(db_session, organization_id, code, name, account_type, sub_type, **kwargs):
    registry = AccountRegistry(db_session)
    account = await registry.create_account(
        organization_id,
        AccountCreate(code=code, name=name, account_type=account_type, sub_type=sub_type, **kwargs),
    )
    await db_session.commit()
    return account


@pytest_asyncio.fixture(scope="function")
async def cash_account(db_session, organization_id):
    """Create a test bank/cash account."""
    return await _create_account(
        db_session, organization_id, "1000", "Cash at Bank",
        AccountType.ASSET, AccountSubType.CURRENT_ASSET,
    )


@pytest_asyncio.fixture(scope="function")
async def revenue_account(db_session, organization_id):
    """Create a test revenue account."""
    return await _create_account(
        db_session, organization_id, "4000", "Sales Revenue",
        AccountType.REVENUE, AccountSubType.OPERATING_REVENUE,
    )


@pytest_asyncio.fixture(scope="function")
async def equity_account(db_session, organization_id):
    """Create a test equity account."""
    return await _create_account(
        db_session, organization_id, "3000", "Owner's Equity",
        AccountType.EQUITY, AccountSubType.OWNERS_EQUITY,
    )


@pytest_asyncio.fixture(scope="function")
async def expense_account(db_session, organization_id):
    """Create a test expense account."""
    return await _create_account(
        db_session, organization_id, "6100", "Bank Charges",
        AccountType.EXPENSE, AccountSubType.OPERATING_EXPENSE,
    )


@pytest.fixture(scope="function")
def post_entry(db_session, organization_id):
    """Post a two-line entry: debit one account, credit another."""
    async def _post(debit_account_id, credit_account_id, amount, entry_date=None, description="Test entry"):
        engine = JournalEngine(db_session)
        return await engine.create_and_post(
            organization_id,
            JournalEntryCreate(
                entry_date=entry_date or date(2026, 1, 15),
                description=description,
                lines=[
                    JournalEntryLineCreate(account_id=debit_account_id, debit_amount=Decimal(amount)),
                    JournalEntryLineCreate(account_id=credit_account_id, credit_amount=Decimal(amount)),
                ],
            ),
        )

    return _post


# ===========================================
# API FIXTURES
# ===========================================

@pytest.fixture(scope="function")
def auth_headers(organization_id):
    """Headers the gateway forwards for an admitted caller."""
    return {
        "X-Organization-Id": str(organization_id),
        "X-Ledger-Permissions": "ledger:read,ledger:write",
        "X-User-Id": str(uuid4()),
    }


@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()

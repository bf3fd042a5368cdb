"""
Test fixtures for the IPSAS ledger.

Every test gets a fresh in-memory SQLite database (aiosqlite) with the full
schema.  Service tests use the ``db`` session directly; API tests go through
the FastAPI app over ``httpx.ASGITransport`` with ``get_db`` overridden to
the same database.
"""
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["AUDIT_ENABLED"] = "false"
os.environ["AUTO_CREATE_TABLES"] = "false"

from decimal import Decimal  # noqa: E402

import httpx  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

import ipsas_ledger.models  # noqa: E402,F401
from ipsas_ledger.database import Base, engine_options, get_db  # noqa: E402
from ipsas_ledger.main import app  # noqa: E402
from ipsas_ledger.middleware.auth import create_access_token  # noqa: E402
from ipsas_ledger.models.enums import AccountType, EntityType, FundType  # noqa: E402
from ipsas_ledger.schemas import (  # noqa: E402
    AccountCreate,
    EntityCreate,
    FundCreate,
    JournalEntryCreate,
)
from ipsas_ledger.services.audit_service import get_audit_writer  # noqa: E402
from ipsas_ledger.services.chart_of_accounts import ChartOfAccountsService  # noqa: E402
from ipsas_ledger.services.general_ledger import GeneralLedgerService  # noqa: E402
from ipsas_ledger.services.organization import OrganizationService  # noqa: E402

TEST_DB_URL = "sqlite+aiosqlite://"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class RecordingAuditWriter:
    """Keeps every event in memory so tests can assert on them."""

    def __init__(self):
        self.events = []

    def fire_and_forget(self, event):
        self.events.append(event)

    def actions(self):
        return [e.action for e in self.events]


def auth_headers(username: str, role: str) -> dict:
    """Return auth header dict for a token carrying *role*."""
    token = create_access_token({"sub": username, "user_id": f"u-{username}", "role": role})
    return {"Authorization": f"Bearer {token}"}


def journal(ledger: dict, lines: list[tuple[str, str, str]], **overrides) -> JournalEntryCreate:
    """Build a journal entry from ``(account_code, debit, credit)`` tuples."""
    data = {
        "transaction_date": "2026-02-15",
        "description": "Test journal entry",
        "fund_id": ledger["fund_id"],
        "entity_id": ledger["entity_id"],
        "entries": [
            {
                "account_id": ledger["accounts"][code],
                "debit_amount": Decimal(debit),
                "credit_amount": Decimal(credit),
            }
            for code, debit, credit in lines
        ],
    }
    data.update(overrides)
    return JournalEntryCreate(**data)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(TEST_DB_URL, **engine_options(TEST_DB_URL))
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def audit():
    return RecordingAuditWriter()


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def org_service(db, audit):
    return OrganizationService(db, audit)


@pytest_asyncio.fixture
async def coa_service(db, audit):
    return ChartOfAccountsService(db, audit)


@pytest_asyncio.fixture
async def gl_service(db, audit):
    return GeneralLedgerService(db, audit)


# ---------------------------------------------------------------------------
# Seed data -- one entity, one fund, a small chart of accounts
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def ledger(org_service, coa_service):
    """IDs of the seeded entity, fund and accounts (keyed by account code).

    1000 Assets (summary)
      1110 Cash
    2100 Accounts Payable
    4100 Tax Revenue
    5100 Salaries
    """
    entity = await org_service.create_entity(EntityCreate(
        code="CITY", name="City of Springfield", entity_type=EntityType.GOVERNMENT,
    ))
    fund = await org_service.create_fund(FundCreate(
        code="GF", name="General Fund", fund_type=FundType.GENERAL, entity_id=entity.id,
    ))

    async def account(code, name, account_type, parent=None, detail=True):
        acct = await coa_service.create_account(AccountCreate(
            code=code,
            name=name,
            account_type=account_type,
            fund_id=fund.id,
            entity_id=entity.id,
            parent_account_id=parent,
            is_detail_account=detail,
        ))
        return acct.id

    assets = await account("1000", "Assets", AccountType.ASSET, detail=False)
    accounts = {
        "1000": assets,
        "1110": await account("1110", "Cash", AccountType.ASSET, parent=assets),
        "2100": await account("2100", "Accounts Payable", AccountType.LIABILITY),
        "4100": await account("4100", "Tax Revenue", AccountType.REVENUE),
        "5100": await account("5100", "Salaries", AccountType.EXPENSE),
    }
    return {"entity_id": entity.id, "fund_id": fund.id, "accounts": accounts}


@pytest_asyncio.fixture
async def posted_txn_id(gl_service, ledger):
    """A posted 150,000.00 cash receipt: debit 1110, credit 4100."""
    txn = await gl_service.create_journal_entry(
        journal(ledger, [("1110", "150000.00", "0"), ("4100", "0", "150000.00")],
                description="Property tax receipt"),
        created_by="clerk",
    )
    await gl_service.approve_transaction(txn.id, "supervisor")
    await gl_service.post_transaction(txn.id, "controller")
    return txn.id


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(session_factory, audit):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_writer] = lambda: audit
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def admin_headers():
    return auth_headers("admin", "admin")


@pytest_asyncio.fixture
async def accountant_headers():
    return auth_headers("ramona", "accountant")


@pytest_asyncio.fixture
async def approver_headers():
    return auth_headers("sam", "approver")


@pytest_asyncio.fixture
async def viewer_headers():
    return auth_headers("sarah", "viewer")

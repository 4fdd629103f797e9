import os

# Settings are read at import time; configure the environment before the app loads
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-0123456789abcdef")
os.environ.setdefault("AUTH_JWT_SECRET", "test-jwt-secret-for-bearer-tokens")
os.environ.setdefault("DEBUG", "false")
for _provider in ("XERO", "QUICKBOOKS", "MYOB"):
    os.environ.setdefault(f"{_provider}_CLIENT_ID", f"{_provider.lower()}-client-id")
    os.environ.setdefault(f"{_provider}_CLIENT_SECRET", f"{_provider.lower()}-client-secret")

from datetime import timedelta

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from tradiesync.main import app
from tradiesync.api.deps import get_clock, get_http_client
from tradiesync.config import settings
from tradiesync.database import Base, get_db
from tradiesync.models import AccountingConnection, Client, Invoice
from tradiesync.security.oauth_state import OAuthStateSigner
from tradiesync.security.token_vault import TokenVault
from tradiesync.services.accounting import get_provider
from tradiesync.services.oauth_flow import OAuthFlowService, RefreshLocks

from tests.factories import ClientFactory, InvoiceFactory
from tests.helpers import TEST_USER_ID, FakeProviderAPI, FrozenClock, bearer_token

# Test database URL (SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"


@pytest_asyncio.fixture
async def session_factory():
    """Create test database and tables; yields a session factory bound to it."""
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def fake_api():
    return FakeProviderAPI()


@pytest_asyncio.fixture
async def http_client(fake_api):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_api)) as http:
        yield http


@pytest.fixture
def vault():
    return TokenVault(settings.ENCRYPTION_KEY)


@pytest.fixture
def signer():
    return OAuthStateSigner(settings.ENCRYPTION_KEY)


@pytest.fixture
def make_flow(test_db, http_client, vault, signer, clock):
    """Build an OAuthFlowService for a provider against the fake API."""

    def _make(provider_name: str, locks: RefreshLocks | None = None, db: AsyncSession | None = None):
        provider = get_provider(provider_name, http_client, settings)
        return OAuthFlowService(
            db or test_db, provider, vault, signer, clock=clock, locks=locks if locks is not None else RefreshLocks()
        )

    return _make


@pytest.fixture
def make_connection(test_db, vault, clock):
    """Store a connected credential record with encrypted tokens."""

    async def _make(
        provider: str,
        user_id: str = TEST_USER_ID,
        access_token: str = "access-token-1",
        refresh_token: str = "refresh-token-1",
        expires_in: int = 1800,
        tenant_id: str = "tenant-1",
        tenant_uri: str | None = None,
    ) -> AccountingConnection:
        connection = AccountingConnection(
            user_id=user_id,
            provider=provider,
            tenant_id=tenant_id,
            tenant_name="Smith Plumbing Pty Ltd",
            tenant_uri=tenant_uri,
            access_token_encrypted=vault.encrypt(access_token),
            refresh_token_encrypted=vault.encrypt(refresh_token),
            token_expires_at=clock() + timedelta(seconds=expires_in),
            sync_enabled=True,
            connected_at=clock(),
        )
        test_db.add(connection)
        await test_db.commit()
        return connection

    return _make


@pytest.fixture
def make_client(test_db, clock):
    async def _make(user_id: str = TEST_USER_ID, **overrides) -> Client:
        client = Client(user_id=user_id, created_at=clock(), **ClientFactory(**overrides))
        test_db.add(client)
        await test_db.commit()
        return client

    return _make


@pytest.fixture
def make_invoice(test_db, clock):
    async def _make(client: Client | None, user_id: str = TEST_USER_ID, **overrides) -> Invoice:
        invoice = Invoice(
            user_id=user_id,
            client_id=client.id if client else None,
            created_at=clock(),
            **InvoiceFactory(**overrides),
        )
        test_db.add(invoice)
        await test_db.commit()
        return invoice

    return _make


@pytest_asyncio.fixture
async def client(test_db, http_client, clock):
    """Create test client with overridden database, provider HTTP and clock."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_http_client] = lambda: http_client
    app.dependency_overrides[get_clock] = lambda: clock

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def authenticated_client(client: AsyncClient):
    client.headers["Authorization"] = f"Bearer {bearer_token()}"
    return client

"""Test fixtures — a fresh database per test, real auth pipeline.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own Database handle. By default that is a SQLite file
   under pytest's tmp_path (via aiosqlite), so tests need no server and
   cannot see each other's data. Set POSTPILOT_TEST_DATABASE_URL to run the
   same suite against PostgreSQL; tables are dropped after each test.
2. The app is built with create_app() and the open Database is parked on
   app.state, exactly where the lifespan would put it. ASGITransport does
   not run the lifespan, so Redis stays absent and rate limiting is off.
3. Nothing is mocked in the auth path: tests register, log in and send
   real tokens.
"""

import os

# Must be set before postpilot.config builds its settings singleton.
os.environ.setdefault("POSTPILOT_ENVIRONMENT", "test")
os.environ.setdefault("POSTPILOT_BCRYPT_ROUNDS", "4")

import uuid  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from postpilot.auth.password import hash_password  # noqa: E402
from postpilot.db.engine import Database  # noqa: E402
from postpilot.main import create_app  # noqa: E402
from postpilot.services.session_service import SessionManager  # noqa: E402
from postpilot.store.credentials import CredentialStore  # noqa: E402

TEST_DB_URL = os.environ.get("POSTPILOT_TEST_DATABASE_URL")

PASSWORD = "password_123"


@pytest_asyncio.fixture()
async def database(tmp_path):
    """An open, empty database with all tables created."""
    url = TEST_DB_URL or f"sqlite+aiosqlite:///{tmp_path / 'postpilot.db'}"
    db = Database(url)
    await db.open()
    await db.create_all()
    try:
        yield db
    finally:
        if TEST_DB_URL:
            await db.drop_all()
        await db.close()


@pytest_asyncio.fixture()
async def db_session(database):
    async with database.session() as session:
        yield session


@pytest_asyncio.fixture()
async def app(database):
    application = create_app()
    application.state.database = database
    application.state.redis = None
    return application


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client talking to the app in-process."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def manager(db_session):
    return SessionManager(db_session)


@pytest_asyncio.fixture()
async def principal(db_session):
    """A registered user, committed."""
    store = CredentialStore(db_session)
    user = await store.create_principal(
        email=f"user-{uuid.uuid4().hex[:8]}@example.com",
        username="Test User",
        password_hash=hash_password(PASSWORD),
    )
    await store.commit()
    return user

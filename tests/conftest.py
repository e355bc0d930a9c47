"""Pytest configuration and fixtures for sharegate tests.

Database Handling:
- Uses TEST_DATABASE_URL when set (e.g. a PostgreSQL instance with asyncpg)
- Otherwise uses a throwaway SQLite file through aiosqlite
"""

import os
import tempfile
from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set test environment variables before importing app modules
os.environ["ENCRYPTION_KEY"] = "0" * 64  # Valid 32-byte key for tests
os.environ["ADMIN_API_KEY"] = "a" * 64
os.environ["DEPLOYMENT_MODE"] = "standalone"
os.environ["CORS_ORIGINS"] = ""
# Cheap Argon2 parameters; production defaults take ~100ms per hash
os.environ["TOKEN_HASH_TIME_COST"] = "1"
os.environ["TOKEN_HASH_MEMORY_COST"] = "8192"
os.environ["TOKEN_HASH_PARALLELISM"] = "1"

TEST_ADMIN_KEY = os.environ["ADMIN_API_KEY"]

_sqlite_dir = tempfile.mkdtemp(prefix="sharegate-test-")


def _get_database_url() -> str:
    explicit_url = os.environ.get("TEST_DATABASE_URL")
    if explicit_url:
        return explicit_url
    return f"sqlite+aiosqlite:///{os.path.join(_sqlite_dir, 'test.db')}"


# Set DATABASE_URL for app imports
os.environ["DATABASE_URL"] = _get_database_url()


# --- Singleton Reset Fixture ---


@pytest.fixture(autouse=True)
def reset_service_account():
    """Drop the ServiceAccountManager singleton so no token leaks between tests."""
    from sharegate.services.service_account import ServiceAccountManager

    ServiceAccountManager.reset_instance()
    yield
    ServiceAccountManager.reset_instance()


# --- Database Fixtures ---


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create a database engine with a fresh schema for each test."""
    from sharegate.core.database import Base
    from sharegate.models import AccessGrant  # noqa: F401  # register all models

    engine = create_async_engine(
        _get_database_url(),
        poolclass=NullPool,
        echo=False,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables after test
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


# --- Table Reader ---


class FakeTableReader:
    """In-memory TableReader serving a fixed set of rows for any location."""

    SCHEMA_STRING = (
        '{"type":"struct","fields":['
        '{"name":"id","type":"long","nullable":false,"metadata":{}},'
        '{"name":"region","type":"string","nullable":true,"metadata":{}}]}'
    )

    def __init__(self, num_rows: int = 250, fail: bool = False):
        self.rows = [{"id": i, "region": "emea" if i % 2 else "amer"} for i in range(num_rows)]
        self.fail = fail
        self.calls: list[tuple[str, Any]] = []

    def _check(self, method: str, location: str) -> None:
        self.calls.append((method, location))
        if self.fail:
            raise OSError(f"cannot open {location}")

    async def get_metadata(self, location: str):
        from sharegate.services.delta_protocol import parse_schema_string
        from sharegate.services.table_reader import LocalTableMetadata

        self._check("get_metadata", location)
        return LocalTableMetadata(
            id="tbl-0001",
            schema_string=self.SCHEMA_STRING,
            version=7,
            name=location.rsplit("/", 1)[-1],
            columns=parse_schema_string(self.SCHEMA_STRING),
            created_time=1700000000000,
        )

    async def query(self, location: str, limit: int, offset: int):
        from sharegate.schemas.delta_sharing import TablePreviewResult
        from sharegate.services.delta_protocol import parse_schema_string

        self._check("query", location)
        return TablePreviewResult(
            columns=parse_schema_string(self.SCHEMA_STRING),
            rows=self.rows[offset : offset + limit],
            total_rows=len(self.rows),
            has_more=offset + limit < len(self.rows),
        )

    async def get_changes(self, location: str, options):
        from sharegate.services.table_reader import LocalChange, LocalChanges

        self._check("get_changes", location)
        start = options.starting_version or 0
        end = options.ending_version if options.ending_version is not None else start + 1
        actions = [
            LocalChange(
                path=f"part-{v:05d}.parquet",
                size=1024 * (v + 1),
                version=v,
                timestamp=1700000000000 + v,
                change_type="add",
            )
            for v in range(start, end + 1)
        ]
        return LocalChanges(
            metadata=await self.get_metadata(location),
            actions=actions,
            start_version=start,
            end_version=end,
        )

    async def get_stats(self, location: str):
        from sharegate.services.table_reader import TableStats

        self._check("get_stats", location)
        return TableStats(num_records=len(self.rows), num_files=3, total_size=4096)


@pytest.fixture
def table_reader() -> FakeTableReader:
    return FakeTableReader()


# --- Application Fixtures ---


@pytest.fixture
def app(table_reader):
    """A standalone-mode application reading through the fake table reader."""
    from sharegate.main import create_app

    return create_app(reader=table_reader)


@pytest_asyncio.fixture(scope="function")
async def async_client(app, db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database override."""
    from sharegate.core.database import get_db

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    # Clean up
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {TEST_ADMIN_KEY}"}


# --- Test Factories ---


@pytest.fixture
def share_factory(db_session):
    """Factory for creating a share with one schema and its tables."""
    from sharegate.models import Share, SharedTable, ShareSchema

    async def _create_share(
        name: str = "acme",
        schema: str = "sales",
        tables: tuple[str, ...] = ("orders",),
        **kwargs,
    ) -> Share:
        share = Share(name=name, **kwargs)
        db_session.add(share)
        await db_session.flush()

        share_schema = ShareSchema(share_id=share.id, name=schema)
        db_session.add(share_schema)
        await db_session.flush()

        for table in tables:
            db_session.add(
                SharedTable(
                    schema_id=share_schema.id,
                    name=table,
                    location=f"s3://warehouse/{name}/{schema}/{table}",
                )
            )
        await db_session.flush()
        await db_session.refresh(share)
        return share

    return _create_share


@pytest.fixture
def recipient_factory(db_session):
    """Factory for creating a recipient with an issued token.

    Returns ``(recipient, plain_secret)``.
    """
    from sharegate.models import Recipient
    from sharegate.services.token import TokenService

    async def _create_recipient(name: str = "partner", **kwargs) -> tuple[Recipient, str]:
        recipient = Recipient(name=name, **kwargs)
        db_session.add(recipient)
        await db_session.flush()

        issued = await TokenService(db_session).issue(recipient.id)
        await db_session.refresh(recipient)
        return recipient, issued.plain_secret

    return _create_recipient


@pytest.fixture
def grant_factory(db_session):
    """Factory for granting a share to a recipient."""
    from sharegate.schemas.access_grant import GrantOptions
    from sharegate.services.access_grant import AccessGrantService

    async def _create_grant(recipient, share, **options):
        return await AccessGrantService(db_session).grant(
            recipient.id, share.name, GrantOptions(**options) if options else None
        )

    return _create_grant

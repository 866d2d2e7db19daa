from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator, Iterator

import httpx
import pytest
from alembic.config import Config
from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from alembic import command
from app.db import models  # noqa: F401
from app.db.base import Base
from app.db.session import close_engine, get_db_session
from app.settings import settings

RESET_SQL = text(
    """
    TRUNCATE TABLE
      credit_transactions,
      credit_purchases,
      credit_ledger,
      saved_affiliates,
      discovered_affiliates,
      search_jobs,
      users
    RESTART IDENTITY CASCADE
    """
)


def _postgres_test_database_url() -> str | None:
    explicit = (os.getenv("TEST_DATABASE_URL") or "").strip()
    return explicit or None


@pytest.fixture(scope="session")
def migrated_postgres() -> Iterator[str | None]:
    database_url = _postgres_test_database_url()
    if database_url is None:
        yield None
        return
    if not make_url(database_url).drivername.startswith("postgresql"):
        raise RuntimeError("TEST_DATABASE_URL must point at PostgreSQL.")

    previous_settings_database_url = settings.database_url
    object.__setattr__(settings, "database_url", database_url)
    config = Config("alembic.ini")
    config.set_main_option("sqlalchemy.url", database_url)
    config.attributes["configure_logger"] = False
    command.upgrade(config, "head")
    try:
        yield database_url
    finally:
        object.__setattr__(settings, "database_url", previous_settings_database_url)
        asyncio.run(close_engine())


def _serialize_sqlite_writers(engine: AsyncEngine) -> None:
    # BEGIN IMMEDIATE takes the write lock up front, so racing transactions queue
    # on the busy timeout instead of failing the lock upgrade.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, _connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(connection) -> None:
        connection.exec_driver_sql("BEGIN IMMEDIATE")


@pytest.fixture
async def db_engine(migrated_postgres: str | None, tmp_path) -> AsyncIterator[AsyncEngine]:
    if migrated_postgres is not None:
        engine = create_async_engine(migrated_postgres, pool_pre_ping=True)
        async with engine.begin() as connection:
            await connection.execute(RESET_SQL)
    else:
        # One file per test; concurrent writers wait on the sqlite lock instead of failing.
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'scout.db'}",
            connect_args={"timeout": 30},
        )
        _serialize_sqlite_writers(engine)
        async with engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
async def reset_app_engine() -> AsyncIterator[None]:
    await close_engine()
    yield
    await close_engine()


@pytest.fixture
def override_db_session(session_factory: async_sessionmaker[AsyncSession]):
    async def _get_test_db_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    return _get_test_db_session


@pytest.fixture
async def api_client(override_db_session) -> AsyncIterator[httpx.AsyncClient]:
    from app.main import app

    app.dependency_overrides[get_db_session] = override_db_session
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
    finally:
        app.dependency_overrides.clear()

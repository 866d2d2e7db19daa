from __future__ import annotations

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_name(db_session: AsyncSession) -> str:
    return db_session.get_bind().dialect.name


def insert_for(db_session: AsyncSession, model):
    """INSERT construct with ON CONFLICT support for the session's backend."""
    if dialect_name(db_session) == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)

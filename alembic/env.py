"""Alembic environment running migrations on the application's async engine."""

import asyncio

from sqlalchemy.engine import Connection

from alembic import context
from sharegate.core.database import Base, engine
from sharegate.models import (  # noqa: F401
    AccessGrant,
    Recipient,
    RecipientToken,
    Share,
    SharedTable,
    ShareSchema,
    SystemConfig,
)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=str(engine.url),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    async with engine.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())

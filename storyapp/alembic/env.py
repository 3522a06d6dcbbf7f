import asyncio
import logging

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from storyapp.config import get_settings
from storyapp.models import Base

logger = logging.getLogger('alembic.env')

target_metadata = Base.metadata


def database_url() -> str:
    # an explicit -x url=... wins over the environment
    return context.get_x_argument(as_dictionary=True).get('url') or get_settings().database_url


def run_migrations_offline():
    """Emit the migration SQL without connecting."""
    context.configure(
        url=database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={'paramstyle': 'named'},
    )
    with context.begin_transaction():
        context.run_migrations()


def apply_migrations(connection):
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online():
    engine = create_async_engine(database_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(apply_migrations)
    finally:
        await engine.dispose()
    logger.info('migrations applied')


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())

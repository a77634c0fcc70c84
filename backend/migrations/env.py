"""
Alembic environment for the checkout schema.

Runs migrations through an async engine built from application settings,
or emits SQL in offline mode. All models are imported so autogenerate
sees the full ``Base.metadata``.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from zambezi.core.config import get_settings
from zambezi.core.logging import get_logger
from zambezi.database import models  # noqa: F401
from zambezi.database.base import Base
from zambezi.database.connection import async_database_url

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

settings = get_settings()
logger = get_logger(__name__)

target_metadata = Base.metadata

config.set_main_option("sqlalchemy.url", async_database_url(settings.database_url))


def run_migrations_offline() -> None:
    """Emit migration SQL without a database connection."""
    url = config.get_main_option("sqlalchemy.url")
    logger.info("Running migrations in offline mode", url_prefix=url.split("://")[0])

    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        transaction_per_migration=True,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """
    Run migrations against the configured database.

    A NullPool engine is used so the migration run holds exactly one
    connection and releases it on exit.
    """
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    try:
        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)
        logger.info("Migrations applied")
    except Exception as e:
        logger.error(
            "Async migration failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())

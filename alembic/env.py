"""Alembic environment for the certificates schema.

The database URL is the one the service itself reads (DATABASE_URL via
certify.core.config), rewritten to the synchronous psycopg2 driver since
migrations run outside the event loop.  Autogenerate compares against the
tables registered on certify.db.engine.Base.
"""

from __future__ import annotations

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context
from certify.core.config import SETTINGS
from certify.db import tables  # noqa: F401  (registers the certificates table)
from certify.db.engine import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

if SETTINGS.database_url:
    config.set_main_option(
        "sqlalchemy.url",
        SETTINGS.database_url.replace("postgresql+asyncpg://", "postgresql://", 1),
    )

target_metadata = Base.metadata

# compare_type: catches a widened fingerprint or reason column on autogenerate.
_CONFIGURE = {"target_metadata": target_metadata, "compare_type": True}


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_CONFIGURE,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, **_CONFIGURE)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

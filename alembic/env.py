"""
Alembic environment configuration.

Uses the application's database settings and SQLAlchemy models for
migration autogeneration. Tables owned by the scheduling system are
mapped for queries but never migrated from here.
"""

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context
from clinic_dispatch.config.settings import get_settings
from clinic_dispatch.models.db import EXTERNAL_TABLES, Base

config = context.config

settings = get_settings()
config.set_main_option("sqlalchemy.url", settings.database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# The scheduling system runs its own migrations against the same database
VERSION_TABLE = "clinic_dispatch_alembic_version"


def include_object(object, name, type_, reflected, compare_to):
    """Skip tables owned by the scheduling system."""
    if type_ == "table":
        return name not in EXTERNAL_TABLES
    return True


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (emit SQL without a connection)."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        include_object=include_object,
        version_table=VERSION_TABLE,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            include_object=include_object,
            version_table=VERSION_TABLE,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

"""
Alembic environment for the academy schema.

The database URL always comes from academy.db.base, so the app and the
migrations can never point at different databases.
"""
from logging.config import fileConfig

from sqlalchemy import create_engine, pool

from alembic import context

from academy.db.base import Base, DATABASE_URL
import academy.users.models  # noqa: F401
import academy.trails.models  # noqa: F401
import academy.submissions.models  # noqa: F401
import academy.progression.models  # noqa: F401
import academy.activity.models  # noqa: F401
import academy.notifications.models  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _configure_and_run(**options) -> None:
    context.configure(target_metadata=target_metadata, **options)
    with context.begin_transaction():
        context.run_migrations()


def run_offline() -> None:
    """Emit SQL to stdout instead of connecting (alembic upgrade --sql)."""
    _configure_and_run(
        url=DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )


def run_online() -> None:
    engine = create_engine(DATABASE_URL, poolclass=pool.NullPool)
    with engine.connect() as connection:
        _configure_and_run(connection=connection)


if context.is_offline_mode():
    run_offline()
else:
    run_online()

"""Migration environment for the Taleweave record store.

The schema is small: the JSON ``records`` table and the ``write_sequence``
counter behind ``_version``. The URL comes from ``Config.get_database_url()``
so migrations and the running engine always target the same database.
"""

import os
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from taleweave.config import Config  # noqa: E402
from taleweave.db.models import Base  # noqa: E402

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    return Config.get_database_url() or config.get_main_option("sqlalchemy.url")


def run_migrations_offline() -> None:
    """Emit the record store DDL as SQL."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = get_url()
    engine_kwargs = {"pool_pre_ping": True} if url.startswith("postgresql") else {}
    connectable = create_engine(url, **engine_kwargs)

    with connectable.connect() as connection:
        # SQLite needs batch mode to alter the records table
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

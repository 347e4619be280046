import logging
import os
import sys
from logging.config import fileConfig

# -------------------------------------------------
# Ensure project root is on PYTHONPATH
# -------------------------------------------------
sys.path.append(os.getcwd())

from alembic import context
from sqlalchemy import create_engine, pool

# -------------------------------------------------
# Alembic Config
# -------------------------------------------------
config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

# -------------------------------------------------
# 🔒 CRITICAL: Load ALL models before metadata
# -------------------------------------------------
from trade_reconciler.db.database import Base
import trade_reconciler.models  # ✅ REQUIRED: forces model registration

target_metadata = Base.metadata

logger.info("metadata tables loaded: %s", ", ".join(sorted(Base.metadata.tables)))


# -------------------------------------------------
# Database URL helper
# -------------------------------------------------
def get_database_url() -> str:
    """
    DATABASE_URL wins, then sqlalchemy.url from alembic.ini.
    Ensure Alembic uses the psycopg2 driver for bare postgres URLs.
    """
    url = os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url")
    if not url:
        raise RuntimeError("DATABASE_URL must be set")

    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg2://", 1)

    return url


# -------------------------------------------------
# Offline migrations
# -------------------------------------------------
def run_migrations_offline() -> None:
    url = get_database_url()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


# -------------------------------------------------
# Online migrations
# -------------------------------------------------
def run_migrations_online() -> None:
    url = get_database_url()
    engine = create_engine(url, poolclass=pool.NullPool)

    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


# -------------------------------------------------
# Entrypoint
# -------------------------------------------------
if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

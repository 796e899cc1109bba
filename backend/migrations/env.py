"""
Alembic Environment Configuration

This file configures how Alembic runs migrations.
It's set up to:
1. Read DATABASE_URL from the environment (falls back to app settings)
2. Import all ORM models for autogenerate support
3. Run with a sync driver against PostgreSQL or SQLite
"""
import os
import sys
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Add the backend directory to Python path so we can import our models
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# ============================================
# IMPORT YOUR MODELS HERE
# This is required for autogenerate to detect schema changes
# ============================================
from app.shared.core.config import settings
from app.shared.db.base import Base
from app.modules.whatsapp_connect.models import (  # noqa: F401
    WhatsAppTenant,
    WhatsAppConversation,
    WhatsAppMessage,
    WhatsAppWebhookEvent,
)

# This is the Alembic Config object
config = context.config

# Alembic needs a SYNC driver, not async
DATABASE_URL = os.environ.get("DATABASE_URL") or settings.DATABASE_URL
SYNC_DATABASE_URL = (
    DATABASE_URL
    .replace("postgresql+asyncpg://", "postgresql+psycopg2://")
    .replace("sqlite+aiosqlite://", "sqlite://")
)
if SYNC_DATABASE_URL.startswith("postgresql://"):
    SYNC_DATABASE_URL = SYNC_DATABASE_URL.replace("postgresql://", "postgresql+psycopg2://", 1)
config.set_main_option("sqlalchemy.url", SYNC_DATABASE_URL)

# Interpret the config file for Python logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# ============================================
# TARGET METADATA
# This tells Alembic what your schema "should" look like
# ============================================
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """
    Run migrations in 'offline' mode.

    This generates SQL scripts without connecting to the database.
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=url.startswith("sqlite"),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live connection."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            # Compare types (e.g., String(50) vs String(100))
            compare_type=True,
            # SQLite cannot ALTER most constraints in place
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

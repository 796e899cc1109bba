import logging
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import sessionmaker

from app.shared.core.config import settings
from app.shared.core.constants import DB_POOL_SIZE, DB_MAX_OVERFLOW, DB_POOL_RECYCLE

logger = logging.getLogger("db")


def enable_sqlite_savepoints(engine: AsyncEngine) -> AsyncEngine:
    """
    Make SAVEPOINT work on pysqlite/aiosqlite.

    The driver issues its own BEGIN lazily, which breaks begin_nested().
    Turning that off and emitting BEGIN ourselves is the recipe from the
    SQLAlchemy SQLite dialect docs.
    """
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(database_url: str, **kwargs) -> AsyncEngine:
    """Create an async engine with settings appropriate for the backend in the URL."""
    if database_url.startswith("sqlite"):
        engine = create_async_engine(database_url, echo=False, **kwargs)
        return enable_sqlite_savepoints(engine)

    # statement_cache_size=0 disables prepared statements (required for PgBouncer)
    return create_async_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=DB_POOL_SIZE,
        max_overflow=DB_MAX_OVERFLOW,
        pool_recycle=DB_POOL_RECYCLE,
        connect_args={
            "statement_cache_size": 0,
            "prepared_statement_cache_size": 0
        },
        **kwargs
    )


engine = build_engine(settings.DATABASE_URL)

# Session Factory
AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)

logger.info(f"Database engine initialized ({engine.dialect.name})")


async def get_db():
    """Dependency for FastAPI routes to get a DB session"""
    async with AsyncSessionLocal() as session:
        yield session

"""
Database Initialization

Creates the SQLite payments table used by the sqlite store backend and
builds the async SQLAlchemy engine/session factory on top of it.
"""
import logging
import sqlite3
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

logger = logging.getLogger(__name__)


def create_tables(conn: sqlite3.Connection) -> None:
    """
    Create the payments table and its indexes.

    Also enables WAL mode so request handlers and scheduler jobs can read
    while a completion is being written.
    """
    cursor = conn.cursor()

    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.execute("PRAGMA synchronous=NORMAL")

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS payments (
            id TEXT PRIMARY KEY,
            amount REAL NOT NULL,
            phone TEXT NOT NULL,
            reference TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'PENDING' CHECK(status IN ('PENDING', 'SUCCESS', 'FAILED')),
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            completed_at TIMESTAMP,
            provider_reference TEXT UNIQUE,
            merchant_request_id TEXT,
            result_code TEXT,
            result_desc TEXT,
            receipt_number TEXT,
            CHECK ((status = 'PENDING' AND completed_at IS NULL) OR
                   (status != 'PENDING' AND completed_at IS NOT NULL))
        )
    """)

    cursor.execute("CREATE INDEX IF NOT EXISTS idx_payments_status ON payments(status)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_payments_created ON payments(created_at DESC)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_payments_provider_ref ON payments(provider_reference)")

    conn.commit()


def initialize_database(database_path: str) -> None:
    """
    Initialize the database file with all required tables.

    Called from the FastAPI lifespan when STORE_BACKEND=sqlite.
    """
    db_path = Path(database_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        create_tables(conn)
        logger.info(f"Database initialized at {db_path}")
    finally:
        conn.close()


def create_engine_for(database_path: str) -> AsyncEngine:
    """Create an aiosqlite engine tuned for concurrent handlers."""
    return create_async_engine(
        f"sqlite+aiosqlite:///{database_path}",
        echo=False,
        connect_args={
            "timeout": 30,  # seconds to wait for the write lock
            "check_same_thread": False
        },
        pool_pre_ping=True,
        pool_recycle=3600
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

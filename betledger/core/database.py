"""
Database initialization and connection management for the bet ledger.

This module handles:
- Creating the data directory if it doesn't exist
- Setting up SQLite with WAL mode, foreign keys and a bounded busy timeout
- Providing database connection utilities

Connections are opened in autocommit mode (``isolation_level=None``) so every
atomic unit is an explicit ``BEGIN IMMEDIATE ... COMMIT`` issued by
``betledger.utils.database_utils.transactional``.
"""

import sqlite3
import threading
from pathlib import Path
from typing import Optional

from betledger.core.config import Config
from betledger.utils.logging_config import get_logger

logger = get_logger(__name__)

_SCHEMA_LOCK = threading.Lock()
_SCHEMA_INITIALIZED: set = set()


def ensure_data_directory(db_path: Optional[str] = None) -> None:
    """Create the data directory if it doesn't exist."""
    db_path = db_path or Config.DB_PATH
    if db_path == ":memory:":
        return

    data_dir = Path(db_path).parent
    if not data_dir.exists():
        data_dir.mkdir(parents=True, exist_ok=True)
        logger.info("data_directory_created", path=str(data_dir))


def get_db_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    """
    Get a database connection with proper configuration.

    Each concurrent caller should hold its own connection; SQLite serialises
    writers across connections through its database lock.

    Args:
        db_path: Path to the SQLite database file. If None, uses Config.DB_PATH.

    Returns:
        Configured SQLite connection with WAL mode and foreign keys enabled.
    """
    if db_path is None:
        db_path = Config.DB_PATH

    ensure_data_directory(db_path)

    conn = sqlite3.connect(
        db_path,
        timeout=Config.DB_BUSY_TIMEOUT_SECONDS,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row

    conn.execute("PRAGMA foreign_keys = ON")  # Enforce referential integrity
    conn.execute("PRAGMA journal_mode = WAL")  # Readers never block the writer
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute(f"PRAGMA busy_timeout = {int(Config.DB_BUSY_TIMEOUT_SECONDS * 1000)}")
    conn.execute("PRAGMA temp_store = MEMORY")

    # Ensure the schema exists once per database file per process
    if db_path != ":memory:" and db_path not in _SCHEMA_INITIALIZED:
        with _SCHEMA_LOCK:
            if db_path not in _SCHEMA_INITIALIZED:
                # Local import avoids circular dependency during module load
                from betledger.core.schema import create_schema

                create_schema(conn)
                _SCHEMA_INITIALIZED.add(db_path)

    return conn


def initialize_database(db_path: Optional[str] = None, seed: bool = True) -> sqlite3.Connection:
    """
    Initialize the database with schema and optional seed data.

    Args:
        db_path: Path to the SQLite database file. If None, uses Config.DB_PATH.
        seed: Insert sample accounts, matches and odds.

    Returns:
        Database connection with initialized schema.
    """
    conn = get_db_connection(db_path)

    # Import here to avoid circular imports
    from betledger.core.schema import create_schema
    from betledger.core.seed_data import insert_seed_data

    create_schema(conn)

    if seed:
        insert_seed_data(conn)

    return conn


def backup_database(backup_path: str, db_path: Optional[str] = None) -> None:
    """
    Create a backup of the database.

    Args:
        backup_path: Path where the backup will be saved.
        db_path: Source database, defaults to Config.DB_PATH.
    """
    source = sqlite3.connect(db_path or Config.DB_PATH)
    backup = sqlite3.connect(backup_path)

    try:
        source.backup(backup)
        logger.info("database_backed_up", backup_path=backup_path)
    finally:
        source.close()
        backup.close()

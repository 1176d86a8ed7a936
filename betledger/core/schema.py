"""
Database schema definition for the bet ledger.

Defines the accounts, matches, odds_quotes, bets, transactions and
domain_events tables together with the triggers that keep quotes append-only,
bets frozen after placement and completed ledger entries immutable.
"""

import sqlite3
from typing import List

from betledger.utils.logging_config import get_logger

logger = get_logger(__name__)

REQUIRED_TABLES = [
    "accounts",
    "matches",
    "odds_quotes",
    "bets",
    "transactions",
    "domain_events",
]


def create_schema(conn: sqlite3.Connection) -> None:
    """
    Create all database tables with proper constraints and indexes.

    Args:
        conn: SQLite database connection.
    """
    # Create tables in dependency order
    create_accounts_table(conn)
    create_matches_table(conn)
    create_odds_quotes_table(conn)
    create_bets_table(conn)
    create_transactions_table(conn)
    create_domain_events_table(conn)

    # Create triggers for data integrity
    create_account_protection_trigger(conn)
    create_odds_append_only_trigger(conn)
    create_bet_lifecycle_triggers(conn)
    create_transaction_protection_triggers(conn)

    logger.debug("database_schema_ready")


def create_accounts_table(conn: sqlite3.Connection) -> None:
    """Create the accounts table. Balances are integer minor units."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS accounts (
            id TEXT PRIMARY KEY,
            display_name TEXT,
            balance_minor INTEGER NOT NULL DEFAULT 0 CHECK (balance_minor >= 0),
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """
    )


def create_matches_table(conn: sqlite3.Connection) -> None:
    """Create the matches table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS matches (
            id TEXT PRIMARY KEY,
            home_team TEXT NOT NULL,
            away_team TEXT NOT NULL,
            league TEXT NOT NULL,
            start_time TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'upcoming'
                CHECK (status IN ('upcoming', 'live', 'finished')),
            home_score INTEGER CHECK (home_score IS NULL OR home_score >= 0),
            away_score INTEGER CHECK (away_score IS NULL OR away_score >= 0),
            current_minute INTEGER,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_matches_status_start
        ON matches(status, start_time)
    """
    )


def create_odds_quotes_table(conn: sqlite3.Connection) -> None:
    """Create the odds_quotes table; ``seq`` is the insertion sequence."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS odds_quotes (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL UNIQUE,
            match_id TEXT NOT NULL REFERENCES matches(id),
            home_odds TEXT NOT NULL,
            draw_odds TEXT NOT NULL,
            away_odds TEXT NOT NULL,
            source TEXT NOT NULL DEFAULT 'admin' CHECK (source IN ('admin', 'feed')),
            created_at TEXT NOT NULL
        )
    """
    )

    # Latest/history lookups walk (match_id, created_at, seq) backwards
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_odds_quotes_match_time
        ON odds_quotes(match_id, created_at, seq)
    """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_odds_quotes_created
        ON odds_quotes(created_at)
    """
    )


def create_bets_table(conn: sqlite3.Connection) -> None:
    """Create the bets table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS bets (
            id TEXT PRIMARY KEY,
            account_id TEXT NOT NULL REFERENCES accounts(id),
            match_id TEXT NOT NULL REFERENCES matches(id),
            selection TEXT NOT NULL CHECK (selection IN ('home', 'draw', 'away')),
            odds TEXT NOT NULL,
            stake_minor INTEGER NOT NULL CHECK (stake_minor > 0),
            potential_win_minor INTEGER NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'won', 'lost', 'cancelled')),
            placed_at TEXT NOT NULL,
            settled_at TEXT
        )
    """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_bets_account
        ON bets(account_id, placed_at)
    """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_bets_match_status
        ON bets(match_id, status)
    """
    )


def create_transactions_table(conn: sqlite3.Connection) -> None:
    """Create the transactions (ledger entries) table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS transactions (
            id TEXT PRIMARY KEY,
            account_id TEXT NOT NULL REFERENCES accounts(id),
            kind TEXT NOT NULL
                CHECK (kind IN ('deposit', 'withdrawal', 'bet_stake', 'bet_win')),
            amount_minor INTEGER NOT NULL,
            status TEXT NOT NULL CHECK (status IN ('pending', 'completed', 'failed')),
            reference TEXT,
            created_at TEXT NOT NULL,
            completed_at TEXT
        )
    """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_transactions_account
        ON transactions(account_id, created_at)
    """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_transactions_reference
        ON transactions(reference)
    """
    )


def create_domain_events_table(conn: sqlite3.Connection) -> None:
    """Create the domain_events outbox table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS domain_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            event_type TEXT NOT NULL,
            account_id TEXT,
            payload TEXT NOT NULL,
            created_at TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'delivered', 'failed')),
            attempts INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            delivered_at TEXT
        )
    """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_domain_events_status
        ON domain_events(status, id)
    """
    )


def create_account_protection_trigger(conn: sqlite3.Connection) -> None:
    """Accounts are never deleted."""
    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS prevent_account_delete
        BEFORE DELETE ON accounts
        BEGIN
            SELECT RAISE(ABORT, 'Cannot delete accounts');
        END
    """
    )


def create_odds_append_only_trigger(conn: sqlite3.Connection) -> None:
    """Create triggers that keep odds_quotes append-only."""
    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS prevent_odds_quote_update
        BEFORE UPDATE ON odds_quotes
        BEGIN
            SELECT RAISE(ABORT, 'Cannot update odds_quotes - append-only table');
        END
    """
    )

    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS prevent_odds_quote_delete
        BEFORE DELETE ON odds_quotes
        BEGIN
            SELECT RAISE(ABORT, 'Cannot delete from odds_quotes - append-only table');
        END
    """
    )


def create_bet_lifecycle_triggers(conn: sqlite3.Connection) -> None:
    """Freeze bet terms after placement and make terminal statuses final."""
    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS prevent_bet_terms_update
        BEFORE UPDATE OF account_id, match_id, selection, odds, stake_minor,
                         potential_win_minor, placed_at ON bets
        BEGIN
            SELECT RAISE(ABORT, 'Cannot modify bet terms - frozen at placement');
        END
    """
    )

    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS prevent_bet_terminal_update
        BEFORE UPDATE OF status ON bets
        WHEN OLD.status != 'pending'
        BEGIN
            SELECT RAISE(ABORT, 'Cannot change status of a settled or cancelled bet');
        END
    """
    )

    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS prevent_bet_delete
        BEFORE DELETE ON bets
        BEGIN
            SELECT RAISE(ABORT, 'Cannot delete bets');
        END
    """
    )


def create_transaction_protection_triggers(conn: sqlite3.Connection) -> None:
    """Only pending entries may change, and only their status and completion time."""
    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS prevent_transaction_update
        BEFORE UPDATE ON transactions
        WHEN OLD.status != 'pending'
          OR NEW.account_id != OLD.account_id
          OR NEW.kind != OLD.kind
          OR NEW.amount_minor != OLD.amount_minor
          OR NEW.reference IS NOT OLD.reference
          OR NEW.created_at != OLD.created_at
        BEGIN
            SELECT RAISE(ABORT, 'Cannot modify transactions once settled');
        END
    """
    )

    conn.execute(
        """
        CREATE TRIGGER IF NOT EXISTS prevent_transaction_delete
        BEFORE DELETE ON transactions
        BEGIN
            SELECT RAISE(ABORT, 'Cannot delete from transactions - append-only table');
        END
    """
    )


def get_all_table_names(conn: sqlite3.Connection) -> List[str]:
    """
    Get all table names in the database.

    Args:
        conn: SQLite database connection.

    Returns:
        List of table names.
    """
    cursor = conn.execute(
        """
        SELECT name FROM sqlite_master
        WHERE type='table' AND name NOT LIKE 'sqlite_%'
        ORDER BY name
    """
    )

    return [row[0] for row in cursor.fetchall()]

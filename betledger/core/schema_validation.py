"""
Schema validation for the bet ledger.

This module verifies that all tables exist with correct columns, triggers and
indexes.
"""

import sqlite3
from typing import Any, Dict, List

from betledger.core.schema import REQUIRED_TABLES
from betledger.utils.logging_config import get_logger

logger = get_logger(__name__)


class SchemaValidationError(Exception):
    """Raised when schema validation fails."""

    pass


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Validate the complete database schema.

    Args:
        conn: SQLite database connection.

    Returns:
        True if schema is valid.

    Raises:
        SchemaValidationError: If schema validation fails.
    """
    errors = []

    errors.extend(validate_all_tables_exist(conn))
    errors.extend(validate_table_structures(conn))
    errors.extend(validate_constraints(conn))
    errors.extend(validate_triggers(conn))
    errors.extend(validate_indexes(conn))

    if errors:
        error_msg = "Schema validation failed:\n" + "\n".join(f"- {error}" for error in errors)
        raise SchemaValidationError(error_msg)

    logger.info("schema_validation_passed")
    return True


def validate_all_tables_exist(conn: sqlite3.Connection) -> List[str]:
    """
    Validate that all required tables exist.

    Returns:
        List of error messages for missing tables.
    """
    cursor = conn.execute(
        """
        SELECT name FROM sqlite_master
        WHERE type='table' AND name NOT LIKE 'sqlite_%'
    """
    )

    existing_tables = {row[0] for row in cursor.fetchall()}

    return [
        f"Missing required table: {table}"
        for table in REQUIRED_TABLES
        if table not in existing_tables
    ]


def validate_table_structures(conn: sqlite3.Connection) -> List[str]:
    """
    Validate that all tables have the expected columns and types.

    Returns:
        List of error messages for incorrect table structures.
    """
    expected_columns = {
        "accounts": {
            "id": "TEXT",
            "display_name": "TEXT",
            "balance_minor": "INTEGER",
            "created_at": "TEXT",
            "updated_at": "TEXT",
        },
        "matches": {
            "id": "TEXT",
            "home_team": "TEXT",
            "away_team": "TEXT",
            "league": "TEXT",
            "start_time": "TEXT",
            "status": "TEXT",
            "home_score": "INTEGER",
            "away_score": "INTEGER",
            "current_minute": "INTEGER",
            "created_at": "TEXT",
            "updated_at": "TEXT",
        },
        "odds_quotes": {
            "seq": "INTEGER",
            "id": "TEXT",
            "match_id": "TEXT",
            "home_odds": "TEXT",
            "draw_odds": "TEXT",
            "away_odds": "TEXT",
            "source": "TEXT",
            "created_at": "TEXT",
        },
        "bets": {
            "id": "TEXT",
            "account_id": "TEXT",
            "match_id": "TEXT",
            "selection": "TEXT",
            "odds": "TEXT",
            "stake_minor": "INTEGER",
            "potential_win_minor": "INTEGER",
            "status": "TEXT",
            "placed_at": "TEXT",
            "settled_at": "TEXT",
        },
        "transactions": {
            "id": "TEXT",
            "account_id": "TEXT",
            "kind": "TEXT",
            "amount_minor": "INTEGER",
            "status": "TEXT",
            "reference": "TEXT",
            "created_at": "TEXT",
            "completed_at": "TEXT",
        },
        "domain_events": {
            "id": "INTEGER",
            "event_type": "TEXT",
            "account_id": "TEXT",
            "payload": "TEXT",
            "created_at": "TEXT",
            "status": "TEXT",
            "attempts": "INTEGER",
            "last_error": "TEXT",
            "delivered_at": "TEXT",
        },
    }

    errors = []

    for table_name, expected_cols in expected_columns.items():
        try:
            cursor = conn.execute(f"PRAGMA table_info({table_name})")
            actual_cols = {row[1]: row[2] for row in cursor.fetchall()}

            if not actual_cols:
                # Missing tables are reported by validate_all_tables_exist
                continue

            for col_name, col_type in expected_cols.items():
                if col_name not in actual_cols:
                    errors.append(f"Table {table_name}: Missing column {col_name}")
                elif actual_cols[col_name].upper() != col_type:
                    errors.append(
                        f"Table {table_name}: Column {col_name} has type "
                        f"{actual_cols[col_name]}, expected {col_type}"
                    )

        except sqlite3.OperationalError as e:
            errors.append(f"Table {table_name}: {str(e)}")

    return errors


def validate_constraints(conn: sqlite3.Connection) -> List[str]:
    """
    Validate that required constraints exist.

    Returns:
        List of error messages for missing constraints.
    """
    errors = []

    cursor = conn.execute("PRAGMA foreign_keys")
    if not cursor.fetchone()[0]:
        errors.append("Foreign keys are not enabled")

    # The non-negative balance guard lives in the table definition
    cursor = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type='table' AND name='accounts'"
    )
    row = cursor.fetchone()
    if row is not None and "balance_minor >= 0" not in (row[0] or ""):
        errors.append("Table accounts: Missing CHECK (balance_minor >= 0)")

    return errors


def validate_triggers(conn: sqlite3.Connection) -> List[str]:
    """
    Validate that all required triggers exist.

    Returns:
        List of error messages for missing triggers.
    """
    required_triggers = [
        "prevent_account_delete",
        "prevent_odds_quote_update",
        "prevent_odds_quote_delete",
        "prevent_bet_terms_update",
        "prevent_bet_terminal_update",
        "prevent_bet_delete",
        "prevent_transaction_update",
        "prevent_transaction_delete",
    ]

    cursor = conn.execute(
        """
        SELECT name FROM sqlite_master
        WHERE type='trigger' AND name NOT LIKE 'sqlite_%'
    """
    )

    existing_triggers = {row[0] for row in cursor.fetchall()}

    return [
        f"Missing required trigger: {trigger}"
        for trigger in required_triggers
        if trigger not in existing_triggers
    ]


def validate_indexes(conn: sqlite3.Connection) -> List[str]:
    """
    Validate that all required indexes exist.

    Returns:
        List of error messages for missing indexes.
    """
    required_indexes = [
        ("idx_matches_status_start", "matches"),
        ("idx_odds_quotes_match_time", "odds_quotes"),
        ("idx_odds_quotes_created", "odds_quotes"),
        ("idx_bets_account", "bets"),
        ("idx_bets_match_status", "bets"),
        ("idx_transactions_account", "transactions"),
        ("idx_transactions_reference", "transactions"),
        ("idx_domain_events_status", "domain_events"),
    ]

    cursor = conn.execute(
        """
        SELECT name, tbl_name FROM sqlite_master
        WHERE type='index' AND name NOT LIKE 'sqlite_%'
    """
    )

    existing_indexes = {(row[0], row[1]) for row in cursor.fetchall()}

    return [
        f"Missing required index: {index_name} on {table_name}"
        for index_name, table_name in required_indexes
        if (index_name, table_name) not in existing_indexes
    ]


def get_schema_summary(conn: sqlite3.Connection) -> Dict[str, Any]:
    """
    Get a summary of the database schema.

    Returns:
        Dictionary with row counts per table, trigger/index counts and
        foreign key status.
    """
    summary: Dict[str, Any] = {"tables": {}}

    for table in REQUIRED_TABLES:
        try:
            cursor = conn.execute(f"SELECT COUNT(*) FROM {table}")
            summary["tables"][table] = cursor.fetchone()[0]
        except sqlite3.OperationalError:
            summary["tables"][table] = 0

    cursor = conn.execute(
        "SELECT COUNT(*) FROM sqlite_master WHERE type='trigger' AND name NOT LIKE 'sqlite_%'"
    )
    summary["triggers"] = cursor.fetchone()[0]

    cursor = conn.execute(
        "SELECT COUNT(*) FROM sqlite_master WHERE type='index' AND name NOT LIKE 'sqlite_%'"
    )
    summary["indexes"] = cursor.fetchone()[0]

    cursor = conn.execute("PRAGMA foreign_keys")
    summary["foreign_keys_enabled"] = bool(cursor.fetchone()[0])

    return summary

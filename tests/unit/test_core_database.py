"""
Unit tests for core database functionality.

Tests schema creation, validation, protection triggers and seed data.
"""

import os
import sqlite3
import tempfile
import unittest

from betledger.core.database import backup_database, initialize_database
from betledger.core.schema import REQUIRED_TABLES
from betledger.core.schema_validation import (
    SchemaValidationError,
    get_schema_summary,
    validate_schema,
)
from betledger.core.seed_data import SEED_ACCOUNTS, SEED_MATCHES, get_seed_data_summary
from betledger.services.reconciliation_service import ReconciliationService


class TestCoreDatabase(unittest.TestCase):
    """Test core database functionality."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.test_db_path = os.path.join(self.temp_dir, "test_betledger.db")
        self.conn = initialize_database(self.test_db_path)

    def tearDown(self):
        self.conn.close()
        for suffix in ("", "-wal", "-shm", ".bak"):
            path = self.test_db_path + suffix
            if os.path.exists(path):
                os.unlink(path)
        os.rmdir(self.temp_dir)

    def test_database_initialization(self):
        """Connection pragmas are applied."""
        self.assertTrue(os.path.exists(self.test_db_path))

        cursor = self.conn.execute("PRAGMA foreign_keys")
        self.assertTrue(cursor.fetchone()[0])

        cursor = self.conn.execute("PRAGMA journal_mode")
        self.assertEqual(cursor.fetchone()[0], "wal")

    def test_schema_validation(self):
        try:
            validate_schema(self.conn)
        except SchemaValidationError as e:
            self.fail(f"Schema validation failed: {e}")

    def test_schema_validation_reports_missing_trigger(self):
        self.conn.execute("DROP TRIGGER prevent_bet_delete")

        with self.assertRaises(SchemaValidationError) as ctx:
            validate_schema(self.conn)
        self.assertIn("prevent_bet_delete", str(ctx.exception))

    def test_all_tables_exist(self):
        cursor = self.conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        existing_tables = {row[0] for row in cursor.fetchall()}

        for table in REQUIRED_TABLES:
            self.assertIn(table, existing_tables, f"Table {table} should exist")

    def test_schema_summary(self):
        summary = get_schema_summary(self.conn)

        self.assertEqual(summary["tables"]["accounts"], len(SEED_ACCOUNTS))
        self.assertTrue(summary["foreign_keys_enabled"])
        self.assertGreaterEqual(summary["triggers"], 8)

    def test_seed_data_inserted(self):
        summary = get_seed_data_summary(self.conn)

        self.assertEqual(summary["accounts"], len(SEED_ACCOUNTS))
        self.assertEqual(summary["matches"], len(SEED_MATCHES))
        self.assertEqual(summary["odds_quotes"], len(SEED_MATCHES))
        funded = [a for a in SEED_ACCOUNTS if a["opening_deposit"]]
        self.assertEqual(summary["transactions"], len(funded))

    def test_seed_is_idempotent(self):
        from betledger.core.seed_data import insert_seed_data

        insert_seed_data(self.conn)

        summary = get_seed_data_summary(self.conn)
        self.assertEqual(summary["accounts"], len(SEED_ACCOUNTS))
        self.assertEqual(summary["odds_quotes"], len(SEED_MATCHES))

    def test_seeded_balances_reconcile(self):
        results = ReconciliationService(self.conn).check_all()

        self.assertEqual(len(results), len(SEED_ACCOUNTS))
        self.assertTrue(all(result.is_consistent for result in results))

    def test_balance_check_constraint(self):
        with self.assertRaises(sqlite3.IntegrityError):
            self.conn.execute(
                "UPDATE accounts SET balance_minor = -1 WHERE id = 'seed_account_demo'"
            )

    def test_backup_database_copies_rows(self):
        backup_path = self.test_db_path + ".bak"
        self.conn.commit()

        backup_database(backup_path, self.test_db_path)

        copy = sqlite3.connect(backup_path)
        try:
            count = copy.execute("SELECT COUNT(*) FROM accounts").fetchone()[0]
        finally:
            copy.close()
        self.assertEqual(count, len(SEED_ACCOUNTS))


class TestProtectionTriggers(unittest.TestCase):
    """Append-only and frozen-row triggers."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.test_db_path = os.path.join(self.temp_dir, "test_triggers.db")
        self.conn = initialize_database(self.test_db_path)

    def tearDown(self):
        self.conn.close()
        for suffix in ("", "-wal", "-shm"):
            path = self.test_db_path + suffix
            if os.path.exists(path):
                os.unlink(path)
        os.rmdir(self.temp_dir)

    def test_odds_quotes_are_append_only(self):
        with self.assertRaises(sqlite3.DatabaseError):
            self.conn.execute("UPDATE odds_quotes SET home_odds = '9.99'")
        with self.assertRaises(sqlite3.DatabaseError):
            self.conn.execute("DELETE FROM odds_quotes")

    def test_accounts_cannot_be_deleted(self):
        with self.assertRaises(sqlite3.DatabaseError):
            self.conn.execute("DELETE FROM accounts WHERE id = 'seed_account_new'")

    def test_completed_transactions_are_immutable(self):
        with self.assertRaises(sqlite3.DatabaseError):
            self.conn.execute("UPDATE transactions SET amount_minor = 1")
        with self.assertRaises(sqlite3.DatabaseError):
            self.conn.execute("DELETE FROM transactions")

        cursor = self.conn.execute("SELECT SUM(amount_minor) FROM transactions")
        self.assertEqual(cursor.fetchone()[0], 2600000)


if __name__ == "__main__":
    unittest.main()

"""
Development reset script for the bet ledger.

Usage:
  python scripts/reset_dev_db.py            # Recreate the DB with sample data
  python scripts/reset_dev_db.py --empty    # Recreate the DB without sample data
  python scripts/reset_dev_db.py --yes      # Skip confirmation prompt
  python scripts/reset_dev_db.py --no-backup  # Do not keep a copy of the old DB

This script deletes the SQLite database configured by Config.DB_PATH together
with its WAL/SHM side files and reinitializes it with schema + seed data.
The existing database is first copied to `<DB_PATH>.bak`.
"""

from __future__ import annotations

import argparse
from pathlib import Path

import sys

# Ensure project root is on sys.path so `betledger` imports work when executed from anywhere
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from betledger.core.config import Config
from betledger.core.database import backup_database, initialize_database
from betledger.core.schema_validation import get_schema_summary, validate_schema


def database_files(db_path: Path) -> list:
    return [db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")]


def main() -> None:
    parser = argparse.ArgumentParser(description="Reset the development database")
    parser.add_argument("--empty", action="store_true", help="Create the schema without sample data")
    parser.add_argument("--yes", action="store_true", help="Skip confirmation prompt")
    parser.add_argument("--no-backup", action="store_true", help="Skip the backup of the existing DB")
    args = parser.parse_args()

    db_path = Path(Config.DB_PATH)

    print("\n=== Bet Ledger Dev Reset ===")
    print(f"Project root: {PROJECT_ROOT}")
    print(f"DB path: {db_path}")
    print("Mode: EMPTY (schema only)" if args.empty else "Mode: SEEDED (schema + sample data)")

    if not args.yes:
        try:
            confirm = input("Type 'RESET' to proceed: ").strip()
        except KeyboardInterrupt:
            print("\nAborted.")
            return
        if confirm.upper() != "RESET":
            print("Aborted.")
            return

    if db_path.exists() and not args.no_backup:
        backup_path = f"{db_path}.bak"
        backup_database(backup_path, str(db_path))
        print(f"Backed up: {backup_path}")

    for path in database_files(db_path):
        if path.exists():
            path.unlink()
            print(f"Deleted: {path}")

    conn = initialize_database(seed=not args.empty)
    try:
        validate_schema(conn)
        summary = get_schema_summary(conn)
    finally:
        conn.close()

    print("Reinitialized database")
    for table, count in summary["tables"].items():
        print(f"  {table}: {count} rows")

    print("\nReset complete.")


if __name__ == "__main__":
    main()

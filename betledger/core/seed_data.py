"""
Seed data insertion for the bet ledger.

This module inserts sample accounts, matches and opening odds for local
development. Accounts are funded through completed ledger deposits so every
seeded balance is backed by its transaction history.
"""

import sqlite3
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List

from betledger.domain.models import TransactionKind
from betledger.repositories.match_repository import MatchRepository
from betledger.services.ledger_store import LedgerStore
from betledger.services.odds_registry import OddsRegistry
from betledger.utils.datetime_helpers import utc_now

SEED_ACCOUNTS: List[Dict[str, Any]] = [
    {"id": "seed_account_demo", "display_name": "Demo Player", "opening_deposit": Decimal("1000.00")},
    {"id": "seed_account_high", "display_name": "High Roller", "opening_deposit": Decimal("25000.00")},
    {"id": "seed_account_new", "display_name": "New Player", "opening_deposit": None},
]

# (home, away, league, hours until kick-off, home/draw/away odds)
SEED_MATCHES = [
    ("Arsenal", "Chelsea", "Premier League", 26, ("2.10", "3.40", "3.50")),
    ("Manchester City", "Liverpool", "Premier League", 50, ("1.95", "3.60", "3.90")),
    ("Tottenham", "Manchester United", "Premier League", 74, ("2.40", "3.30", "2.90")),
    ("Real Madrid", "Barcelona", "La Liga", 20, ("2.25", "3.50", "3.10")),
    ("Atletico Madrid", "Sevilla", "La Liga", 44, ("1.80", "3.40", "4.60")),
    ("Valencia", "Real Sociedad", "La Liga", 70, ("2.60", "3.10", "2.80")),
    ("Bayern Munich", "PSG", "Champions League", 6, ("1.90", "3.80", "3.70")),
    ("Inter Milan", "Real Madrid", "Champions League", 98, ("2.70", "3.20", "2.65")),
    ("Manchester City", "Borussia Dortmund", "Champions League", 122, ("1.55", "4.30", "5.75")),
]


def insert_seed_data(conn: sqlite3.Connection) -> None:
    """
    Insert all seed data into the database.

    Re-running is safe: rows that already exist are left alone.

    Args:
        conn: SQLite database connection.
    """
    account_ids = insert_accounts(conn)
    match_ids = insert_matches(conn)

    print(f"Seed data inserted successfully ({len(account_ids)} accounts, {len(match_ids)} matches)")


def insert_accounts(conn: sqlite3.Connection) -> List[str]:
    """
    Create the sample accounts and fund them with completed deposits.

    Returns:
        Ids of the accounts created by this call.
    """
    ledger = LedgerStore(conn)
    created = []

    for account in SEED_ACCOUNTS:
        exists = conn.execute(
            "SELECT 1 FROM accounts WHERE id = ?", (account["id"],)
        ).fetchone()
        if exists:
            continue

        ledger.create_account(account["display_name"], account_id=account["id"])
        if account["opening_deposit"]:
            ledger.apply_entry(
                account["id"],
                TransactionKind.DEPOSIT,
                account["opening_deposit"],
                reference="seed_opening_deposit",
            )
        created.append(account["id"])

    return created


def insert_matches(conn: sqlite3.Connection) -> List[str]:
    """
    Create upcoming sample matches with an opening quote each.

    Returns:
        Ids of the matches created by this call.
    """
    matches = MatchRepository(conn)
    odds = OddsRegistry(conn)
    now = utc_now().replace(minute=0, second=0, microsecond=0)
    created = []

    for index, (home, away, league, hours, prices) in enumerate(SEED_MATCHES, start=1):
        match_id = f"seed_match_{index}"
        if matches.find_match(match_id) is not None:
            continue

        matches.create_match(
            home,
            away,
            league,
            now + timedelta(hours=hours),
            match_id=match_id,
        )
        odds.publish_quote(match_id, *prices, source="admin")
        created.append(match_id)

    return created


def get_seed_data_summary(conn: sqlite3.Connection) -> Dict[str, int]:
    """
    Count the rows present in each seeded table.

    Returns:
        Dictionary of table name to row count.
    """
    return {
        table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        for table in ("accounts", "matches", "odds_quotes", "transactions")
    }

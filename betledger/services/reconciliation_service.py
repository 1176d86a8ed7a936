"""
Reconciliation checks for the ledger.

An account is consistent when its stored balance equals the sum of its
completed ledger entries. Pending deposits and withdrawals are reported
alongside for context but never count toward the balance.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from betledger.core.database import get_db_connection
from betledger.domain.errors import NotFound
from betledger.utils.logging_config import get_logger
from betledger.utils.money import from_minor


logger = get_logger(__name__)


@dataclass
class AccountReconciliation:
    """Balance versus ledger snapshot for one account."""

    account_id: str
    display_name: Optional[str]
    balance: Decimal
    ledger_total: Decimal
    pending_deposits: Decimal
    pending_withdrawals: Decimal

    @property
    def difference(self) -> Decimal:
        return self.balance - self.ledger_total

    @property
    def is_consistent(self) -> bool:
        return self.difference == 0

    @property
    def status(self) -> str:
        return "balanced" if self.is_consistent else "mismatch"


_RECONCILIATION_QUERY = """
    SELECT
        a.id AS account_id,
        a.display_name,
        a.balance_minor,
        COALESCE(SUM(CASE WHEN t.status = 'completed' THEN t.amount_minor ELSE 0 END), 0)
            AS ledger_minor,
        COALESCE(SUM(CASE WHEN t.status = 'pending' AND t.kind = 'deposit'
                          THEN t.amount_minor ELSE 0 END), 0) AS pending_deposit_minor,
        COALESCE(SUM(CASE WHEN t.status = 'pending' AND t.kind = 'withdrawal'
                          THEN -t.amount_minor ELSE 0 END), 0) AS pending_withdrawal_minor
    FROM accounts a
    LEFT JOIN transactions t ON t.account_id = a.id
"""


class ReconciliationService:
    """Compares stored balances with the ledger entries behind them."""

    def __init__(self, db: Optional[sqlite3.Connection] = None) -> None:
        self._owns_connection = db is None
        self.db = db or get_db_connection()

    def close(self) -> None:
        """Close the managed database connection if owned by the service."""
        if self._owns_connection:
            self.db.close()

    def check_account(self, account_id: str) -> AccountReconciliation:
        row = self.db.execute(
            _RECONCILIATION_QUERY + " WHERE a.id = ? GROUP BY a.id", (account_id,)
        ).fetchone()
        if row is None:
            raise NotFound("Account not found", account_id=account_id)
        return self._from_row(row)

    def check_all(self) -> List[AccountReconciliation]:
        """
        Reconcile every account.

        Mismatches are logged at error level; callers decide what to do
        with them.
        """
        rows = self.db.execute(
            _RECONCILIATION_QUERY + " GROUP BY a.id ORDER BY a.created_at ASC"
        ).fetchall()
        results = [self._from_row(row) for row in rows]

        mismatches = [result for result in results if not result.is_consistent]
        for result in mismatches:
            logger.error(
                "ledger_mismatch_detected",
                account_id=result.account_id,
                balance=str(result.balance),
                ledger_total=str(result.ledger_total),
                difference=str(result.difference),
            )

        logger.info(
            "reconciliation_completed",
            accounts=len(results),
            mismatches=len(mismatches),
        )
        return results

    @staticmethod
    def _from_row(row: sqlite3.Row) -> AccountReconciliation:
        return AccountReconciliation(
            account_id=row["account_id"],
            display_name=row["display_name"],
            balance=from_minor(row["balance_minor"]),
            ledger_total=from_minor(row["ledger_minor"]),
            pending_deposits=from_minor(row["pending_deposit_minor"]),
            pending_withdrawals=from_minor(row["pending_withdrawal_minor"]),
        )

"""
Ledger store: account balances and the transaction entries that explain them.

Every change to ``accounts.balance_minor`` goes through this module, paired
with the transaction row that records it, inside one atomic unit. The sum of
an account's completed entries therefore always equals its balance.
"""

from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Tuple

from betledger.core.database import get_db_connection
from betledger.domain.errors import (
    InsufficientFunds,
    InvalidAmount,
    NotFound,
    TransactionNotPending,
)
from betledger.domain.models import (
    RECENT_ACTIVITY_DAYS,
    Account,
    AccountStats,
    EventType,
    TransactionKind,
    TransactionRecord,
    TransactionStatus,
)
from betledger.repositories.outbox_repository import OutboxRepository
from betledger.utils.database_utils import transactional
from betledger.utils.datetime_helpers import format_utc_iso, utc_now
from betledger.utils.logging_config import get_logger
from betledger.utils.money import from_minor, to_minor


logger = get_logger(__name__)


class LedgerStore:
    """Sole writer of account balances and ledger entries."""

    def __init__(
        self,
        db: Optional[sqlite3.Connection] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._owns_connection = db is None
        self.db = db or get_db_connection()
        self.outbox = OutboxRepository(self.db)
        self._clock = clock

    def close(self) -> None:
        """Close the managed database connection if owned by the store."""
        if not self._owns_connection:
            return
        self.db.close()

    # Accounts -------------------------------------------------------------------

    def create_account(
        self,
        display_name: Optional[str] = None,
        *,
        account_id: Optional[str] = None,
    ) -> Account:
        """Create an empty account. Funds only arrive through ledger entries."""
        account_id = account_id or str(uuid.uuid4())
        now = self._now()

        with transactional(self.db) as conn:
            conn.execute(
                """
                INSERT INTO accounts (id, display_name, balance_minor, created_at, updated_at)
                VALUES (?, ?, 0, ?, ?)
                """,
                (account_id, display_name, now, now),
            )

        logger.info("account_created", account_id=account_id)
        return self.get_account(account_id)

    def get_account(self, account_id: str) -> Account:
        row = self.db.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
        if row is None:
            raise NotFound("Account not found", account_id=account_id)
        return Account.from_row(row)

    def get_balance(self, account_id: str) -> Decimal:
        """
        Current balance of an account.

        Raises:
            NotFound: If the account does not exist.
        """
        return self.get_account(account_id).balance

    # Entries --------------------------------------------------------------------

    def apply_entry(
        self,
        account_id: str,
        kind: TransactionKind,
        signed_amount: Decimal,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        reference: Optional[str] = None,
    ) -> TransactionRecord:
        """
        Record a ledger entry and, when completed, move the balance with it.

        Runs as its own atomic unit, or joins the caller's unit when one is
        already open on this connection.

        Raises:
            NotFound: Unknown account.
            InsufficientFunds: The balance would go below zero.
            InvalidAmount: Zero amount or a sign that contradicts the kind.
        """
        kind = TransactionKind(kind)
        status = TransactionStatus(status)
        try:
            amount_minor = to_minor(signed_amount)
        except ValueError as exc:
            raise InvalidAmount(f"Ledger amount must be a finite number, got {signed_amount!r}") from exc
        self._check_sign(kind, amount_minor)

        transaction_id = str(uuid.uuid4())
        now = self._now()

        with transactional(self.db) as conn:
            balance_minor = self._locked_balance(conn, account_id)

            if status == TransactionStatus.COMPLETED:
                balance_minor = self._move_balance(
                    conn, account_id, balance_minor, amount_minor, now
                )

            conn.execute(
                """
                INSERT INTO transactions (
                    id, account_id, kind, amount_minor, status, reference, created_at, completed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    transaction_id,
                    account_id,
                    kind.value,
                    amount_minor,
                    status.value,
                    reference,
                    now,
                    now if status == TransactionStatus.COMPLETED else None,
                ),
            )

            if status == TransactionStatus.COMPLETED:
                self._record_balance_change(
                    account_id, transaction_id, kind, amount_minor, balance_minor, now
                )

        logger.info(
            "ledger_entry_applied",
            transaction_id=transaction_id,
            account_id=account_id,
            kind=kind.value,
            amount=str(from_minor(amount_minor)),
            status=status.value,
            reference=reference,
        )
        return self.get_transaction(transaction_id)

    def complete_entry(self, transaction_id: str) -> TransactionRecord:
        """
        Advance a pending entry to completed and apply it to the balance.

        Raises:
            NotFound: Unknown transaction.
            TransactionNotPending: Entry already completed or failed.
            InsufficientFunds: A pending debit no longer fits the balance.
        """
        now = self._now()

        with transactional(self.db) as conn:
            entry = self._locked_pending_entry(conn, transaction_id)
            amount_minor = to_minor(entry.amount)

            balance_minor = self._locked_balance(conn, entry.account_id)
            balance_minor = self._move_balance(
                conn, entry.account_id, balance_minor, amount_minor, now
            )

            conn.execute(
                "UPDATE transactions SET status = 'completed', completed_at = ? WHERE id = ?",
                (now, transaction_id),
            )
            self._record_balance_change(
                entry.account_id, transaction_id, entry.kind, amount_minor, balance_minor, now
            )

        logger.info(
            "ledger_entry_completed",
            transaction_id=transaction_id,
            account_id=entry.account_id,
            kind=entry.kind.value,
            amount=str(entry.amount),
        )
        return self.get_transaction(transaction_id)

    def fail_entry(self, transaction_id: str, reason: Optional[str] = None) -> TransactionRecord:
        """
        Mark a pending entry as failed. The balance is untouched.

        Raises:
            NotFound: Unknown transaction.
            TransactionNotPending: Entry already completed or failed.
        """
        now = self._now()

        with transactional(self.db) as conn:
            entry = self._locked_pending_entry(conn, transaction_id)
            conn.execute(
                "UPDATE transactions SET status = 'failed', completed_at = ? WHERE id = ?",
                (now, transaction_id),
            )
            self.outbox.append(
                EventType.TRANSACTION_FAILED,
                {
                    "transaction_id": transaction_id,
                    "kind": entry.kind.value,
                    "amount": str(entry.amount),
                    "reason": reason,
                },
                account_id=entry.account_id,
                created_at=now,
            )

        logger.warning(
            "ledger_entry_failed",
            transaction_id=transaction_id,
            account_id=entry.account_id,
            kind=entry.kind.value,
            reason=reason,
        )
        return self.get_transaction(transaction_id)

    # Queries --------------------------------------------------------------------

    def find_transaction(self, transaction_id: str) -> Optional[TransactionRecord]:
        row = self.db.execute(
            "SELECT * FROM transactions WHERE id = ?", (transaction_id,)
        ).fetchone()
        return TransactionRecord.from_row(row) if row else None

    def get_transaction(
        self, transaction_id: str, account_id: Optional[str] = None
    ) -> TransactionRecord:
        """Fetch one entry; when ``account_id`` is given it must own the entry."""
        record = self.find_transaction(transaction_id)
        if record is None or (account_id is not None and record.account_id != account_id):
            raise NotFound("Transaction not found", transaction_id=transaction_id)
        return record

    def list_transactions(
        self,
        account_id: str,
        *,
        kinds: Optional[Iterable[TransactionKind]] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[TransactionRecord], int]:
        """
        Page through an account's entries, newest first.

        Returns:
            (entries on the requested page, total matching entries)
        """
        page = max(1, page)
        limit = max(1, limit)

        where = "WHERE account_id = ?"
        params: list = [account_id]

        kind_values = [TransactionKind(kind).value for kind in kinds] if kinds else []
        if kind_values:
            where += f" AND kind IN ({', '.join('?' for _ in kind_values)})"
            params.extend(kind_values)

        total = self.db.execute(
            f"SELECT COUNT(*) AS cnt FROM transactions {where}", params
        ).fetchone()["cnt"]

        cursor = self.db.execute(
            f"""
            SELECT * FROM transactions {where}
            ORDER BY created_at DESC, rowid DESC
            LIMIT ? OFFSET ?
            """,
            [*params, limit, (page - 1) * limit],
        )
        return [TransactionRecord.from_row(row) for row in cursor.fetchall()], total

    def completed_total(self, account_id: str) -> Decimal:
        """Sum of completed entry amounts; always equals the balance."""
        row = self.db.execute(
            """
            SELECT COALESCE(SUM(amount_minor), 0) AS total
            FROM transactions
            WHERE account_id = ? AND status = 'completed'
            """,
            (account_id,),
        ).fetchone()
        return from_minor(row["total"])

    def pending_total(self, account_id: str, kind: TransactionKind) -> Decimal:
        row = self.db.execute(
            """
            SELECT COALESCE(SUM(amount_minor), 0) AS total
            FROM transactions
            WHERE account_id = ? AND status = 'pending' AND kind = ?
            """,
            (account_id, TransactionKind(kind).value),
        ).fetchone()
        return from_minor(row["total"])

    def account_stats(self, account_id: str) -> AccountStats:
        """
        Completed deposit and withdrawal totals plus recent ledger activity.

        Raises:
            NotFound: Unknown account.
        """
        self.get_account(account_id)
        recent_since = format_utc_iso(self._clock() - timedelta(days=RECENT_ACTIVITY_DAYS))

        row = self.db.execute(
            """
            SELECT
                COALESCE(SUM(CASE WHEN kind = 'deposit' AND status = 'completed'
                                  THEN amount_minor ELSE 0 END), 0) AS deposit_minor,
                COALESCE(SUM(CASE WHEN kind = 'withdrawal' AND status = 'completed'
                                  THEN -amount_minor ELSE 0 END), 0) AS withdrawal_minor,
                COALESCE(SUM(CASE WHEN created_at >= ? THEN 1 ELSE 0 END), 0) AS recent
            FROM transactions
            WHERE account_id = ?
            """,
            (recent_since, account_id),
        ).fetchone()

        deposits = from_minor(row["deposit_minor"])
        withdrawals = from_minor(row["withdrawal_minor"])
        return AccountStats(
            account_id=account_id,
            total_deposits=deposits,
            total_withdrawals=withdrawals,
            net_deposits=deposits - withdrawals,
            transactions_last_30_days=row["recent"],
        )

    # Internals ------------------------------------------------------------------

    @staticmethod
    def _check_sign(kind: TransactionKind, amount_minor: int) -> None:
        if amount_minor == 0:
            raise InvalidAmount("Ledger entries must move a non-zero amount")
        if kind in (TransactionKind.DEPOSIT, TransactionKind.BET_WIN) and amount_minor < 0:
            raise InvalidAmount(f"{kind.value} entries must be credits")
        if kind == TransactionKind.WITHDRAWAL and amount_minor > 0:
            raise InvalidAmount("withdrawal entries must be debits")

    @staticmethod
    def _locked_balance(conn: sqlite3.Connection, account_id: str) -> int:
        row = conn.execute(
            "SELECT balance_minor FROM accounts WHERE id = ?", (account_id,)
        ).fetchone()
        if row is None:
            raise NotFound("Account not found", account_id=account_id)
        return row["balance_minor"]

    @staticmethod
    def _locked_pending_entry(
        conn: sqlite3.Connection, transaction_id: str
    ) -> TransactionRecord:
        row = conn.execute(
            "SELECT * FROM transactions WHERE id = ?", (transaction_id,)
        ).fetchone()
        if row is None:
            raise NotFound("Transaction not found", transaction_id=transaction_id)
        entry = TransactionRecord.from_row(row)
        if entry.status != TransactionStatus.PENDING:
            raise TransactionNotPending(
                f"Transaction is already {entry.status.value}",
                transaction_id=transaction_id,
            )
        return entry

    @staticmethod
    def _move_balance(
        conn: sqlite3.Connection,
        account_id: str,
        balance_minor: int,
        amount_minor: int,
        now: str,
    ) -> int:
        new_balance = balance_minor + amount_minor
        if new_balance < 0:
            raise InsufficientFunds(
                account_id=account_id,
                balance=from_minor(balance_minor),
                requested=from_minor(-amount_minor),
            )
        conn.execute(
            "UPDATE accounts SET balance_minor = ?, updated_at = ? WHERE id = ?",
            (new_balance, now, account_id),
        )
        return new_balance

    def _record_balance_change(
        self,
        account_id: str,
        transaction_id: str,
        kind: TransactionKind,
        amount_minor: int,
        balance_minor: int,
        now: str,
    ) -> None:
        self.outbox.append(
            EventType.BALANCE_CHANGED,
            {
                "transaction_id": transaction_id,
                "kind": kind.value,
                "amount": str(from_minor(amount_minor)),
                "balance": str(from_minor(balance_minor)),
            },
            account_id=account_id,
            created_at=now,
        )

    def _now(self) -> str:
        return format_utc_iso(self._clock())


__all__ = ["LedgerStore"]

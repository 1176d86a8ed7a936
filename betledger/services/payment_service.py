"""
Two-phase deposits and withdrawals.

A payment starts as a pending ledger entry and only touches the balance when
an external confirmation advances it to ``completed``. Rejection marks the
entry ``failed`` and leaves the balance alone.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from betledger.core.config import Config
from betledger.core.database import get_db_connection
from betledger.domain.errors import (
    InsufficientFunds,
    InvalidAmount,
    LedgerError,
    PendingBetsOutstanding,
)
from betledger.domain.models import TransactionKind, TransactionRecord, TransactionStatus
from betledger.services.ledger_store import LedgerStore
from betledger.utils.database_utils import transactional
from betledger.utils.datetime_helpers import utc_now
from betledger.utils.logging_config import get_logger
from betledger.utils.money import parse_cents

logger = get_logger(__name__)


@dataclass(frozen=True)
class PaymentMethod:
    id: str
    name: str
    type: str
    min_amount: Decimal
    max_amount: Decimal
    processing_time: str
    fees: str
    available: bool = True

    def as_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "min_amount": str(self.min_amount),
            "max_amount": str(self.max_amount),
            "processing_time": self.processing_time,
            "fees": self.fees,
            "available": self.available,
        }


PAYMENT_METHODS: Tuple[PaymentMethod, ...] = (
    PaymentMethod(
        id="card",
        name="Credit/Debit Card",
        type="card",
        min_amount=Decimal("10"),
        max_amount=Decimal("50000"),
        processing_time="Instant",
        fees="2.5%",
    ),
    PaymentMethod(
        id="bank_transfer",
        name="Bank Transfer",
        type="bank",
        min_amount=Decimal("50"),
        max_amount=Decimal("100000"),
        processing_time="1-3 business days",
        fees="Free",
    ),
    PaymentMethod(
        id="mobile_money",
        name="Mobile Money",
        type="mobile",
        min_amount=Decimal("10"),
        max_amount=Decimal("25000"),
        processing_time="Instant",
        fees="1.5%",
    ),
)

PAYMENT_KINDS = (TransactionKind.DEPOSIT, TransactionKind.WITHDRAWAL)


class PaymentService:
    """Deposits and withdrawals on top of the ledger store."""

    def __init__(
        self,
        db: Optional[sqlite3.Connection] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        methods: Tuple[PaymentMethod, ...] = PAYMENT_METHODS,
    ) -> None:
        self._owns_connection = db is None
        self.db = db or get_db_connection()
        self.ledger = LedgerStore(self.db, clock=clock)
        self._clock = clock
        self._methods = {method.id: method for method in methods}

    def close(self) -> None:
        if self._owns_connection:
            self.db.close()

    def payment_methods(self) -> List[PaymentMethod]:
        return list(self._methods.values())

    def initiate_deposit(self, account_id: str, amount, method: str = "card") -> TransactionRecord:
        """
        Record a pending deposit awaiting processor confirmation.

        Raises:
            InvalidAmount: Outside deposit limits or the method's range.
            NotFound: Unknown account.
        """
        amount = self._validated_amount(
            amount, method, Config.MIN_DEPOSIT, Config.MAX_DEPOSIT, "Deposit"
        )

        record = self.ledger.apply_entry(
            account_id,
            TransactionKind.DEPOSIT,
            amount,
            status=TransactionStatus.PENDING,
            reference=self._reference("dep", account_id),
        )

        logger.info(
            "deposit_initiated",
            transaction_id=record.id,
            account_id=account_id,
            amount=str(amount),
            method=method,
        )
        return record

    def initiate_withdrawal(
        self, account_id: str, amount, method: str = "bank_transfer"
    ) -> TransactionRecord:
        """
        Record a pending withdrawal.

        The balance is only debited on confirmation, but funds already
        promised to other pending withdrawals count against it here.

        Raises:
            InvalidAmount: Outside withdrawal limits or the method's range.
            NotFound: Unknown account.
            PendingBetsOutstanding: The account has unsettled bets.
            InsufficientFunds: Balance minus pending withdrawals is too low.
        """
        amount = self._validated_amount(
            amount, method, Config.MIN_WITHDRAWAL, Config.MAX_WITHDRAWAL, "Withdrawal"
        )

        try:
            with transactional(self.db) as conn:
                balance = self.ledger.get_balance(account_id)

                pending_bets = conn.execute(
                    "SELECT COUNT(*) AS cnt FROM bets WHERE account_id = ? AND status = 'pending'",
                    (account_id,),
                ).fetchone()["cnt"]
                if pending_bets:
                    raise PendingBetsOutstanding(account_id=account_id, pending_bets=pending_bets)

                held = -self.ledger.pending_total(account_id, TransactionKind.WITHDRAWAL)
                if balance - held < amount:
                    raise InsufficientFunds(
                        account_id=account_id,
                        balance=balance,
                        held=held,
                        requested=amount,
                    )

                record = self.ledger.apply_entry(
                    account_id,
                    TransactionKind.WITHDRAWAL,
                    -amount,
                    status=TransactionStatus.PENDING,
                    reference=self._reference("wth", account_id),
                )
        except LedgerError as exc:
            logger.warning(
                "withdrawal_rejected",
                account_id=account_id,
                amount=str(amount),
                kind=exc.kind,
                error=exc.message,
            )
            raise

        logger.info(
            "withdrawal_initiated",
            transaction_id=record.id,
            account_id=account_id,
            amount=str(amount),
            method=method,
        )
        return record

    def confirm_transaction(self, transaction_id: str) -> TransactionRecord:
        """
        Processor confirmation: pending -> completed.

        A withdrawal the balance can no longer cover is marked failed and
        ``InsufficientFunds`` is raised.
        """
        try:
            return self.ledger.complete_entry(transaction_id)
        except InsufficientFunds:
            self.ledger.fail_entry(transaction_id, reason="insufficient_funds")
            raise

    def reject_transaction(self, transaction_id: str, reason: Optional[str] = None) -> TransactionRecord:
        """Processor rejection: pending -> failed."""
        return self.ledger.fail_entry(transaction_id, reason=reason or "rejected")

    def get_transaction(self, account_id: str, transaction_id: str) -> TransactionRecord:
        return self.ledger.get_transaction(transaction_id, account_id=account_id)

    def payment_history(
        self,
        account_id: str,
        *,
        kind: Optional[TransactionKind] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[TransactionRecord], int]:
        """Deposits and withdrawals only, newest first."""
        kinds = [TransactionKind(kind)] if kind in PAYMENT_KINDS else list(PAYMENT_KINDS)
        return self.ledger.list_transactions(account_id, kinds=kinds, page=page, limit=limit)

    def _validated_amount(
        self,
        amount,
        method: str,
        minimum: Decimal,
        maximum: Decimal,
        label: str,
    ) -> Decimal:
        try:
            amount = parse_cents(amount)
        except ValueError as exc:
            raise InvalidAmount(f"{label} amount must be a finite amount in whole cents") from exc

        if amount < minimum or amount > maximum:
            raise InvalidAmount(
                f"{label} amount must be between {minimum} and {maximum}", amount=amount
            )

        payment_method = self._methods.get(method)
        if payment_method is None or not payment_method.available:
            raise InvalidAmount(f"Unknown payment method: {method}", method=method)
        if amount < payment_method.min_amount or amount > payment_method.max_amount:
            raise InvalidAmount(
                f"{payment_method.name} accepts amounts between "
                f"{payment_method.min_amount} and {payment_method.max_amount}",
                amount=amount,
                method=method,
            )
        return amount

    def _reference(self, prefix: str, account_id: str) -> str:
        epoch_ms = int(self._clock().timestamp() * 1000)
        return f"{prefix}_{epoch_ms}_{account_id[-6:]}"

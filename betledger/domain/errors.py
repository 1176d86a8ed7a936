"""
Typed error taxonomy for ledger, odds and bet operations.

Every error carries a stable machine-readable ``kind`` plus a human message;
the caller layer decides how to map kinds onto HTTP statuses.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for all domain errors raised by the engine."""

    kind = "ledger_error"
    default_message = "Ledger operation failed"

    def __init__(self, message: Optional[str] = None, **context: Any) -> None:
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialisable representation for the caller layer."""
        payload: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.context:
            payload["context"] = {key: str(value) for key, value in self.context.items()}
        return payload


class NotFound(LedgerError):
    kind = "not_found"
    default_message = "Resource not found"


class InsufficientFunds(LedgerError):
    kind = "insufficient_funds"
    default_message = "Insufficient balance"


class InvalidStake(LedgerError):
    kind = "invalid_stake"
    default_message = "Stake is outside the allowed range"


class InvalidOdds(LedgerError):
    kind = "invalid_odds"
    default_message = "Odds are below the allowed minimum"


class OddsChanged(LedgerError):
    """Quoted odds no longer match the latest published quote."""

    kind = "odds_changed"
    default_message = "Odds have changed, please resubmit with the current price"


class MatchNotOpen(LedgerError):
    kind = "match_not_open"
    default_message = "Betting is not available for this match"


class BettingWindowClosed(LedgerError):
    kind = "betting_window_closed"
    default_message = "Betting closed - match starts soon"


class CannotCancel(LedgerError):
    kind = "cannot_cancel"
    default_message = "Cannot cancel this bet"


class MatchClosed(LedgerError):
    kind = "match_closed"
    default_message = "Cannot update odds for finished match"


class MatchNotFinished(LedgerError):
    kind = "match_not_finished"
    default_message = "Match has not finished yet"


class InvalidMatchUpdate(LedgerError):
    kind = "invalid_match_update"
    default_message = "Invalid match update"


class InvalidAmount(LedgerError):
    kind = "invalid_amount"
    default_message = "Amount is outside the allowed range"


class PendingBetsOutstanding(LedgerError):
    kind = "pending_bets_outstanding"
    default_message = "Cannot withdraw with pending bets"


class TransactionNotPending(LedgerError):
    kind = "transaction_not_pending"
    default_message = "Only pending transactions can be confirmed or rejected"


class StorageConflict(LedgerError):
    """Transient contention on the atomic unit. Safe to retry; nothing was applied."""

    kind = "storage_conflict"
    default_message = "The ledger is busy, please retry"


class StorageTimeout(StorageConflict):
    kind = "storage_timeout"
    default_message = "The ledger operation timed out and was rolled back"


class TransactionError(LedgerError):
    """Raised when a database transaction fails for an unexpected reason."""

    kind = "storage_error"
    default_message = "Database transaction failed"


__all__ = [
    "BettingWindowClosed",
    "CannotCancel",
    "InsufficientFunds",
    "InvalidAmount",
    "InvalidMatchUpdate",
    "InvalidOdds",
    "InvalidStake",
    "LedgerError",
    "MatchClosed",
    "MatchNotFinished",
    "MatchNotOpen",
    "NotFound",
    "OddsChanged",
    "PendingBetsOutstanding",
    "StorageConflict",
    "StorageTimeout",
    "TransactionError",
    "TransactionNotPending",
]

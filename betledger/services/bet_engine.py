"""
Bet engine: placement, cancellation and settlement of single 1X2 bets.

Bet lifecycle::

    pending -> won | lost | cancelled     (all terminal)

Each operation is one atomic unit covering the bet row, the ledger entry that
moves the stake or payout, and the outbox event describing the change. The
engine never retries; a failed operation leaves no partial state behind.
"""

from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, List, Optional, Tuple

from betledger.core.database import get_db_connection
from betledger.domain.errors import (
    BettingWindowClosed,
    CannotCancel,
    InsufficientFunds,
    InvalidOdds,
    InvalidStake,
    LedgerError,
    MatchNotFinished,
    MatchNotOpen,
    NotFound,
    OddsChanged,
)
from betledger.domain.models import (
    RECENT_ACTIVITY_DAYS,
    Bet,
    BetStatus,
    BetSummary,
    BettingPolicy,
    EventType,
    Match,
    MatchStatus,
    Selection,
    TransactionKind,
    parse_decimal_odds,
)
from betledger.repositories.match_repository import MatchRepository
from betledger.repositories.outbox_repository import OutboxRepository
from betledger.services.ledger_store import LedgerStore
from betledger.services.notification_service import EventDispatcher
from betledger.services.odds_registry import OddsRegistry
from betledger.utils.database_utils import transactional
from betledger.utils.datetime_helpers import format_utc_iso, utc_now
from betledger.utils.logging_config import get_logger
from betledger.utils.money import (
    TWO_PLACES,
    from_minor,
    parse_cents,
    quantize_currency,
    to_decimal,
    to_minor,
)


logger = get_logger(__name__)


class BetEngine:
    """Sole writer of the bets table."""

    def __init__(
        self,
        db: Optional[sqlite3.Connection] = None,
        *,
        policy: Optional[BettingPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
        dispatcher: Optional[EventDispatcher] = None,
    ) -> None:
        self._owns_connection = db is None
        self.db = db or get_db_connection()
        self.policy = policy or BettingPolicy.from_config()
        self._clock = clock
        self.ledger = LedgerStore(self.db, clock=clock)
        self.odds = OddsRegistry(self.db, policy=self.policy, clock=clock)
        self.matches = MatchRepository(self.db, clock=clock)
        self.outbox = OutboxRepository(self.db)
        self.dispatcher = dispatcher

    def close(self) -> None:
        """Close the managed database connection if owned by the engine."""
        if self._owns_connection:
            self.db.close()

    def __enter__(self) -> "BetEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    def place_bet(
        self,
        account_id: str,
        match_id: str,
        selection: Selection,
        stake,
        quoted_odds,
    ) -> Bet:
        """
        Place a pending bet and debit its stake.

        Policy checks run before the atomic unit; everything that reads
        balances, match state or quotes runs inside it.

        Raises:
            InvalidStake / InvalidOdds: Not finite, a stake finer than cents,
                or outside the configured policy ranges.
            NotFound: Unknown account or match.
            InsufficientFunds: Balance below the stake.
            MatchNotOpen: Match is live or finished.
            BettingWindowClosed: Match starts within the betting window.
            OddsChanged: Latest-odds enforcement is on and the price moved.
        """
        selection = Selection(selection)
        try:
            stake = parse_cents(stake)
        except ValueError as exc:
            raise InvalidStake(
                f"Stake must be a finite amount in whole cents, got {stake!r}", stake=str(stake)
            ) from exc
        odds = parse_decimal_odds(quoted_odds)

        try:
            self.policy.check_stake(stake)
            self.policy.check_odds(odds)
            bet_id = str(uuid.uuid4())
            now = self._clock()
            try:
                potential_win = quantize_currency(stake * odds)
            except ValueError as exc:
                raise InvalidOdds("Odds are too large to price this stake", odds=odds) from exc

            with transactional(self.db) as conn:
                balance = self._balance_for_update(conn, account_id)
                if balance < stake:
                    raise InsufficientFunds(
                        account_id=account_id, balance=balance, requested=stake
                    )

                match = self._match_for_update(conn, match_id)
                if match.status != MatchStatus.UPCOMING:
                    raise MatchNotOpen(match_id=match_id, status=match.status.value)

                window = timedelta(minutes=self.policy.betting_window_minutes)
                if match.starts_at - now < window:
                    raise BettingWindowClosed(match_id=match_id, start_time=match.start_time)

                if self.policy.enforce_latest_odds:
                    latest = self.odds.latest_quote(match_id)
                    if latest is not None and latest.price_for(selection) != odds:
                        raise OddsChanged(
                            match_id=match_id,
                            quoted=odds,
                            current=latest.price_for(selection),
                        )

                placed_at = format_utc_iso(now)
                conn.execute(
                    """
                    INSERT INTO bets (
                        id, account_id, match_id, selection, odds,
                        stake_minor, potential_win_minor, status, placed_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?)
                    """,
                    (
                        bet_id,
                        account_id,
                        match_id,
                        selection.value,
                        str(odds),
                        to_minor(stake),
                        to_minor(potential_win),
                        placed_at,
                    ),
                )

                self.ledger.apply_entry(
                    account_id,
                    TransactionKind.BET_STAKE,
                    -stake,
                    reference=bet_id,
                )

                self.outbox.append(
                    EventType.BET_PLACED,
                    {
                        "bet_id": bet_id,
                        "match_id": match_id,
                        "selection": selection.value,
                        "odds": str(odds),
                        "stake": str(stake),
                        "potential_win": str(potential_win),
                    },
                    account_id=account_id,
                    created_at=placed_at,
                )
        except LedgerError as exc:
            logger.warning(
                "bet_place_rejected",
                account_id=account_id,
                match_id=match_id,
                kind=exc.kind,
                error=exc.message,
            )
            raise

        logger.info(
            "bet_placed",
            bet_id=bet_id,
            account_id=account_id,
            match_id=match_id,
            selection=selection.value,
            stake=str(stake),
            odds=str(odds),
            potential_win=str(potential_win),
        )
        self._notify()
        return self.get_bet(bet_id)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_bet(self, account_id: str, bet_id: str) -> Bet:
        """
        Cancel a pending bet before kick-off and refund its stake.

        Raises:
            NotFound: Bet missing or owned by another account.
            CannotCancel: Bet not pending, or its match is no longer open.
        """
        now = self._clock()
        settled_at = format_utc_iso(now)

        try:
            with transactional(self.db) as conn:
                bet = self._bet_for_update(conn, bet_id)
                if bet.account_id != account_id:
                    raise NotFound("Bet not found", bet_id=bet_id)
                if not bet.is_pending:
                    raise CannotCancel(
                        f"Bet is already {bet.status.value}", bet_id=bet_id
                    )

                match = self._match_for_update(conn, bet.match_id)
                if match.status != MatchStatus.UPCOMING or now >= match.starts_at:
                    raise CannotCancel(
                        "Cannot cancel bet - match has started", bet_id=bet_id
                    )

                conn.execute(
                    """
                    UPDATE bets SET status = 'cancelled', settled_at = ?
                    WHERE id = ? AND status = 'pending'
                    """,
                    (settled_at, bet_id),
                )

                self.ledger.apply_entry(
                    account_id,
                    TransactionKind.BET_STAKE,
                    bet.stake,
                    reference=f"refund_{bet_id}",
                )

                self.outbox.append(
                    EventType.BET_CANCELLED,
                    {"bet_id": bet_id, "match_id": bet.match_id, "refund": str(bet.stake)},
                    account_id=account_id,
                    created_at=settled_at,
                )
        except LedgerError as exc:
            logger.warning(
                "bet_cancel_rejected",
                bet_id=bet_id,
                account_id=account_id,
                kind=exc.kind,
                error=exc.message,
            )
            raise

        logger.info(
            "bet_cancelled",
            bet_id=bet_id,
            account_id=account_id,
            refund=str(bet.stake),
        )
        self._notify()
        return self.get_bet(bet_id)

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def settle_bet(self, bet_id: str, outcome: Selection) -> Bet:
        """
        Resolve a pending bet against the winning selection.

        A bet that already left ``pending`` is returned unchanged, so calling
        this twice can never credit a payout twice.

        Raises:
            NotFound: Unknown bet.
            MatchNotFinished: The bet's match has not finished.
        """
        outcome = Selection(outcome)
        settled_at = format_utc_iso(self._clock())

        with transactional(self.db) as conn:
            bet = self._bet_for_update(conn, bet_id)
            if not bet.is_pending:
                logger.info("bet_settle_skipped", bet_id=bet_id, status=bet.status.value)
                return bet

            match = self._match_for_update(conn, bet.match_id)
            if match.status != MatchStatus.FINISHED:
                raise MatchNotFinished(match_id=match.id, status=match.status.value)

            won = bet.selection == outcome
            status = BetStatus.WON if won else BetStatus.LOST

            conn.execute(
                """
                UPDATE bets SET status = ?, settled_at = ?
                WHERE id = ? AND status = 'pending'
                """,
                (status.value, settled_at, bet_id),
            )

            if won:
                self.ledger.apply_entry(
                    bet.account_id,
                    TransactionKind.BET_WIN,
                    bet.potential_win,
                    reference=bet_id,
                )

            self.outbox.append(
                EventType.BET_SETTLED,
                {
                    "bet_id": bet_id,
                    "match_id": bet.match_id,
                    "selection": bet.selection.value,
                    "outcome": outcome.value,
                    "status": status.value,
                    "payout": str(bet.potential_win if won else Decimal("0.00")),
                },
                account_id=bet.account_id,
                created_at=settled_at,
            )

        logger.info(
            "bet_settled",
            bet_id=bet_id,
            account_id=bet.account_id,
            status=status.value,
            payout=str(bet.potential_win) if won else "0.00",
        )
        self._notify()
        return self.get_bet(bet_id)

    def settle_match(self, match_id: str, outcome: Optional[Selection] = None) -> List[Bet]:
        """
        Settle every pending bet on a finished match.

        The outcome defaults to the one implied by the recorded score. Each
        bet is settled in its own unit; a bet settled concurrently elsewhere
        is simply skipped.
        """
        match = self.matches.get_match(match_id)
        if match.status != MatchStatus.FINISHED:
            raise MatchNotFinished(match_id=match_id, status=match.status.value)

        outcome = Selection(outcome) if outcome is not None else match.result
        if outcome is None:
            raise MatchNotFinished("Match has no recorded result", match_id=match_id)

        bet_ids = [
            row["id"]
            for row in self.db.execute(
                """
                SELECT id FROM bets
                WHERE match_id = ? AND status = 'pending'
                ORDER BY placed_at ASC
                """,
                (match_id,),
            ).fetchall()
        ]

        settled = [self.settle_bet(bet_id, outcome) for bet_id in bet_ids]

        logger.info(
            "match_settled",
            match_id=match_id,
            outcome=outcome.value,
            bets=len(settled),
            won=sum(1 for bet in settled if bet.status == BetStatus.WON),
        )
        return settled

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_bet(self, bet_id: str, account_id: Optional[str] = None) -> Bet:
        row = self.db.execute("SELECT * FROM bets WHERE id = ?", (bet_id,)).fetchone()
        if row is None or (account_id is not None and row["account_id"] != account_id):
            raise NotFound("Bet not found", bet_id=bet_id)
        return Bet.from_row(row)

    def list_bets(
        self,
        account_id: str,
        *,
        status: Optional[BetStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Bet], int]:
        """Page through an account's bets, newest first."""
        page = max(1, page)
        limit = max(1, limit)

        where = "WHERE account_id = ?"
        params: list = [account_id]
        if status is not None:
            where += " AND status = ?"
            params.append(BetStatus(status).value)

        total = self.db.execute(
            f"SELECT COUNT(*) AS cnt FROM bets {where}", params
        ).fetchone()["cnt"]

        cursor = self.db.execute(
            f"""
            SELECT * FROM bets {where}
            ORDER BY placed_at DESC
            LIMIT ? OFFSET ?
            """,
            [*params, limit, (page - 1) * limit],
        )
        return [Bet.from_row(row) for row in cursor.fetchall()], total

    def summary(self, account_id: str) -> BetSummary:
        """
        Betting statistics for an account.

        Net profit is total won minus total staked across every bet, as the
        account history shows it; the recent figures cover bets placed in the
        last ``RECENT_ACTIVITY_DAYS`` days.
        """
        recent_since = format_utc_iso(self._clock() - timedelta(days=RECENT_ACTIVITY_DAYS))
        row = self.db.execute(
            """
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END), 0) AS pending,
                COALESCE(SUM(CASE WHEN status = 'won' THEN 1 ELSE 0 END), 0) AS won,
                COALESCE(SUM(CASE WHEN status = 'lost' THEN 1 ELSE 0 END), 0) AS lost,
                COALESCE(SUM(CASE WHEN status = 'cancelled' THEN 1 ELSE 0 END), 0) AS cancelled,
                COALESCE(SUM(stake_minor), 0) AS staked_minor,
                COALESCE(SUM(CASE WHEN status = 'won' THEN potential_win_minor ELSE 0 END), 0)
                    AS won_minor,
                COALESCE(SUM(CASE WHEN placed_at >= ? THEN 1 ELSE 0 END), 0) AS recent,
                COALESCE(SUM(CASE WHEN placed_at >= ? THEN stake_minor ELSE 0 END), 0)
                    AS recent_staked_minor,
                COALESCE(SUM(CASE WHEN placed_at >= ? AND status = 'won' THEN 1 ELSE 0 END), 0)
                    AS recent_won
            FROM bets
            WHERE account_id = ?
            """,
            (recent_since, recent_since, recent_since, account_id),
        ).fetchone()

        finished = row["won"] + row["lost"]
        if finished:
            win_rate = (to_decimal(row["won"]) / finished * 100).quantize(
                TWO_PLACES, rounding=ROUND_HALF_UP
            )
        else:
            win_rate = Decimal("0.00")

        total_staked = from_minor(row["staked_minor"])
        total_won = from_minor(row["won_minor"])
        if row["total"]:
            average_stake = (total_staked / row["total"]).quantize(
                TWO_PLACES, rounding=ROUND_HALF_UP
            )
        else:
            average_stake = Decimal("0.00")

        return BetSummary(
            total_bets=row["total"],
            pending_bets=row["pending"],
            won_bets=row["won"],
            lost_bets=row["lost"],
            cancelled_bets=row["cancelled"],
            total_staked=total_staked,
            total_won=total_won,
            win_rate=win_rate,
            net_profit=total_won - total_staked,
            average_stake=average_stake,
            bets_last_30_days=row["recent"],
            staked_last_30_days=from_minor(row["recent_staked_minor"]),
            won_last_30_days=row["recent_won"],
        )


    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _balance_for_update(conn: sqlite3.Connection, account_id: str) -> Decimal:
        row = conn.execute(
            "SELECT balance_minor FROM accounts WHERE id = ?", (account_id,)
        ).fetchone()
        if row is None:
            raise NotFound("Account not found", account_id=account_id)
        return from_minor(row["balance_minor"])

    @staticmethod
    def _match_for_update(conn: sqlite3.Connection, match_id: str) -> Match:
        row = conn.execute("SELECT * FROM matches WHERE id = ?", (match_id,)).fetchone()
        if row is None:
            raise NotFound("Match not found", match_id=match_id)
        return Match.from_row(row)

    @staticmethod
    def _bet_for_update(conn: sqlite3.Connection, bet_id: str) -> Bet:
        row = conn.execute("SELECT * FROM bets WHERE id = ?", (bet_id,)).fetchone()
        if row is None:
            raise NotFound("Bet not found", bet_id=bet_id)
        return Bet.from_row(row)

    def _notify(self) -> None:
        """Best-effort delivery after commit; the ledger outcome stands regardless."""
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.dispatch_pending()
        except Exception:
            logger.exception("domain_event_dispatch_failed")

"""
Configuration management for the bet ledger.

This module handles loading and validating environment variables.
"""

import os
from decimal import Decimal, InvalidOperation
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _int_env(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float_env(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _decimal_env(key: str, default: str) -> Decimal:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return Decimal(default)
    try:
        return Decimal(value.strip())
    except InvalidOperation:
        return Decimal(default)


def _bool_env(key: str, default: str = "false") -> bool:
    return os.getenv(key, default).strip().lower() in ("1", "true", "yes", "y")


class Config:
    """Configuration class with environment variables."""

    # Database
    DB_PATH: str = os.getenv("DB_PATH", "data/betledger.db")
    # Seconds a unit waits for the write lock before giving up
    DB_BUSY_TIMEOUT_SECONDS: float = _float_env("DB_BUSY_TIMEOUT_SECONDS", 5.0)
    # Wall-clock bound for a single atomic unit
    DB_UNIT_TIMEOUT_SECONDS: float = _float_env("DB_UNIT_TIMEOUT_SECONDS", 10.0)

    # Betting policy
    MIN_STAKE: Decimal = _decimal_env("MIN_STAKE", "1")
    MAX_STAKE: Decimal = _decimal_env("MAX_STAKE", "10000")
    MIN_ODDS: Decimal = _decimal_env("MIN_ODDS", "1.01")
    BETTING_WINDOW_MINUTES: int = _int_env("BETTING_WINDOW_MINUTES", 5)
    ENFORCE_LATEST_ODDS: bool = _bool_env("ENFORCE_LATEST_ODDS")

    # Payments
    MIN_DEPOSIT: Decimal = _decimal_env("MIN_DEPOSIT", "10")
    MAX_DEPOSIT: Decimal = _decimal_env("MAX_DEPOSIT", "50000")
    MIN_WITHDRAWAL: Decimal = _decimal_env("MIN_WITHDRAWAL", "50")
    MAX_WITHDRAWAL: Decimal = _decimal_env("MAX_WITHDRAWAL", "50000")

    # Odds feed
    ODDS_API_KEY: Optional[str] = os.getenv("ODDS_API_KEY")
    ODDS_API_BASE_URL: str = os.getenv("ODDS_API_BASE_URL", "https://api.the-odds-api.com/v4")
    ODDS_API_SPORT: str = os.getenv("ODDS_API_SPORT", "soccer")
    ODDS_API_REGION: str = os.getenv("ODDS_API_REGION", "eu")
    ODDS_API_MARKET: str = os.getenv("ODDS_API_MARKET", "h2h")
    ODDS_API_TIMEOUT_SECONDS: float = _float_env("ODDS_API_TIMEOUT_SECONDS", 10.0)
    ODDS_CACHE_TTL_SECONDS: int = _int_env("ODDS_CACHE_TTL_SECONDS", 300)

    # Odds movements
    MOVEMENT_THRESHOLD: Decimal = _decimal_env("MOVEMENT_THRESHOLD", "0.1")

    # Outbox delivery
    OUTBOX_MAX_ATTEMPTS: int = _int_env("OUTBOX_MAX_ATTEMPTS", 5)
    OUTBOX_BATCH_SIZE: int = _int_env("OUTBOX_BATCH_SIZE", 100)

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls) -> None:
        """
        Validate that required configuration is present and consistent.

        Raises:
            ValueError: If configuration is missing or contradictory.
        """
        if not cls.DB_PATH:
            raise ValueError("DB_PATH must be configured")

        if cls.MIN_STAKE <= 0 or cls.MIN_STAKE > cls.MAX_STAKE:
            raise ValueError("MIN_STAKE must be positive and not exceed MAX_STAKE")

        if cls.MIN_ODDS <= 1:
            raise ValueError("MIN_ODDS must be greater than 1")

        if cls.BETTING_WINDOW_MINUTES < 0:
            raise ValueError("BETTING_WINDOW_MINUTES cannot be negative")

        if cls.MIN_DEPOSIT <= 0 or cls.MIN_DEPOSIT > cls.MAX_DEPOSIT:
            raise ValueError("MIN_DEPOSIT must be positive and not exceed MAX_DEPOSIT")

        if cls.MIN_WITHDRAWAL <= 0 or cls.MIN_WITHDRAWAL > cls.MAX_WITHDRAWAL:
            raise ValueError("MIN_WITHDRAWAL must be positive and not exceed MAX_WITHDRAWAL")

        if cls.DB_BUSY_TIMEOUT_SECONDS <= 0 or cls.DB_UNIT_TIMEOUT_SECONDS <= 0:
            raise ValueError("Database timeouts must be positive")

        # Optional integrations
        if not cls.ODDS_API_KEY:
            print("WARNING: ODDS_API_KEY not configured - odds feed sync will be disabled")

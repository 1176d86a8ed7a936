"""Repository package exports."""

from .match_repository import MatchRepository
from .outbox_repository import OutboxRepository

__all__ = ["MatchRepository", "OutboxRepository"]

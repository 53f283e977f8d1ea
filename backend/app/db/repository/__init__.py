"""
Database Repositories

Repository pattern implementation for data access.
"""

from .base_repository import BaseRepository
from .session_repository import SessionRepository
from .draft_repository import DraftRepository, DraftUpsertOutcome, PullRequestRecord
from .cache_repository import CacheRepository
from .embedding_repository import EmbeddingMatch, EmbeddingRepository

__all__ = [
    "BaseRepository",
    "SessionRepository",
    "DraftRepository",
    "DraftUpsertOutcome",
    "PullRequestRecord",
    "CacheRepository",
    "EmbeddingMatch",
    "EmbeddingRepository",
]

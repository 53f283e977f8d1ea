"""
Database Models

SQLAlchemy ORM models for the application.
"""

from .session import ChatSession
from .draft import SessionDraft
from .remote_cache import RemoteListingCache
from .resource import Resource, ResourceEmbedding

__all__ = [
    "ChatSession",
    "SessionDraft",
    "RemoteListingCache",
    "Resource",
    "ResourceEmbedding",
]

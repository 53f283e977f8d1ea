"""
Services Module

Business logic layer
"""

from .session_service import SessionService
from .bitbucket_service import BitbucketService
from .retrieval_service import RetrievalService

__all__ = [
    "SessionService",
    "BitbucketService",
    "RetrievalService",
]

"""
API Routers Module

FastAPI routers
"""

from .session_router import session_router
from .bitbucket_router import bitbucket_router
from .retrieval_router import retrieval_router

__all__ = [
    "session_router",
    "bitbucket_router",
    "retrieval_router",
]

"""
Database session management

Transaction scope helpers shared by every repository.
"""

import logging
from contextlib import asynccontextmanager
from functools import wraps
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from .base import AsyncSessionLocal

logger = logging.getLogger(__name__)


@asynccontextmanager
async def async_session_scope() -> AsyncGenerator[AsyncSession, None]:
    """
    One unit of work: commit on success, roll back on error.

    Usage:
        async with async_session_scope() as session:
            result = await session.execute(stmt)
    """
    session = AsyncSessionLocal()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


def async_with_session(f):
    """
    Run a repository method inside its own transaction.

    The session is injected as the argument after ``self``; everything the
    method does commits or rolls back together.

    Usage:
        @async_with_session
        async def get_thing(self, session, thing_id):
            ...
    """
    @wraps(f)
    async def wrapper(self, *args, **kwargs):
        async with async_session_scope() as session:
            try:
                return await f(self, session, *args, **kwargs)
            except Exception as e:
                logger.error(f"Database operation failed in {f.__qualname__}: {e}")
                raise

    return wrapper

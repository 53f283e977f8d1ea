"""
Remote listing cache repository

Read and upsert cached Bitbucket listings.
"""

from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.base import utcnow
from app.db.models.remote_cache import RemoteListingCache
from app.db.repository.base_repository import BaseRepository
from app.db.session import async_with_session


class CacheRepository(BaseRepository[RemoteListingCache]):
    """Listing cache data access layer"""

    def __init__(self):
        super().__init__(RemoteListingCache)

    @async_with_session
    async def get_entry(
        self,
        session: AsyncSession,
        correlation_id: str,
        scope: str,
        cache_key: str
    ) -> Optional[RemoteListingCache]:
        return await self.get_by_id(session, (correlation_id, scope, cache_key))

    @async_with_session
    async def save_entry(
        self,
        session: AsyncSession,
        correlation_id: str,
        scope: str,
        cache_key: str,
        payload: Any
    ) -> RemoteListingCache:
        """Insert or replace the cached payload"""
        entry = await self.get_by_id(session, (correlation_id, scope, cache_key))
        if entry is None:
            return await self.create(
                session,
                correlation_id=correlation_id,
                scope=scope,
                cache_key=cache_key,
                payload=payload,
                updated_at=utcnow(),
            )

        entry.payload = payload
        entry.updated_at = utcnow()
        await session.flush()
        return entry

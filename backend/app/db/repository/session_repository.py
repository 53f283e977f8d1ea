"""
Session repository implementation

Provides session-related data access methods.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.session import ChatSession
from app.db.repository.base_repository import BaseRepository
from app.db.session import async_with_session


class SessionRepository(BaseRepository[ChatSession]):
    """
    Session data access layer

    Sessions are never deleted; every mutation touches ``updated_at``.
    """

    def __init__(self):
        super().__init__(ChatSession)

    @async_with_session
    async def get_session_by_id(
        self,
        session: AsyncSession,
        session_id: str
    ) -> Optional[ChatSession]:
        """
        Get session by ID

        Args:
            session: Database session
            session_id: Session UUID

        Returns:
            Session object or None
        """
        return await self.get_by_id(session, session_id)

    @async_with_session
    async def list_sessions(
        self,
        session: AsyncSession,
        skip: int = 0,
        limit: int = 50
    ) -> List[ChatSession]:
        """Most recently updated sessions first"""
        return await self.get_multi(session, skip=skip, limit=limit, order_by=["-updated_at", "id"])

    @async_with_session
    async def count_sessions(self, session: AsyncSession) -> int:
        return await self.count(session)

    @async_with_session
    async def create_session(
        self,
        session: AsyncSession,
        session_id: str,
        **fields: Any
    ) -> ChatSession:
        """
        Create a new session

        Args:
            session: Database session
            session_id: Session UUID
            **fields: Column values

        Returns:
            Created session object
        """
        return await self.create(session, id=session_id, **fields)

    @async_with_session
    async def update_session(
        self,
        session: AsyncSession,
        session_id: str,
        **update_data: Any
    ) -> Optional[ChatSession]:
        """
        Update session columns by ID

        Args:
            session: Database session
            session_id: Session UUID
            **update_data: Column values, applied as given (None clears)

        Returns:
            Updated session or None
        """
        db_session = await self.get_by_id(session, session_id)
        if not db_session:
            return None

        for key, value in update_data.items():
            if not hasattr(ChatSession, key):
                raise ValueError(f"Unknown session field '{key}'")
            setattr(db_session, key, value)

        db_session.touch()
        await session.flush()
        await session.refresh(db_session)
        return db_session

    @async_with_session
    async def replace_context(
        self,
        session: AsyncSession,
        session_id: str,
        snapshot: Dict[str, Any]
    ) -> Optional[ChatSession]:
        """Store a fresh context snapshot (``context_*`` columns)"""
        db_session = await self.get_by_id(session, session_id)
        if not db_session:
            return None

        db_session.context_folder_exists = snapshot["context_folder_exists"]
        db_session.context_truncated = snapshot["context_truncated"]
        db_session.context_has_bootstrap = snapshot["context_has_bootstrap"]
        db_session.context_files = snapshot["context_files"]
        db_session.touch()
        await session.flush()
        await session.refresh(db_session)
        return db_session

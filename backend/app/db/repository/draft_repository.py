"""
Draft repository implementation

Upserts drafts and settles them after a persist, keeping the parent
session's aggregate counters in the same transaction.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.base import utcnow
from app.db.models.draft import SessionDraft
from app.db.models.session import ChatSession
from app.db.repository.base_repository import BaseRepository
from app.db.session import async_with_session


@dataclass
class DraftUpsertOutcome:
    """Result of a draft upsert"""
    draft: SessionDraft
    created: bool
    draft_count: int


@dataclass
class PullRequestRecord:
    """PR descriptor stored on the session after a persist"""
    id: Optional[int]
    url: Optional[str]
    branch: str
    title: str


class DraftRepository(BaseRepository[SessionDraft]):
    """
    Draft data access layer
    """

    def __init__(self):
        super().__init__(SessionDraft)

    async def _count_pending(self, session: AsyncSession, session_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(SessionDraft)
            .where(SessionDraft.session_id == session_id, SessionDraft.needs_persist.is_(True))
        )
        result = await session.execute(stmt)
        return result.scalar() or 0

    @async_with_session
    async def upsert_draft(
        self,
        session: AsyncSession,
        session_id: str,
        path: str,
        content: str,
        summary: Optional[str] = None
    ) -> Optional[DraftUpsertOutcome]:
        """
        Insert or update the draft for (session_id, path)

        The path must already be normalized. Marks the draft pending and
        refreshes the session's pending flag and draft count.

        Returns:
            Upsert outcome, or None when the session does not exist
        """
        chat_session = await session.get(ChatSession, session_id)
        if chat_session is None:
            return None

        now = utcnow()
        draft = await session.get(SessionDraft, (session_id, path))
        created = draft is None
        if created:
            draft = SessionDraft(
                session_id=session_id,
                path=path,
                content=content,
                summary=summary,
                needs_persist=True,
                created_at=now,
                updated_at=now,
            )
            session.add(draft)
        else:
            draft.content = content
            draft.summary = summary
            draft.needs_persist = True
            draft.updated_at = now

        await session.flush()

        draft_count = await self._count_pending(session, session_id)
        chat_session.persist_draft_count = draft_count
        chat_session.persist_has_changes = True
        chat_session.touch()
        await session.flush()

        return DraftUpsertOutcome(draft=draft, created=created, draft_count=draft_count)

    @async_with_session
    async def get_drafts(
        self,
        session: AsyncSession,
        session_id: str,
        pending_only: bool = False
    ) -> List[SessionDraft]:
        """Drafts of a session in the order they were first queued"""
        filters = {"session_id": session_id}
        if pending_only:
            filters["needs_persist"] = True
        return await self.get_multi(
            session,
            limit=None,
            filters=filters,
            order_by=["created_at", "path"],
        )

    @async_with_session
    async def complete_persist(
        self,
        session: AsyncSession,
        session_id: str,
        committed: Dict[str, str],
        pull_request: PullRequestRecord
    ) -> Optional[ChatSession]:
        """
        Settle drafts after a successful commit and record the PR

        A committed draft is cleared only while its stored content still
        equals what was committed; a draft re-queued during the persist keeps
        ``needs_persist`` set.

        Args:
            session: Database session
            session_id: Session UUID
            committed: Committed body per path
            pull_request: PR descriptor to store

        Returns:
            Updated session or None
        """
        chat_session = await session.get(ChatSession, session_id)
        if chat_session is None:
            return None

        if committed:
            stmt = select(SessionDraft).where(
                SessionDraft.session_id == session_id,
                SessionDraft.path.in_(list(committed)),
                SessionDraft.needs_persist.is_(True),
            )
            result = await session.execute(stmt)
            for draft in result.scalars().all():
                if draft.content == committed[draft.path]:
                    draft.needs_persist = False
            await session.flush()

        remaining = await self._count_pending(session, session_id)
        chat_session.persist_draft_count = remaining
        chat_session.persist_has_changes = remaining > 0
        chat_session.persist_pr_id = pull_request.id
        chat_session.persist_pr_url = pull_request.url
        chat_session.persist_pr_branch = pull_request.branch
        chat_session.persist_pr_title = pull_request.title
        chat_session.persist_updated_at = utcnow()
        chat_session.touch()
        await session.flush()
        await session.refresh(chat_session)
        return chat_session

"""Per-session queue of pending persistency-layer edits."""

import logging
from dataclasses import dataclass
from typing import List, Optional

from app.core.file_path import normalize_ai_file_path
from app.db.models.draft import SessionDraft
from app.db.repository import DraftRepository, SessionRepository
from app.utils.exceptions import NotFoundError, WriteModeDisabledError

logger = logging.getLogger(__name__)


@dataclass
class QueuedDraft:
    """Outcome of queueing a draft"""
    path: str
    draft_count: int
    created: bool


class DraftQueue:
    """
    Upserts drafts keyed by (session, normalized path).

    ``upsert`` is the storage contract; ``queue_draft`` is the assistant's
    write tool and additionally enforces the session's write gate.
    """

    def __init__(
        self,
        draft_repo: Optional[DraftRepository] = None,
        session_repo: Optional[SessionRepository] = None,
    ):
        self.draft_repo = draft_repo or DraftRepository()
        self.session_repo = session_repo or SessionRepository()

    async def upsert(self, session_id: str, path: str, content: str, summary: Optional[str] = None) -> QueuedDraft:
        """
        Normalize ``path`` and store the draft as pending.

        Raises:
            InvalidPathError: (and subclasses) when the path is rejected
            NotFoundError: when the session does not exist
        """
        canonical = normalize_ai_file_path(path)
        summary = summary.strip() if summary and summary.strip() else None

        outcome = await self.draft_repo.upsert_draft(session_id, canonical, content, summary)
        if outcome is None:
            raise NotFoundError(f"Session '{session_id}' not found", resource_type="session", resource_id=session_id)

        logger.info(
            f"{'Queued' if outcome.created else 'Updated'} draft {canonical} for session {session_id} "
            f"({outcome.draft_count} pending)"
        )
        return QueuedDraft(path=canonical, draft_count=outcome.draft_count, created=outcome.created)

    async def queue_draft(self, session_id: str, path: str, content: str, summary: Optional[str] = None) -> QueuedDraft:
        """Write tool entry point; refused unless the session allows writes."""
        chat_session = await self.session_repo.get_session_by_id(session_id)
        if chat_session is None:
            raise NotFoundError(f"Session '{session_id}' not found", resource_type="session", resource_id=session_id)
        if not chat_session.persist_allow_writes:
            raise WriteModeDisabledError()
        return await self.upsert(session_id, path, content, summary)

    async def list_drafts(self, session_id: str) -> List[SessionDraft]:
        return await self.draft_repo.get_drafts(session_id)

    async def pending(self, session_id: str) -> List[SessionDraft]:
        return await self.draft_repo.get_drafts(session_id, pending_only=True)

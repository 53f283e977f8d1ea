"""
Session Service

Business logic layer - sessions, their context snapshot, drafts and persistence
"""

import logging
import re
import uuid
from typing import Optional

from app.config.logging_config import log_print
from app.core.bitbucket_client import BitbucketAPIError, BitbucketClient, BitbucketUnauthorizedError
from app.core.context_assembler import ContextAssembler, ContextBundle, gate_on_bootstrap
from app.core.context_payload import ContextPayload
from app.core.draft_queue import DraftQueue
from app.core.persistence_synchronizer import PersistenceSynchronizer
from app.core.token_manager import TokenLifecycleManager
from app.db.base import utcnow
from app.db.repository import DraftRepository, SessionRepository
from app.db.schemas import (
    DraftCreate,
    DraftQueuedResponse,
    DraftResponse,
    PersistRequest,
    PersistResultResponse,
    PersistStateResponse,
    SessionCreate,
    SessionDetails,
    SessionSummary,
    SessionUpdate,
    TrackerTaskCreate,
    TrackerTaskResponse,
)
from app.utils.exceptions import BusinessException, NotFoundError, RemoteRequestError, UnauthorizedError
from app.utils.model.response_model import BaseResponse, ListResponse

logger = logging.getLogger(__name__)

TRACKER_KEY_PATTERN = re.compile(r"([A-Za-z]+-\d+)")


def tracker_key_from_url(url: str) -> Optional[str]:
    match = TRACKER_KEY_PATTERN.search(url)
    return match.group(1).upper() if match else None


def context_snapshot(bundle: ContextBundle) -> dict:
    """Session ``context_*`` columns for a gated bundle"""
    gated = gate_on_bootstrap(bundle)
    return {
        "context_folder_exists": gated.exists,
        "context_truncated": gated.truncated,
        "context_has_bootstrap": gated.has_bootstrap,
        "context_files": [f.to_dict() for f in gated.files],
    }


class SessionService:
    """
    Session service

    Provisions sessions from a Bitbucket branch and exposes their drafts and
    persistence state
    """

    def __init__(self, client: Optional[BitbucketClient] = None):
        self.client = client or BitbucketClient()
        self.session_repo = SessionRepository()
        self.draft_repo = DraftRepository()
        self.draft_queue = DraftQueue(self.draft_repo, self.session_repo)

    async def _get_or_404(self, session_id: str):
        chat_session = await self.session_repo.get_session_by_id(session_id)
        if chat_session is None:
            raise NotFoundError(f"Session '{session_id}' not found", resource_type="session", resource_id=session_id)
        return chat_session

    async def _assemble(self, tokens: TokenLifecycleManager, workspace: str, repository: str, branch: str) -> dict:
        assembler = ContextAssembler(self.client)
        async with tokens.authorized() as credential:
            try:
                bundle = await assembler.assemble(credential.access_token, workspace, repository, branch)
            except BitbucketUnauthorizedError:
                raise
            except BitbucketAPIError as e:
                raise RemoteRequestError("Failed to load the ai/ folder from Bitbucket.", status_code=e.status_code) from e
        return context_snapshot(bundle)

    async def _branch_available(self, tokens: TokenLifecycleManager, chat_session) -> Optional[bool]:
        """True/False when Bitbucket answered, None when the check could not run"""
        workspace = chat_session.workspace_slug or chat_session.workspace_uuid
        if not workspace or not tokens.oauth_client.is_configured or await tokens.current() is None:
            return None
        try:
            async with tokens.authorized() as credential:
                branch = await self.client.get_branch(
                    credential.access_token,
                    workspace,
                    chat_session.repository_slug,
                    chat_session.branch_name,
                )
        except (UnauthorizedError, BitbucketAPIError) as e:
            logger.info(f"Branch availability check skipped for session {chat_session.id}: {e}")
            return None
        return branch is not None

    @log_print
    async def list_sessions(self, skip: int = 0, limit: int = 50):
        """Most recently updated first"""
        sessions = await self.session_repo.list_sessions(skip=skip, limit=limit)
        total = await self.session_repo.count_sessions()
        items = [SessionSummary.from_model(s) for s in sessions]
        return ListResponse.success(items=items, total=total)

    @log_print
    async def create_session(self, data: SessionCreate, tokens: TokenLifecycleManager):
        """
        Create a session bound to a repository branch

        The persistency folder is assembled before the row is written, so a
        failed fetch leaves nothing behind.
        """
        tokens.assert_configured()
        workspace = data.project.workspace.slug or data.project.workspace.uuid
        if not workspace:
            raise BusinessException("A Bitbucket workspace slug is required.", error="workspace_slug_required")

        snapshot = await self._assemble(tokens, workspace, data.repository.slug, data.branch.name)

        chat_session = await self.session_repo.create_session(
            session_id=str(uuid.uuid4()),
            label=f"{data.project.name} · {data.branch.name}",
            project_uuid=data.project.uuid,
            project_key=data.project.key,
            project_name=data.project.name,
            workspace_slug=data.project.workspace.slug or workspace,
            workspace_name=data.project.workspace.name,
            workspace_uuid=data.project.workspace.uuid,
            repository_slug=data.repository.slug,
            repository_name=data.repository.name,
            branch_name=data.branch.name,
            branch_is_default=data.branch.is_default,
            **snapshot,
        )
        logger.info(
            f"Created session {chat_session.id} for {workspace}/{data.repository.slug}@{data.branch.name} "
            f"({len(snapshot['context_files'])} context files)"
        )
        return BaseResponse.created(data=SessionDetails.from_model(chat_session, branch_available=True))

    @log_print
    async def get_session(self, session_id: str, tokens: TokenLifecycleManager):
        chat_session = await self._get_or_404(session_id)
        drafts = await self.draft_repo.get_drafts(session_id)
        branch_available = await self._branch_available(tokens, chat_session)
        return BaseResponse.success(
            data=SessionDetails.from_model(chat_session, drafts=drafts, branch_available=branch_available)
        )

    @log_print
    async def update_session(self, session_id: str, data: SessionUpdate):
        """Toggle the write gate"""
        await self._get_or_404(session_id)
        chat_session = await self.session_repo.update_session(session_id, persist_allow_writes=data.allow_writes)
        return BaseResponse.success(data=SessionSummary.from_model(chat_session))

    @log_print
    async def refresh_context(self, session_id: str, tokens: TokenLifecycleManager):
        """Re-read the persistency folder of the session branch"""
        chat_session = await self._get_or_404(session_id)
        tokens.assert_configured()
        workspace = chat_session.workspace_slug or chat_session.workspace_uuid
        if not workspace:
            raise BusinessException("A Bitbucket workspace slug is required.", error="workspace_slug_required")

        snapshot = await self._assemble(tokens, workspace, chat_session.repository_slug, chat_session.branch_name)
        chat_session = await self.session_repo.replace_context(session_id, snapshot)
        drafts = await self.draft_repo.get_drafts(session_id)
        return BaseResponse.success(data=SessionDetails.from_model(chat_session, drafts=drafts, branch_available=True))

    @log_print
    async def get_context(self, session_id: str):
        chat_session = await self._get_or_404(session_id)
        return BaseResponse.success(data=ContextPayload.from_session(chat_session).to_dict())

    @log_print
    async def queue_draft(self, session_id: str, data: DraftCreate):
        """Assistant write tool"""
        queued = await self.draft_queue.queue_draft(session_id, data.path, data.content, data.summary)
        return BaseResponse.created(
            data=DraftQueuedResponse(path=queued.path, draft_count=queued.draft_count),
            message="Draft queued",
        )

    @log_print
    async def get_persist_state(self, session_id: str):
        chat_session = await self._get_or_404(session_id)
        drafts = await self.draft_repo.get_drafts(session_id, pending_only=True)
        return BaseResponse.success(data=PersistStateResponse(
            has_pending_changes=bool(drafts),
            draft_count=len(drafts),
            drafts=[DraftResponse.model_validate(d) for d in drafts],
            pr=SessionSummary._pr(chat_session),
        ))

    @log_print
    async def persist(self, session_id: str, data: Optional[PersistRequest], tokens: TokenLifecycleManager):
        synchronizer = PersistenceSynchronizer(self.client, tokens, self.session_repo, self.draft_repo)
        result = await synchronizer.persist(session_id, title=data.title if data else None)
        message = "Pull request created" if result.status == "created" else "Pull request updated"
        return BaseResponse.success(data=PersistResultResponse(**vars(result)), message=message)

    @log_print
    async def link_tracker_task(self, session_id: str, data: TrackerTaskCreate):
        """Attach an external tracker task, deriving the key from the url when omitted"""
        await self._get_or_404(session_id)
        key = data.key.upper() if data.key else tracker_key_from_url(data.url)
        chat_session = await self.session_repo.update_session(
            session_id,
            tracker_task_key=key,
            tracker_task_url=data.url,
            tracker_task_summary=data.summary,
            tracker_task_created_at=utcnow(),
        )
        return BaseResponse.success(data=TrackerTaskResponse(
            key=chat_session.tracker_task_key,
            url=chat_session.tracker_task_url,
            summary=chat_session.tracker_task_summary,
            created_at=chat_session.tracker_task_created_at,
        ))

"""
Flushes a session's pending drafts to Bitbucket.

One persist attempt: resolve the destination branch, ensure the session's
feature branch, commit every pending draft in a single commit, then open the
session's pull request or retitle the existing one, and finally settle the
drafts that were committed.
"""

import logging
import posixpath
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from app.config import PersistencyConfig
from app.core.bitbucket_client import BitbucketAPIError, BitbucketClient, BitbucketUnauthorizedError
from app.core.token_manager import TokenLifecycleManager
from app.db.models.draft import SessionDraft
from app.db.models.session import ChatSession
from app.db.repository import DraftRepository, PullRequestRecord, SessionRepository
from app.utils.exceptions import (
    BranchUnavailableError,
    BusinessException,
    FailedToCreateBranchError,
    NoPendingChangesError,
    NotFoundError,
    RemoteCommitFailedError,
    RemotePRFailedError,
    RemotePRUpdateFailedError,
    RemoteRequestError,
)

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 120


class PersistState(str, Enum):
    NO_PENDING_CHANGES = "no_pending_changes"
    HAS_PENDING_CHANGES = "has_pending_changes"
    COMMITTING = "committing"
    BRANCH_ENSURED = "branch_ensured"
    COMMITTED = "committed"
    PR_OPENED = "pr_opened"
    PR_UPDATED = "pr_updated"


@dataclass
class PersistAttempt:
    """State history of one persist call"""
    session_id: str
    state: PersistState = PersistState.NO_PENDING_CHANGES
    history: List[PersistState] = field(default_factory=list)

    def transition(self, state: PersistState) -> None:
        logger.info(f"Persist {self.session_id}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)


@dataclass
class PersistResult:
    status: str
    pr_url: Optional[str]
    pr_id: Optional[int]
    branch: str
    title: str
    committed_paths: List[str]


def feature_branch_name(session_id: str, prefix: Optional[str] = None) -> str:
    """``ai-session/<id>`` lowercased, non-alphanumerics collapsed to hyphens."""
    prefix = PersistencyConfig.FEATURE_BRANCH_PREFIX if prefix is None else prefix
    sanitized = re.sub(r"[^a-z0-9]+", "-", session_id.lower()).strip("-")
    return f"{prefix}{sanitized or 'updates'}"


def _cap(text: str, limit: int = TITLE_MAX_LENGTH) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


def summary_title(drafts: Sequence[SessionDraft]) -> Optional[str]:
    seen = []
    for draft in drafts:
        summary = " ".join((draft.summary or "").split())
        if summary and summary.lower() not in (s.lower() for s in seen):
            seen.append(summary)
    if not seen:
        return None
    return _cap("; ".join(seen))


def file_stem_title(drafts: Sequence[SessionDraft]) -> Optional[str]:
    stems = []
    for draft in drafts:
        stem = posixpath.splitext(posixpath.basename(draft.path))[0]
        if stem and stem not in stems:
            stems.append(stem)
    if not stems:
        return None
    return _cap(f"Update {', '.join(stems)}")


def derive_title(
    session: ChatSession,
    drafts: Sequence[SessionDraft],
    explicit_title: Optional[str] = None,
) -> str:
    """Explicit, stored, summaries, file stems, then a generic fallback."""
    for candidate in (
        explicit_title,
        session.persist_pr_title,
        summary_title(drafts),
        file_stem_title(drafts),
    ):
        if candidate and candidate.strip():
            return _cap(candidate.strip(), 255)
    return f"AI session updates - {session.project_name} · {session.branch_name}"


class PersistenceSynchronizer:
    """
    Commits pending drafts and keeps exactly one pull request per session.

    Callers must not run two persists for the same session concurrently.
    """

    def __init__(
        self,
        client: BitbucketClient,
        tokens: TokenLifecycleManager,
        session_repo: Optional[SessionRepository] = None,
        draft_repo: Optional[DraftRepository] = None,
        on_transition: Optional[Callable[[PersistAttempt], None]] = None,
    ):
        self.client = client
        self.tokens = tokens
        self.session_repo = session_repo or SessionRepository()
        self.draft_repo = draft_repo or DraftRepository()
        self.on_transition = on_transition

    def _move(self, attempt: PersistAttempt, state: PersistState) -> None:
        attempt.transition(state)
        if self.on_transition:
            self.on_transition(attempt)

    async def persist(self, session_id: str, title: Optional[str] = None) -> PersistResult:
        """
        Persist every pending draft of a session.

        Returns:
            PersistResult with status ``created`` or ``updated``

        Raises:
            NotFoundError, NoPendingChangesError, ConfigurationMissingError,
            UnauthorizedError, BranchUnavailableError, FailedToCreateBranchError,
            RemoteCommitFailedError, RemotePRFailedError, RemotePRUpdateFailedError,
            RemoteRequestError
        """
        attempt = PersistAttempt(session_id=session_id)

        chat_session = await self.session_repo.get_session_by_id(session_id)
        if chat_session is None:
            raise NotFoundError(f"Session '{session_id}' not found", resource_type="session", resource_id=session_id)

        drafts = await self.draft_repo.get_drafts(session_id, pending_only=True)
        if not drafts:
            raise NoPendingChangesError()
        self._move(attempt, PersistState.HAS_PENDING_CHANGES)

        workspace = chat_session.workspace_slug or chat_session.workspace_uuid
        if not workspace:
            raise BusinessException("The session has no Bitbucket workspace.", error="workspace_slug_required")
        self.tokens.assert_configured()

        try:
            async with self.tokens.authorized() as credential:
                return await self._run(attempt, chat_session, drafts, workspace, credential.access_token, title)
        except BaseException:
            if attempt.state is not PersistState.HAS_PENDING_CHANGES:
                self._move(attempt, PersistState.HAS_PENDING_CHANGES)
            raise

    async def _run(
        self,
        attempt: PersistAttempt,
        chat_session: ChatSession,
        drafts: List[SessionDraft],
        workspace: str,
        token: str,
        explicit_title: Optional[str],
    ) -> PersistResult:
        repo = chat_session.repository_slug
        destination = chat_session.branch_name
        self._move(attempt, PersistState.COMMITTING)

        # 1. Destination branch
        try:
            branch = await self.client.get_branch(token, workspace, repo, destination)
        except BitbucketUnauthorizedError:
            raise
        except BitbucketAPIError as e:
            raise RemoteRequestError(f"Could not look up branch '{destination}'.", status_code=e.status_code) from e
        if branch is None or not branch.target_hash:
            raise BranchUnavailableError(destination)

        # 2. Feature branch
        feature_branch = chat_session.persist_pr_branch or feature_branch_name(chat_session.id)
        try:
            created = await self.client.create_branch(token, workspace, repo, feature_branch, branch.target_hash)
        except BitbucketUnauthorizedError:
            raise
        except BitbucketAPIError as e:
            raise FailedToCreateBranchError(status_code=e.status_code) from e
        logger.info(f"Feature branch {feature_branch} {'created' if created else 'already present'}")
        self._move(attempt, PersistState.BRANCH_ENSURED)

        # 3. Title
        title = derive_title(chat_session, drafts, explicit_title)

        # 4. Single multi-file commit
        committed: Dict[str, str] = {d.path: d.content for d in drafts}
        try:
            await self.client.commit_files(token, workspace, repo, feature_branch, title, committed)
        except BitbucketUnauthorizedError:
            raise
        except BitbucketAPIError as e:
            raise RemoteCommitFailedError(status_code=e.status_code) from e
        self._move(attempt, PersistState.COMMITTED)

        # 5. Pull request
        pr_id = chat_session.persist_pr_id
        pr_url = chat_session.persist_pr_url
        if pr_id is None:
            try:
                pull_request = await self.client.create_pull_request(
                    token,
                    workspace,
                    repo,
                    title=title,
                    source_branch=feature_branch,
                    destination_branch=destination,
                    description=(
                        "Generated by the persistency assistant from session "
                        f"{chat_session.label or chat_session.id}."
                    ),
                )
            except BitbucketUnauthorizedError:
                raise
            except BitbucketAPIError as e:
                raise RemotePRFailedError(status_code=e.status_code) from e
            pr_id, pr_url = pull_request.id, pull_request.url
            status = "created"
            self._move(attempt, PersistState.PR_OPENED)
        else:
            if title != chat_session.persist_pr_title:
                try:
                    await self.client.update_pull_request_title(token, workspace, repo, pr_id, title)
                except BitbucketUnauthorizedError:
                    raise
                except BitbucketAPIError as e:
                    raise RemotePRUpdateFailedError(status_code=e.status_code) from e
            status = "updated"
            self._move(attempt, PersistState.PR_UPDATED)

        # 6. Settle committed drafts
        updated = await self.draft_repo.complete_persist(
            chat_session.id,
            committed,
            PullRequestRecord(id=pr_id, url=pr_url, branch=feature_branch, title=title),
        )
        if updated is not None and not updated.persist_has_changes:
            self._move(attempt, PersistState.NO_PENDING_CHANGES)
        else:
            self._move(attempt, PersistState.HAS_PENDING_CHANGES)

        return PersistResult(
            status=status,
            pr_url=pr_url,
            pr_id=pr_id,
            branch=feature_branch,
            title=title,
            committed_paths=sorted(committed),
        )

"""
Session schemas

Pydantic models for session-related requests and responses, plus the
mapping from ORM rows to API payloads.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict


# ============================================================================
# Requests
# ============================================================================

class WorkspaceRef(BaseModel):
    """Bitbucket workspace identity"""
    slug: Optional[str] = Field(None, description="Workspace slug")
    name: Optional[str] = Field(None, description="Workspace display name")
    uuid: Optional[str] = Field(None, description="Workspace UUID")


class ProjectRef(BaseModel):
    """Bitbucket project identity"""
    uuid: str = Field(..., min_length=1, description="Project UUID")
    key: Optional[str] = Field(None, description="Project key")
    name: str = Field(..., min_length=1, description="Project name")
    workspace: WorkspaceRef = Field(default_factory=WorkspaceRef, description="Owning workspace")


class RepositoryRef(BaseModel):
    """Repository identity"""
    slug: str = Field(..., min_length=1, description="Repository slug")
    name: str = Field(..., min_length=1, description="Repository name")


class BranchRef(BaseModel):
    """Branch identity"""
    name: str = Field(..., min_length=1, description="Branch name")
    is_default: bool = Field(False, description="Is the repository main branch")


class SessionCreate(BaseModel):
    """Request model for creating a session"""
    project: ProjectRef
    repository: RepositoryRef
    branch: BranchRef

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "project": {
                "uuid": "{5c1c8f0e-0000-4000-8000-000000000001}",
                "key": "DOC",
                "name": "Documentation",
                "workspace": {"slug": "acme", "name": "Acme"},
            },
            "repository": {"slug": "docs", "name": "Docs"},
            "branch": {"name": "main", "is_default": True},
        }
    })


class SessionUpdate(BaseModel):
    """Request model for toggling write mode"""
    allow_writes: bool = Field(..., description="Allow the assistant to queue drafts")


class DraftCreate(BaseModel):
    """Request model for queueing a draft (the assistant write tool)"""
    path: str = Field(..., description="Path under ai/ ending in .mdc")
    content: str = Field(..., description="Full replacement body")
    summary: Optional[str] = Field(None, max_length=2000, description="Short description of the change")


class PersistRequest(BaseModel):
    """Request model for persisting pending drafts"""
    title: Optional[str] = Field(None, max_length=255, description="Pull request title override")


class TrackerTaskCreate(BaseModel):
    """Request model for linking an external tracker task"""
    url: str = Field(..., min_length=1, description="Task url")
    key: Optional[str] = Field(None, pattern=r"^[A-Za-z]+-\d+$", description="Task key, e.g. PROJ-12")
    summary: Optional[str] = Field(None, max_length=2000, description="Task summary")


# ============================================================================
# Responses
# ============================================================================

class ContextFileResponse(BaseModel):
    path: str
    content: str
    truncated: bool = False


class PullRequestDescriptor(BaseModel):
    id: Optional[int] = None
    url: Optional[str] = None
    branch: Optional[str] = None
    title: Optional[str] = None
    updated_at: Optional[datetime] = None


class TrackerTaskResponse(BaseModel):
    key: Optional[str] = None
    url: str
    summary: Optional[str] = None
    created_at: Optional[datetime] = None


class DraftResponse(BaseModel):
    """Response model for a draft"""
    path: str
    content: str
    summary: Optional[str] = None
    needs_persist: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SessionContextInfo(BaseModel):
    folder_exists: bool
    truncated: bool
    has_bootstrap: bool
    file_count: int
    state: str = Field(..., description="ready, missing or empty")


class SessionPersistInfo(BaseModel):
    allow_writes: bool
    has_pending_changes: bool
    draft_count: int
    pr: Optional[PullRequestDescriptor] = None


class SessionSummary(BaseModel):
    """Session list entry"""
    id: str
    label: str
    created_at: datetime
    updated_at: datetime
    project: ProjectRef
    repository: RepositoryRef
    branch: BranchRef
    context: SessionContextInfo
    persist: SessionPersistInfo
    tracker_task: Optional[TrackerTaskResponse] = None

    @staticmethod
    def _pr(session) -> Optional[PullRequestDescriptor]:
        if session.persist_pr_id is None and not session.persist_pr_url:
            return None
        return PullRequestDescriptor(
            id=session.persist_pr_id,
            url=session.persist_pr_url,
            branch=session.persist_pr_branch,
            title=session.persist_pr_title,
            updated_at=session.persist_updated_at,
        )

    @classmethod
    def _fields(cls, session, has_pending_changes: Optional[bool] = None) -> dict:
        tracker_task = None
        if session.tracker_task_url:
            tracker_task = TrackerTaskResponse(
                key=session.tracker_task_key,
                url=session.tracker_task_url,
                summary=session.tracker_task_summary,
                created_at=session.tracker_task_created_at,
            )
        return {
            "id": session.id,
            "label": session.label,
            "created_at": session.created_at,
            "updated_at": session.updated_at,
            "project": ProjectRef(
                uuid=session.project_uuid,
                key=session.project_key,
                name=session.project_name,
                workspace=WorkspaceRef(
                    slug=session.workspace_slug,
                    name=session.workspace_name,
                    uuid=session.workspace_uuid,
                ),
            ),
            "repository": RepositoryRef(slug=session.repository_slug, name=session.repository_name),
            "branch": BranchRef(name=session.branch_name, is_default=session.branch_is_default),
            "context": SessionContextInfo(
                folder_exists=session.context_folder_exists,
                truncated=session.context_truncated,
                has_bootstrap=session.context_has_bootstrap,
                file_count=len(session.context_files or []),
                state=session.context_state,
            ),
            "persist": SessionPersistInfo(
                allow_writes=session.persist_allow_writes,
                has_pending_changes=(
                    session.persist_has_changes if has_pending_changes is None else has_pending_changes
                ),
                draft_count=session.persist_draft_count,
                pr=cls._pr(session),
            ),
            "tracker_task": tracker_task,
        }

    @classmethod
    def from_model(cls, session) -> "SessionSummary":
        return cls(**cls._fields(session))


class SessionDetails(SessionSummary):
    """Full session payload"""
    files: List[ContextFileResponse] = Field(default_factory=list)
    drafts: List[DraftResponse] = Field(default_factory=list)
    branch_available: Optional[bool] = Field(None, description="None when the check could not run")

    @classmethod
    def from_model(cls, session, drafts=None, branch_available: Optional[bool] = None) -> "SessionDetails":
        drafts = drafts or []
        pending = any(d.needs_persist for d in drafts) or bool(session.persist_has_changes)
        return cls(
            **cls._fields(session, has_pending_changes=pending),
            files=[ContextFileResponse(**f) for f in (session.context_files or [])],
            drafts=[DraftResponse.model_validate(d) for d in drafts],
            branch_available=branch_available,
        )


class PersistStateResponse(BaseModel):
    """Pending draft state of a session"""
    has_pending_changes: bool
    draft_count: int
    drafts: List[DraftResponse]
    pr: Optional[PullRequestDescriptor] = None


class DraftQueuedResponse(BaseModel):
    path: str
    draft_count: int


class PersistResultResponse(BaseModel):
    status: str = Field(..., description="created or updated")
    pr_url: Optional[str] = None
    pr_id: Optional[int] = None
    branch: str
    title: str
    committed_paths: List[str]

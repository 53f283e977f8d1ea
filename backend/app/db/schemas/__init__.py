"""
Database Schemas

Pydantic models for request/response validation.
"""

from .session import (
    WorkspaceRef,
    ProjectRef,
    RepositoryRef,
    BranchRef,
    SessionCreate,
    SessionUpdate,
    DraftCreate,
    PersistRequest,
    TrackerTaskCreate,
    TrackerTaskResponse,
    ContextFileResponse,
    PullRequestDescriptor,
    DraftResponse,
    SessionSummary,
    SessionDetails,
    PersistStateResponse,
    DraftQueuedResponse,
    PersistResultResponse,
)
from .retrieval import (
    ContextBlockSchema,
    SearchRequest,
    RetrievalResultSchema,
    ResourceCreate,
    ResourceIndexedResponse,
)
from .bitbucket import (
    ProjectListing,
    BranchListing,
    ContextFolderResponse,
    ConnectionStatusResponse,
)

__all__ = [
    # Session
    "WorkspaceRef",
    "ProjectRef",
    "RepositoryRef",
    "BranchRef",
    "SessionCreate",
    "SessionUpdate",
    "DraftCreate",
    "PersistRequest",
    "TrackerTaskCreate",
    "TrackerTaskResponse",
    "ContextFileResponse",
    "PullRequestDescriptor",
    "DraftResponse",
    "SessionSummary",
    "SessionDetails",
    "PersistStateResponse",
    "DraftQueuedResponse",
    "PersistResultResponse",
    # Retrieval
    "ContextBlockSchema",
    "SearchRequest",
    "RetrievalResultSchema",
    "ResourceCreate",
    "ResourceIndexedResponse",
    # Bitbucket
    "ProjectListing",
    "BranchListing",
    "ContextFolderResponse",
    "ConnectionStatusResponse",
]

"""
Bitbucket schemas

Listing payloads returned by the Bitbucket endpoints.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class ProjectListing(BaseModel):
    uuid: str
    key: Optional[str] = None
    name: str
    workspace_slug: Optional[str] = None
    workspace_name: Optional[str] = None
    workspace_uuid: Optional[str] = None


class BranchListing(BaseModel):
    name: str
    is_default: bool = False
    repository_slug: str
    repository_name: str


class ContextFolderResponse(BaseModel):
    exists: bool
    truncated: bool
    has_bootstrap: bool
    files: List[dict] = Field(default_factory=list)


class ConnectionStatusResponse(BaseModel):
    linked: bool
    configured: bool

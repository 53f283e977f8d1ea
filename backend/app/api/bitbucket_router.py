"""
Bitbucket API Router

OAuth login flow and project/branch listings
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from app.core.token_manager import TokenLifecycleManager
from app.service.bitbucket_service import BitbucketService
from app.utils.auth.dependencies import get_token_manager

bitbucket_router = APIRouter(prefix="/bitbucket", tags=["bitbucket"])

bitbucket_service = BitbucketService()


@bitbucket_router.get(
    "/login",
    summary="Start Bitbucket login",
    operation_id="bitbucket_login"
)
async def login(tokens: TokenLifecycleManager = Depends(get_token_manager)):
    """Redirect to the Bitbucket authorization page"""
    return await bitbucket_service.login(tokens)


@bitbucket_router.get(
    "/callback",
    summary="Bitbucket OAuth callback",
    operation_id="bitbucket_callback"
)
async def callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code"),
    state: Optional[str] = Query(None, description="Signed OAuth state"),
    error: Optional[str] = Query(None, description="Error reported by Bitbucket"),
):
    return await bitbucket_service.callback(request, code, state, error)


@bitbucket_router.get(
    "/status",
    summary="Bitbucket connection status",
    operation_id="bitbucket_status"
)
async def status(tokens: TokenLifecycleManager = Depends(get_token_manager)):
    return await bitbucket_service.status(tokens)


@bitbucket_router.post(
    "/logout",
    summary="Forget the Bitbucket credential",
    operation_id="bitbucket_logout"
)
async def logout(tokens: TokenLifecycleManager = Depends(get_token_manager)):
    return await bitbucket_service.logout(tokens)


@bitbucket_router.get(
    "/projects",
    summary="List projects",
    operation_id="list_bitbucket_projects"
)
async def list_projects(
    refresh: bool = Query(False, description="Bypass the listing cache"),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    return await bitbucket_service.list_projects(tokens, refresh=refresh)


@bitbucket_router.get(
    "/branches",
    summary="List project branches",
    operation_id="list_bitbucket_branches"
)
async def list_branches(
    workspace: str = Query(..., min_length=1, description="Workspace slug"),
    project_uuid: str = Query(..., min_length=1, description="Project UUID"),
    project_key: Optional[str] = Query(None, description="Project key"),
    refresh: bool = Query(False, description="Bypass the listing cache"),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    """Branches of every repository in the project, default branches first"""
    return await bitbucket_service.list_branches(
        tokens,
        workspace=workspace,
        project_uuid=project_uuid,
        project_key=project_key,
        refresh=refresh,
    )


@bitbucket_router.get(
    "/ai-folder",
    summary="Read the ai/ folder of a branch",
    operation_id="get_ai_folder"
)
async def get_ai_folder(
    workspace: str = Query(..., min_length=1, description="Workspace slug"),
    repository: str = Query(..., min_length=1, description="Repository slug"),
    branch: str = Query(..., min_length=1, description="Branch name"),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    return await bitbucket_service.get_ai_folder(tokens, workspace, repository, branch)

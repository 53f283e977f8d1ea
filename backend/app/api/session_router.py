"""
Session API Router

Session routes only; all business logic lives in the service layer
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

from app.core.token_manager import TokenLifecycleManager
from app.db.schemas import DraftCreate, PersistRequest, SessionCreate, SessionUpdate, TrackerTaskCreate
from app.service.session_service import SessionService
from app.utils.auth.dependencies import get_token_manager

session_router = APIRouter(prefix="/sessions", tags=["sessions"])

session_service = SessionService()


@session_router.get(
    "",
    summary="List sessions",
    operation_id="list_sessions"
)
async def list_sessions(
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(50, ge=1, le=100, description="Maximum number of records"),
):
    """List sessions, most recently updated first"""
    return await session_service.list_sessions(skip=skip, limit=limit)


@session_router.post(
    "",
    summary="Create session",
    operation_id="create_session"
)
async def create_session(
    data: SessionCreate,
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    """
    Create a session for a project branch

    Reads the branch's ai/ folder to seed the session context
    """
    return await session_service.create_session(data, tokens)


@session_router.get(
    "/{session_id}",
    summary="Get session details",
    operation_id="get_session"
)
async def get_session(
    session_id: str = Path(..., description="Session ID"),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    return await session_service.get_session(session_id, tokens)


@session_router.patch(
    "/{session_id}",
    summary="Toggle write mode",
    operation_id="update_session"
)
async def update_session(
    data: SessionUpdate,
    session_id: str = Path(..., description="Session ID"),
):
    return await session_service.update_session(session_id, data)


@session_router.post(
    "/{session_id}/context/refresh",
    summary="Refresh session context",
    operation_id="refresh_session_context"
)
async def refresh_context(
    session_id: str = Path(..., description="Session ID"),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    return await session_service.refresh_context(session_id, tokens)


@session_router.get(
    "/{session_id}/context",
    summary="Get session context payload",
    operation_id="get_session_context"
)
async def get_context(session_id: str = Path(..., description="Session ID")):
    return await session_service.get_context(session_id)


@session_router.post(
    "/{session_id}/drafts",
    summary="Queue a draft",
    operation_id="queue_draft"
)
async def queue_draft(
    data: DraftCreate,
    session_id: str = Path(..., description="Session ID"),
):
    """Refused with 403 unless the session allows writes"""
    return await session_service.queue_draft(session_id, data)


@session_router.get(
    "/{session_id}/persist",
    summary="Get persist state",
    operation_id="get_persist_state"
)
async def get_persist_state(session_id: str = Path(..., description="Session ID")):
    return await session_service.get_persist_state(session_id)


@session_router.post(
    "/{session_id}/persist",
    summary="Persist pending drafts",
    operation_id="persist_session"
)
async def persist_session(
    data: Optional[PersistRequest] = None,
    session_id: str = Path(..., description="Session ID"),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    """Commit pending drafts and open or update the session pull request"""
    return await session_service.persist(session_id, data, tokens)


@session_router.post(
    "/{session_id}/tracker-task",
    summary="Link tracker task",
    operation_id="link_tracker_task"
)
async def link_tracker_task(
    data: TrackerTaskCreate,
    session_id: str = Path(..., description="Session ID"),
):
    return await session_service.link_tracker_task(session_id, data)

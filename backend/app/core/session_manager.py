"""
Client-side session orchestration.

``reduce`` is a pure transition function over ``SessionManagerState``;
``SessionManager`` performs the side effects (HTTP calls, debounced session
creation) and feeds their outcomes back as events.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

import httpx

from app.config import ServerConfig, SessionManagerConfig

logger = logging.getLogger(__name__)

AUTH_REQUIRED_MESSAGE = "Log in to Bitbucket to create a session."
SESSION_NOT_FOUND_MESSAGE = "Session not found."
SESSION_LOAD_FAILED_MESSAGE = "Unable to load the selected session."
SESSION_CREATE_FAILED_MESSAGE = "Unable to create the session. Please try again."
BRANCH_UNAVAILABLE_MESSAGE = "The selected Bitbucket branch is no longer available. This session is read-only."
NO_PENDING_MESSAGE = "No persistency layer changes are pending for this session."
PERSIST_FAILED_MESSAGE = "Unable to sync persistency layer changes with Bitbucket. Please try again."
PERSIST_AUTH_REQUIRED_MESSAGE = "Log in to Bitbucket again to sync persistency layer changes."

NO_PENDING_ERROR = "no_pending_ai_changes"


class Selection(str, Enum):
    NEW = "new"
    EXISTING = "existing"


class ContextState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    MISSING = "missing"
    EMPTY = "empty"
    ERROR = "error"
    AUTH_REQUIRED = "auth-required"


class ConnectionStatus(str, Enum):
    LOADING = "loading"
    LINKED = "linked"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class PersistButtonMode(str, Enum):
    CREATE = "create"
    REVIEW = "review"
    UPDATE = "update"


# ============================================================================
# Events
# ============================================================================

@dataclass(frozen=True)
class NewSessionChosen:
    pass


@dataclass(frozen=True)
class SessionSelected:
    session_id: str


@dataclass(frozen=True)
class ProjectChosen:
    project: Optional[Dict[str, Any]]


@dataclass(frozen=True)
class BranchChosen:
    branch: Optional[Dict[str, Any]]


@dataclass(frozen=True)
class ConnectionStatusChanged:
    status: ConnectionStatus


@dataclass(frozen=True)
class ProvisioningStarted:
    pass


@dataclass(frozen=True)
class ContextLoaded:
    session: Dict[str, Any]


@dataclass(frozen=True)
class SessionLoadFailed:
    message: str


@dataclass(frozen=True)
class AuthRequired:
    message: str = AUTH_REQUIRED_MESSAGE


@dataclass(frozen=True)
class DraftQueued:
    session_id: str
    draft_count: int


@dataclass(frozen=True)
class PersistStarted:
    pass


@dataclass(frozen=True)
class PersistCompleted:
    session: Dict[str, Any]


@dataclass(frozen=True)
class PersistFailed:
    message: str


@dataclass(frozen=True)
class SessionManagerState:
    selection: Selection = Selection.NEW
    selected_session_id: Optional[str] = None
    active_session: Optional[Dict[str, Any]] = None
    project: Optional[Dict[str, Any]] = None
    branch: Optional[Dict[str, Any]] = None
    connection: ConnectionStatus = ConnectionStatus.LOADING
    context_state: ContextState = ContextState.IDLE
    context_error: Optional[str] = None
    creation_pending: bool = False
    persist_pending: bool = False
    persist_error: Optional[str] = None
    transcript: tuple = ()
    sessions: tuple = ()


# ============================================================================
# Reducer
# ============================================================================

def creation_ready(state: SessionManagerState) -> bool:
    return (
        state.selection is Selection.NEW
        and state.connection is ConnectionStatus.LINKED
        and state.project is not None
        and state.branch is not None
    )


def persist_button_mode(session: Optional[Dict[str, Any]]) -> PersistButtonMode:
    persist = (session or {}).get("persist") or {}
    if not persist.get("pr"):
        return PersistButtonMode.CREATE
    return PersistButtonMode.UPDATE if persist.get("has_pending_changes") else PersistButtonMode.REVIEW


def _context_message(session: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "role": "context",
        "session_id": session.get("id"),
        "state": (session.get("context") or {}).get("state"),
        "repository": session.get("repository"),
        "branch": (session.get("branch") or {}).get("name"),
        "files": session.get("files") or [],
    }


def _summary(session: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in session.items() if k not in ("files", "drafts", "branch_available")}


def _with_session_first(sessions: tuple, session: Dict[str, Any]) -> tuple:
    summary = _summary(session)
    return (summary,) + tuple(s for s in sessions if s.get("id") != summary.get("id"))


def _new_mode_context(state: SessionManagerState) -> SessionManagerState:
    """Context state while composing a new session"""
    if state.selection is not Selection.NEW or state.creation_pending:
        return state
    if state.connection in (ConnectionStatus.DISCONNECTED, ConnectionStatus.ERROR):
        return replace(state, context_state=ContextState.AUTH_REQUIRED, context_error=AUTH_REQUIRED_MESSAGE)
    if state.connection is ConnectionStatus.LINKED:
        return replace(state, context_state=ContextState.IDLE, context_error=None)
    return state


def _apply_session(state: SessionManagerState, session: Dict[str, Any]) -> SessionManagerState:
    context_state = ContextState((session.get("context") or {}).get("state", ContextState.EMPTY.value))
    context_error = None
    if session.get("branch_available") is False:
        context_state = ContextState.ERROR
        context_error = BRANCH_UNAVAILABLE_MESSAGE

    project = session.get("project") or {}
    workspace = project.get("workspace") or {}
    repository = session.get("repository") or {}
    branch = session.get("branch") or {}
    return replace(
        state,
        selection=Selection.EXISTING,
        selected_session_id=session.get("id"),
        active_session=session,
        project={
            "uuid": project.get("uuid"),
            "key": project.get("key"),
            "name": project.get("name"),
            "workspace_slug": workspace.get("slug"),
            "workspace_name": workspace.get("name"),
            "workspace_uuid": workspace.get("uuid"),
        },
        branch={
            "name": branch.get("name"),
            "is_default": bool(branch.get("is_default")),
            "repository_slug": repository.get("slug"),
            "repository_name": repository.get("name"),
        },
        context_state=context_state,
        context_error=context_error,
        creation_pending=False,
        sessions=_with_session_first(state.sessions, session),
    )


def reduce(state: SessionManagerState, event) -> SessionManagerState:
    """Return the state following ``event``; never mutates ``state``."""
    if isinstance(event, NewSessionChosen):
        return _new_mode_context(replace(
            state,
            selection=Selection.NEW,
            selected_session_id=None,
            active_session=None,
            project=None,
            branch=None,
            creation_pending=False,
            context_error=None,
            transcript=(),
        ))

    if isinstance(event, SessionSelected):
        if state.active_session and state.active_session.get("id") == event.session_id:
            return replace(state, selection=Selection.EXISTING, selected_session_id=event.session_id)
        return replace(
            state,
            selection=Selection.EXISTING,
            selected_session_id=event.session_id,
            active_session=None,
            creation_pending=False,
            context_state=ContextState.LOADING,
            context_error=None,
            transcript=(),
        )

    if isinstance(event, ProjectChosen):
        return _new_mode_context(replace(state, project=event.project, branch=None, creation_pending=False))

    if isinstance(event, BranchChosen):
        return _new_mode_context(replace(state, branch=event.branch, creation_pending=False))

    if isinstance(event, ConnectionStatusChanged):
        updated = replace(state, connection=event.status)
        if event.status is not ConnectionStatus.LINKED:
            updated = replace(updated, creation_pending=False)
        return _new_mode_context(updated)

    if isinstance(event, ProvisioningStarted):
        return replace(
            state,
            creation_pending=True,
            context_state=ContextState.LOADING,
            context_error=None,
            transcript=(),
        )

    if isinstance(event, ContextLoaded):
        updated = _apply_session(state, event.session)
        return replace(updated, transcript=(_context_message(event.session),))

    if isinstance(event, SessionLoadFailed):
        return replace(
            state,
            active_session=None,
            creation_pending=False,
            context_state=ContextState.ERROR,
            context_error=event.message,
        )

    if isinstance(event, AuthRequired):
        # The server already dropped the credential
        return replace(
            state,
            active_session=state.active_session if state.selection is Selection.EXISTING else None,
            connection=ConnectionStatus.DISCONNECTED,
            creation_pending=False,
            persist_pending=False,
            context_state=ContextState.AUTH_REQUIRED,
            context_error=event.message,
        )

    if isinstance(event, DraftQueued):
        session = state.active_session
        if not session or session.get("id") != event.session_id:
            return state
        persist = {**(session.get("persist") or {}), "has_pending_changes": True, "draft_count": event.draft_count}
        return replace(state, active_session={**session, "persist": persist})

    if isinstance(event, PersistStarted):
        if state.persist_pending:
            return state
        return replace(state, persist_pending=True, persist_error=None)

    if isinstance(event, PersistCompleted):
        updated = _apply_session(replace(state, persist_pending=False), event.session)
        return replace(updated, transcript=state.transcript)

    if isinstance(event, PersistFailed):
        return replace(state, persist_pending=False, persist_error=event.message)

    raise ValueError(f"Unknown session manager event: {event!r}")


# ============================================================================
# Debounce
# ============================================================================

class DebouncedTask:
    """
    Runs ``callback`` once ``delay`` seconds after the latest ``schedule``.

    Every ``schedule`` or ``cancel`` bumps the generation; a timer only fires
    if its generation is still current when it wakes up.
    """

    def __init__(self, delay: float, callback: Callable[..., Awaitable[Any]]):
        self.delay = delay
        self.callback = callback
        self.generation = 0
        self._task: Optional[asyncio.Task] = None
        self._firing = False

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done() and not self._firing

    def schedule(self, *args) -> None:
        self.cancel()
        generation = self.generation
        self._task = asyncio.get_running_loop().create_task(self._fire(generation, args))

    def cancel(self) -> None:
        self.generation += 1
        if self._task is not None and not self._task.done() and not self._firing:
            self._task.cancel()
        if not self._firing:
            self._task = None

    async def _fire(self, generation: int, args: tuple) -> None:
        await asyncio.sleep(self.delay)
        if generation != self.generation:
            return
        self._firing = True
        try:
            await self.callback(*args)
        finally:
            self._firing = False

    async def wait(self) -> None:
        """Wait for the scheduled run, if any, to finish."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass


# ============================================================================
# Gateway
# ============================================================================

class GatewayError(Exception):
    """Non-success answer from the session API"""

    def __init__(self, status_code: int, error: Optional[str] = None, message: Optional[str] = None):
        self.status_code = status_code
        self.error = error
        self.message = message or error or f"HTTP {status_code}"
        super().__init__(self.message)


class SessionGateway(Protocol):
    async def list_sessions(self) -> List[Dict[str, Any]]:
        ...

    async def get_session(self, session_id: str) -> Dict[str, Any]:
        ...

    async def create_session(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def persist(self, session_id: str, title: Optional[str] = None) -> Dict[str, Any]:
        ...

    async def connection_status(self) -> bool:
        ...


class ApiSessionGateway:
    """SessionGateway over the HTTP API"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        cookies: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 60.0,
    ):
        self.client = httpx.AsyncClient(
            base_url=(base_url or ServerConfig.APP_URL).rstrip("/") + "/api",
            cookies=cookies,
            transport=transport,
            timeout=timeout,
        )

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        response = await self.client.request(method, url, **kwargs)
        try:
            body = response.json()
        except ValueError:
            body = {}
        data = body.get("data") if isinstance(body, dict) else None
        error = data.get("error") if isinstance(data, dict) else None
        if response.status_code >= 400 or error:
            raise GatewayError(response.status_code, error, body.get("message") if isinstance(body, dict) else None)
        return data

    async def list_sessions(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/sessions")
        return list((data or {}).get("items") or [])

    async def get_session(self, session_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/sessions/{session_id}")

    async def create_session(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/sessions", json=payload)

    async def persist(self, session_id: str, title: Optional[str] = None) -> Dict[str, Any]:
        return await self._request("POST", f"/sessions/{session_id}/persist", json={"title": title})

    async def connection_status(self) -> bool:
        data = await self._request("GET", "/bitbucket/status")
        return bool((data or {}).get("linked"))

    async def aclose(self) -> None:
        await self.client.aclose()


# ============================================================================
# Manager
# ============================================================================

def creation_payload(project: Dict[str, Any], branch: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "project": {
            "uuid": project.get("uuid"),
            "key": project.get("key"),
            "name": project.get("name"),
            "workspace": {
                "slug": project.get("workspace_slug"),
                "name": project.get("workspace_name"),
                "uuid": project.get("workspace_uuid"),
            },
        },
        "repository": {"slug": branch.get("repository_slug"), "name": branch.get("repository_name")},
        "branch": {"name": branch.get("name"), "is_default": bool(branch.get("is_default"))},
    }


class SessionManager:
    """Drives session selection, debounced creation and persist actions"""

    def __init__(
        self,
        gateway: SessionGateway,
        debounce_seconds: Optional[float] = None,
        on_change: Optional[Callable[[SessionManagerState], None]] = None,
    ):
        self.gateway = gateway
        self.state = SessionManagerState()
        self.on_change = on_change
        delay = SessionManagerConfig.DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        self.creation = DebouncedTask(delay, self._create_session)

    def dispatch(self, event) -> SessionManagerState:
        self.state = reduce(self.state, event)
        if self.on_change:
            self.on_change(self.state)
        return self.state

    def _sync_creation(self) -> None:
        if creation_ready(self.state):
            self.dispatch(ProvisioningStarted())
            self.creation.schedule(self.state.project, self.state.branch)
        else:
            self.creation.cancel()

    async def refresh_connection(self) -> ConnectionStatus:
        try:
            linked = await self.gateway.connection_status()
            status = ConnectionStatus.LINKED if linked else ConnectionStatus.DISCONNECTED
        except (GatewayError, httpx.HTTPError) as e:
            logger.warning(f"Failed to load Bitbucket connection status: {e}")
            status = ConnectionStatus.ERROR
        self.set_connection_status(status)
        return status

    async def refresh_sessions(self) -> List[Dict[str, Any]]:
        sessions = await self.gateway.list_sessions()
        ordered = sorted(sessions, key=lambda s: s.get("updated_at") or "", reverse=True)
        self.state = replace(self.state, sessions=tuple(ordered))
        return ordered

    def choose_new(self) -> None:
        self.creation.cancel()
        self.dispatch(NewSessionChosen())

    def choose_project(self, project: Optional[Dict[str, Any]]) -> None:
        self.dispatch(ProjectChosen(project))
        self._sync_creation()

    def choose_branch(self, branch: Optional[Dict[str, Any]]) -> None:
        self.dispatch(BranchChosen(branch))
        self._sync_creation()

    def set_connection_status(self, status: ConnectionStatus) -> None:
        self.dispatch(ConnectionStatusChanged(status))
        if self.state.selection is Selection.NEW:
            self._sync_creation()

    async def select_session(self, session_id: str) -> SessionManagerState:
        self.creation.cancel()
        active = self.state.active_session
        self.dispatch(SessionSelected(session_id))
        if active and active.get("id") == session_id:
            return self.state
        return await self.load_session(session_id)

    async def load_session(self, session_id: str) -> SessionManagerState:
        try:
            session = await self.gateway.get_session(session_id)
        except GatewayError as e:
            if e.status_code == 404:
                return self.dispatch(SessionLoadFailed(SESSION_NOT_FOUND_MESSAGE))
            logger.warning(f"Failed to load session {session_id}: {e}")
            return self.dispatch(SessionLoadFailed(SESSION_LOAD_FAILED_MESSAGE))
        except httpx.HTTPError as e:
            logger.warning(f"Failed to load session {session_id}: {e}")
            return self.dispatch(SessionLoadFailed(SESSION_LOAD_FAILED_MESSAGE))
        if self.state.selected_session_id != session_id:
            return self.state
        return self.dispatch(ContextLoaded(session))

    async def _create_session(self, project: Dict[str, Any], branch: Dict[str, Any]) -> None:
        generation = self.creation.generation
        try:
            session = await self.gateway.create_session(creation_payload(project, branch))
        except GatewayError as e:
            if generation != self.creation.generation:
                return
            if e.status_code == 401:
                self.dispatch(AuthRequired())
            else:
                logger.warning(f"Failed to create session: {e}")
                self.dispatch(SessionLoadFailed(SESSION_CREATE_FAILED_MESSAGE))
            return
        except httpx.HTTPError as e:
            logger.warning(f"Failed to create session: {e}")
            if generation == self.creation.generation:
                self.dispatch(SessionLoadFailed(SESSION_CREATE_FAILED_MESSAGE))
            return
        if generation != self.creation.generation:
            logger.info(f"Discarding stale session {session.get('id')}")
            return
        self.dispatch(ContextLoaded(session))

    def record_draft(self, session_id: str, draft_count: int) -> None:
        self.dispatch(DraftQueued(session_id, draft_count))

    async def persist(self, title: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Run the persist action for the active session.

        Returns the persist result, ``{"review_url": ...}`` when the pull
        request is already up to date, or None when nothing was done.
        """
        session = self.state.active_session
        if self.state.selection is not Selection.EXISTING or not session:
            return None
        if self.state.persist_pending:
            logger.info(f"Persist already running for session {session.get('id')}")
            return None

        mode = persist_button_mode(session)
        if mode is PersistButtonMode.REVIEW:
            return {"review_url": session["persist"]["pr"].get("url")}
        if not (session.get("persist") or {}).get("has_pending_changes"):
            self.dispatch(PersistFailed(NO_PENDING_MESSAGE))
            return None

        self.dispatch(PersistStarted())
        try:
            result = await self.gateway.persist(session["id"], title)
            refreshed = await self.gateway.get_session(session["id"])
        except GatewayError as e:
            if e.status_code == 401:
                self.dispatch(AuthRequired(PERSIST_AUTH_REQUIRED_MESSAGE))
            elif e.error == NO_PENDING_ERROR:
                await self._reload_after_empty_persist(session["id"])
            else:
                logger.warning(f"Failed to persist session {session['id']}: {e}")
                self.dispatch(PersistFailed(PERSIST_FAILED_MESSAGE))
            return None
        except httpx.HTTPError as e:
            logger.warning(f"Failed to persist session {session['id']}: {e}")
            self.dispatch(PersistFailed(PERSIST_FAILED_MESSAGE))
            return None
        self.dispatch(PersistCompleted(refreshed))
        return result

    async def _reload_after_empty_persist(self, session_id: str) -> None:
        """The server had nothing pending; reload so the stale pending flag clears."""
        try:
            refreshed = await self.gateway.get_session(session_id)
        except (GatewayError, httpx.HTTPError) as e:
            logger.warning(f"Failed to reload session {session_id}: {e}")
        else:
            self.dispatch(PersistCompleted(refreshed))
        self.dispatch(PersistFailed(NO_PENDING_MESSAGE))

    async def close(self) -> None:
        self.creation.cancel()
        await self.creation.wait()

"""
Tests for client-side session orchestration
"""

import asyncio
import json
from dataclasses import replace
from typing import Optional

import httpx
import pytest

from app.core.session_manager import (
    AUTH_REQUIRED_MESSAGE,
    BRANCH_UNAVAILABLE_MESSAGE,
    NO_PENDING_MESSAGE,
    PERSIST_AUTH_REQUIRED_MESSAGE,
    PERSIST_FAILED_MESSAGE,
    SESSION_CREATE_FAILED_MESSAGE,
    SESSION_NOT_FOUND_MESSAGE,
    ApiSessionGateway,
    BranchChosen,
    ConnectionStatus,
    ConnectionStatusChanged,
    ContextLoaded,
    ContextState,
    DebouncedTask,
    DraftQueued,
    GatewayError,
    NewSessionChosen,
    PersistButtonMode,
    PersistCompleted,
    PersistStarted,
    ProjectChosen,
    ProvisioningStarted,
    Selection,
    SessionManager,
    SessionManagerState,
    SessionSelected,
    creation_payload,
    persist_button_mode,
    reduce,
)

PROJECT = {
    "uuid": "{proj-1}",
    "key": "DOC",
    "name": "Documentation",
    "workspace_slug": "acme",
    "workspace_name": "Acme",
    "workspace_uuid": "{ws-1}",
}

MAIN = {"name": "main", "is_default": True, "repository_slug": "docs", "repository_name": "Docs"}
DEVELOP = {"name": "develop", "is_default": False, "repository_slug": "docs", "repository_name": "Docs"}


def session_dict(session_id="s1", branch="main", pr=None, pending=False, branch_available=True, state="ready"):
    return {
        "id": session_id,
        "label": f"Documentation · {branch}",
        "updated_at": "2026-01-01T00:00:00",
        "project": {
            "uuid": "{proj-1}",
            "key": "DOC",
            "name": "Documentation",
            "workspace": {"slug": "acme", "name": "Acme", "uuid": "{ws-1}"},
        },
        "repository": {"slug": "docs", "name": "Docs"},
        "branch": {"name": branch, "is_default": branch == "main"},
        "context": {"state": state, "folder_exists": True, "truncated": False, "has_bootstrap": True},
        "files": [{"path": "ai/ai-bootstrap.mdc", "content": "Read me", "truncated": False}],
        "persist": {
            "allow_writes": True,
            "has_pending_changes": pending,
            "draft_count": 1 if pending else 0,
            "pr": pr,
        },
        "branch_available": branch_available,
    }


class FakeGateway:
    """In-memory SessionGateway"""

    def __init__(self):
        self.linked = True
        self.sessions = {}
        self.created = []
        self.persisted = []
        self.create_error: Optional[GatewayError] = None
        self.persist_error: Optional[GatewayError] = None
        self.hold_first_create: Optional[asyncio.Event] = None

    async def list_sessions(self):
        return list(self.sessions.values())

    async def get_session(self, session_id):
        if session_id not in self.sessions:
            raise GatewayError(404, "not_found", "Session not found")
        return self.sessions[session_id]

    async def create_session(self, payload):
        self.created.append(payload)
        number = len(self.created)
        if number == 1 and self.hold_first_create is not None:
            await self.hold_first_create.wait()
        if self.create_error is not None:
            raise self.create_error
        session = session_dict(f"s{number}", branch=payload["branch"]["name"])
        self.sessions[session["id"]] = session
        return session

    async def persist(self, session_id, title=None):
        self.persisted.append((session_id, title))
        if self.persist_error is not None:
            raise self.persist_error
        pr = {"id": 1, "url": "https://bitbucket.test/pr/1", "branch": f"ai-session/{session_id}", "title": "T"}
        self.sessions[session_id] = session_dict(session_id, pr=pr, pending=False)
        return {"status": "created", "pr_url": pr["url"]}

    async def connection_status(self):
        if isinstance(self.linked, Exception):
            raise self.linked
        return self.linked


class TestReducer:
    """Test the pure transition function"""

    def test_new_session_when_linked_is_idle(self):
        state = SessionManagerState(connection=ConnectionStatus.LINKED, context_state=ContextState.ERROR)

        updated = reduce(state, NewSessionChosen())

        assert updated.selection is Selection.NEW
        assert updated.context_state is ContextState.IDLE
        assert updated.context_error is None

    def test_disconnected_new_session_requires_auth(self):
        updated = reduce(SessionManagerState(), ConnectionStatusChanged(ConnectionStatus.DISCONNECTED))

        assert updated.context_state is ContextState.AUTH_REQUIRED
        assert updated.context_error == AUTH_REQUIRED_MESSAGE

    def test_provisioning_started(self):
        updated = reduce(SessionManagerState(), ProvisioningStarted())

        assert updated.creation_pending is True
        assert updated.context_state is ContextState.LOADING

    def test_context_loaded(self):
        session = session_dict()

        updated = reduce(SessionManagerState(creation_pending=True), ContextLoaded(session))

        assert updated.selection is Selection.EXISTING
        assert updated.selected_session_id == "s1"
        assert updated.creation_pending is False
        assert updated.context_state is ContextState.READY
        assert updated.project["workspace_slug"] == "acme"
        assert updated.branch == MAIN
        assert updated.transcript[0]["role"] == "context"
        assert updated.transcript[0]["files"] == session["files"]
        assert updated.sessions[0]["id"] == "s1"
        assert "files" not in updated.sessions[0]

    def test_unavailable_branch_is_error(self):
        updated = reduce(SessionManagerState(), ContextLoaded(session_dict(branch_available=False)))

        assert updated.context_state is ContextState.ERROR
        assert updated.context_error == BRANCH_UNAVAILABLE_MESSAGE

    def test_reselecting_active_session_keeps_it(self):
        state = reduce(SessionManagerState(), ContextLoaded(session_dict()))

        updated = reduce(state, SessionSelected("s1"))

        assert updated.active_session is state.active_session
        assert updated.transcript == state.transcript

    def test_selecting_other_session_loads(self):
        state = reduce(SessionManagerState(), ContextLoaded(session_dict()))

        updated = reduce(state, SessionSelected("s2"))

        assert updated.active_session is None
        assert updated.context_state is ContextState.LOADING
        assert updated.transcript == ()

    def test_project_change_clears_branch(self):
        state = SessionManagerState(project=PROJECT, branch=MAIN)

        updated = reduce(state, ProjectChosen({**PROJECT, "uuid": "{proj-2}"}))

        assert updated.branch is None

    def test_draft_queued_updates_active_session(self):
        state = reduce(SessionManagerState(), ContextLoaded(session_dict()))

        updated = reduce(state, DraftQueued("s1", 3))
        ignored = reduce(state, DraftQueued("other", 3))

        assert updated.active_session["persist"]["has_pending_changes"] is True
        assert updated.active_session["persist"]["draft_count"] == 3
        assert ignored is state

    def test_persist_completed_keeps_transcript(self):
        state = reduce(SessionManagerState(persist_pending=True), ContextLoaded(session_dict(pending=True)))
        state = replace(state, persist_pending=True)

        updated = reduce(state, PersistCompleted(session_dict(pr={"url": "u"})))

        assert updated.persist_pending is False
        assert updated.transcript == state.transcript

    def test_persist_started_refused_while_pending(self):
        state = replace(SessionManagerState(), persist_pending=True, persist_error="previous")

        assert reduce(state, PersistStarted()) is state

    def test_state_not_mutated(self):
        state = SessionManagerState()
        reduce(state, BranchChosen(MAIN))
        assert state.branch is None

    def test_unknown_event(self):
        with pytest.raises(ValueError):
            reduce(SessionManagerState(), object())


class TestPersistButtonMode:
    """Test the persist button mode"""

    def test_modes(self):
        assert persist_button_mode(None) is PersistButtonMode.CREATE
        assert persist_button_mode(session_dict(pending=True)) is PersistButtonMode.CREATE
        assert persist_button_mode(session_dict(pr={"url": "u"}, pending=True)) is PersistButtonMode.UPDATE
        assert persist_button_mode(session_dict(pr={"url": "u"})) is PersistButtonMode.REVIEW


class TestDebouncedTask:
    """Test debounced execution"""

    @pytest.mark.asyncio
    async def test_only_latest_schedule_fires(self):
        calls = []

        async def callback(value):
            calls.append(value)

        task = DebouncedTask(0.01, callback)
        task.schedule(1)
        task.schedule(2)
        assert task.pending is True
        await task.wait()

        assert calls == [2]
        assert task.pending is False

    @pytest.mark.asyncio
    async def test_cancel(self):
        calls = []

        async def callback():
            calls.append(True)

        task = DebouncedTask(0.01, callback)
        task.schedule()
        task.cancel()
        await asyncio.sleep(0.05)

        assert calls == []


async def linked_manager(gateway, delay=0.01):
    manager = SessionManager(gateway, debounce_seconds=delay)
    await manager.refresh_connection()
    return manager


class TestSessionManager:
    """Test the session manager against a fake gateway"""

    @pytest.mark.asyncio
    async def test_creates_once_with_latest_branch(self):
        gateway = FakeGateway()
        manager = await linked_manager(gateway)

        manager.choose_project(PROJECT)
        manager.choose_branch(MAIN)
        manager.choose_branch(DEVELOP)
        assert manager.state.creation_pending is True
        await manager.creation.wait()

        assert gateway.created == [creation_payload(PROJECT, DEVELOP)]
        assert manager.state.selection is Selection.EXISTING
        assert manager.state.active_session["branch"]["name"] == "develop"

    @pytest.mark.asyncio
    async def test_stale_creation_discarded(self):
        gateway = FakeGateway()
        gateway.hold_first_create = asyncio.Event()
        manager = await linked_manager(gateway)

        manager.choose_project(PROJECT)
        manager.choose_branch(MAIN)
        await asyncio.sleep(0.05)
        assert len(gateway.created) == 1

        manager.choose_branch(DEVELOP)
        gateway.hold_first_create.set()
        await manager.creation.wait()
        await asyncio.sleep(0.01)

        assert len(gateway.created) == 2
        assert manager.state.active_session["id"] == "s2"
        assert manager.state.branch["name"] == "develop"

    @pytest.mark.asyncio
    async def test_no_creation_while_disconnected(self):
        gateway = FakeGateway()
        gateway.linked = False
        manager = await linked_manager(gateway)

        manager.choose_project(PROJECT)
        manager.choose_branch(MAIN)
        await asyncio.sleep(0.05)

        assert gateway.created == []
        assert manager.state.context_state is ContextState.AUTH_REQUIRED

    @pytest.mark.asyncio
    async def test_connection_error_requires_auth(self):
        gateway = FakeGateway()
        gateway.linked = GatewayError(500)

        manager = await linked_manager(gateway)

        assert manager.state.connection is ConnectionStatus.ERROR
        assert manager.state.context_state is ContextState.AUTH_REQUIRED

    @pytest.mark.asyncio
    async def test_linking_later_starts_creation(self):
        gateway = FakeGateway()
        gateway.linked = False
        manager = await linked_manager(gateway)
        manager.choose_project(PROJECT)
        manager.choose_branch(MAIN)

        manager.set_connection_status(ConnectionStatus.LINKED)
        await manager.creation.wait()

        assert len(gateway.created) == 1

    @pytest.mark.asyncio
    async def test_creation_unauthorized(self):
        gateway = FakeGateway()
        gateway.create_error = GatewayError(401, "unauthorized")
        manager = await linked_manager(gateway)

        manager.choose_project(PROJECT)
        manager.choose_branch(MAIN)
        await manager.creation.wait()

        assert manager.state.context_state is ContextState.AUTH_REQUIRED
        assert manager.state.creation_pending is False

    @pytest.mark.asyncio
    async def test_creation_failure(self):
        gateway = FakeGateway()
        gateway.create_error = GatewayError(502, "remote_request_failed")
        manager = await linked_manager(gateway)

        manager.choose_project(PROJECT)
        manager.choose_branch(MAIN)
        await manager.creation.wait()

        assert manager.state.context_state is ContextState.ERROR
        assert manager.state.context_error == SESSION_CREATE_FAILED_MESSAGE

    @pytest.mark.asyncio
    async def test_select_session(self):
        gateway = FakeGateway()
        gateway.sessions["s9"] = session_dict("s9")
        manager = await linked_manager(gateway)

        state = await manager.select_session("s9")

        assert state.selected_session_id == "s9"
        assert state.context_state is ContextState.READY

    @pytest.mark.asyncio
    async def test_select_missing_session(self):
        manager = await linked_manager(FakeGateway())

        state = await manager.select_session("nope")

        assert state.context_state is ContextState.ERROR
        assert state.context_error == SESSION_NOT_FOUND_MESSAGE

    @pytest.mark.asyncio
    async def test_refresh_sessions_sorted(self):
        gateway = FakeGateway()
        gateway.sessions = {
            "old": {**session_dict("old"), "updated_at": "2026-01-01T00:00:00"},
            "new": {**session_dict("new"), "updated_at": "2026-02-01T00:00:00"},
        }
        manager = await linked_manager(gateway)

        sessions = await manager.refresh_sessions()

        assert [s["id"] for s in sessions] == ["new", "old"]


class TestSessionManagerPersist:
    """Test the persist action"""

    async def _loaded(self, gateway, session):
        gateway.sessions[session["id"]] = session
        manager = await linked_manager(gateway)
        await manager.select_session(session["id"])
        return manager

    @pytest.mark.asyncio
    async def test_persist(self):
        gateway = FakeGateway()
        manager = await self._loaded(gateway, session_dict(pending=True))

        result = await manager.persist("My title")

        assert result["status"] == "created"
        assert gateway.persisted == [("s1", "My title")]
        assert manager.state.persist_pending is False
        assert persist_button_mode(manager.state.active_session) is PersistButtonMode.REVIEW

    @pytest.mark.asyncio
    async def test_review_mode_returns_url(self):
        gateway = FakeGateway()
        manager = await self._loaded(gateway, session_dict(pr={"url": "https://bitbucket.test/pr/1"}))

        result = await manager.persist()

        assert result == {"review_url": "https://bitbucket.test/pr/1"}
        assert gateway.persisted == []

    @pytest.mark.asyncio
    async def test_nothing_pending(self):
        gateway = FakeGateway()
        manager = await self._loaded(gateway, session_dict())

        assert await manager.persist() is None
        assert manager.state.persist_error == NO_PENDING_MESSAGE
        assert gateway.persisted == []

    @pytest.mark.asyncio
    async def test_refused_while_running(self):
        gateway = FakeGateway()
        manager = await self._loaded(gateway, session_dict(pending=True))
        manager.state = replace(manager.state, persist_pending=True)

        assert await manager.persist() is None
        assert gateway.persisted == []

    @pytest.mark.asyncio
    async def test_failure(self):
        gateway = FakeGateway()
        gateway.persist_error = GatewayError(502, "commit_failed")
        manager = await self._loaded(gateway, session_dict(pending=True))

        assert await manager.persist() is None
        assert manager.state.persist_pending is False
        assert manager.state.persist_error == PERSIST_FAILED_MESSAGE

    @pytest.mark.asyncio
    async def test_unauthorized_prompts_login(self):
        gateway = FakeGateway()
        gateway.persist_error = GatewayError(401, "unauthorized")
        manager = await self._loaded(gateway, session_dict(pending=True))

        assert await manager.persist() is None
        assert manager.state.context_state is ContextState.AUTH_REQUIRED
        assert manager.state.context_error == PERSIST_AUTH_REQUIRED_MESSAGE
        assert manager.state.connection is ConnectionStatus.DISCONNECTED
        assert manager.state.persist_pending is False
        assert manager.state.persist_error is None
        assert manager.state.active_session["id"] == "s1"

    @pytest.mark.asyncio
    async def test_server_reports_nothing_pending(self):
        gateway = FakeGateway()
        gateway.persist_error = GatewayError(200, "no_pending_ai_changes")
        manager = await self._loaded(gateway, session_dict(pending=True))
        gateway.sessions["s1"] = session_dict(pending=False)

        assert await manager.persist() is None
        assert manager.state.persist_error == NO_PENDING_MESSAGE
        assert manager.state.persist_pending is False
        assert manager.state.active_session["persist"]["has_pending_changes"] is False
        assert manager.state.context_state is ContextState.READY

    @pytest.mark.asyncio
    async def test_draft_queued_enables_update(self):
        gateway = FakeGateway()
        manager = await self._loaded(gateway, session_dict(pr={"url": "u"}))

        manager.record_draft("s1", 1)

        assert persist_button_mode(manager.state.active_session) is PersistButtonMode.UPDATE


class TestApiSessionGateway:
    """Test the HTTP gateway"""

    def _gateway(self, handler):
        return ApiSessionGateway(base_url="http://app.test", transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_returns_data(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            return httpx.Response(200, json={"code": 200, "message": "ok", "data": session_dict("s1")})

        gateway = self._gateway(handler)
        session = await gateway.get_session("s1")
        await gateway.aclose()

        assert session["id"] == "s1"
        assert seen == [("GET", "/api/sessions/s1")]

    @pytest.mark.asyncio
    async def test_http_error(self):
        def handler(request):
            return httpx.Response(404, json={"code": 404, "message": "Session not found", "data": {"error": "not_found"}})

        gateway = self._gateway(handler)
        with pytest.raises(GatewayError) as exc_info:
            await gateway.get_session("nope")
        await gateway.aclose()

        assert exc_info.value.status_code == 404
        assert exc_info.value.error == "not_found"

    @pytest.mark.asyncio
    async def test_error_in_success_body(self):
        def handler(request):
            assert json.loads(request.content) == {"title": None}
            return httpx.Response(200, json={
                "code": 200,
                "message": "There are no pending persistency changes to submit.",
                "data": {"error": "no_pending_ai_changes"},
            })

        gateway = self._gateway(handler)
        with pytest.raises(GatewayError) as exc_info:
            await gateway.persist("s1")
        await gateway.aclose()

        assert exc_info.value.status_code == 200
        assert exc_info.value.error == "no_pending_ai_changes"

    @pytest.mark.asyncio
    async def test_connection_status(self):
        def handler(request):
            assert request.url.path == "/api/bitbucket/status"
            return httpx.Response(200, json={"code": 200, "message": "ok", "data": {"linked": True, "configured": True}})

        gateway = self._gateway(handler)
        assert await gateway.connection_status() is True
        await gateway.aclose()

    @pytest.mark.asyncio
    async def test_list_sessions(self):
        def handler(request):
            return httpx.Response(200, json={"code": 200, "message": "ok", "data": {"items": [{"id": "a"}], "total": 1}})

        gateway = self._gateway(handler)
        assert await gateway.list_sessions() == [{"id": "a"}]
        await gateway.aclose()

"""Pytest configuration and fixtures for backend tests."""

import os
import re
import sys
import tempfile
import time
from email.parser import BytesParser
from email.policy import default as default_policy
from pathlib import Path
from typing import Dict, List, Optional, Sequence
from urllib.parse import quote, unquote

# Must be set before anything under app/ is imported
_test_dir = tempfile.mkdtemp(prefix="persistency-assistant-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_test_dir, 'test.db')}"
os.environ["CREDENTIAL_COOKIE_SECRET"] = "test-cookie-secret-0123456789abcdef0123456789"
os.environ["BITBUCKET_CLIENT_ID"] = "test-client-id"
os.environ["BITBUCKET_CLIENT_SECRET"] = "test-client-secret"
os.environ["BITBUCKET_REDIRECT_URI"] = "http://testserver/api/bitbucket/callback"

# Add backend to path
backend_path = Path(__file__).parent.parent
sys.path.insert(0, str(backend_path))

import httpx
import pytest
import pytest_asyncio

from app.core.bitbucket_client import BitbucketClient, BitbucketOAuthClient
from app.core.token_manager import Credential, MemoryCredentialStore, TokenLifecycleManager
from app.db.base import drop_db, init_db
from app.db.repository import SessionRepository

API_BASE_URL = "https://api.bitbucket.test/2.0"

KEYWORDS = ("persist", "branch", "draft", "context", "token", "bootstrap", "cache", "session")


# ============================================================================
# Fake Bitbucket Cloud
# ============================================================================

class FakeBitbucket:
    """
    In-memory Bitbucket Cloud REST API served through ``httpx.MockTransport``.

    One repository, one file tree shared by every branch. ``fail`` maps an
    operation name to the HTTP status its next call answers with.
    """

    def __init__(self, workspace: str = "acme", repo: str = "docs"):
        self.workspace = workspace
        self.repo = repo
        self.main_branch = "main"
        self.branches: Dict[str, str] = {"main": "c0ffee", "develop": "beef01"}
        self.files: Dict[str, str] = {}
        self.binary_files: Dict[str, bytes] = {}
        self.commits: List[dict] = []
        self.pull_requests: Dict[int, dict] = {}
        self.title_updates: List[tuple] = []
        self.created_branches: List[str] = []
        self.requests: List[httpx.Request] = []
        self.fail: Dict[str, int] = {}
        self.workspaces = [{"slug": workspace, "name": "Acme", "uuid": "{ws-1}"}]
        self.projects = [{"uuid": "{proj-1}", "key": "DOC", "name": "Documentation"}]
        self.repositories = [
            {"slug": repo, "name": "Docs", "mainbranch": {"name": "main"}},
        ]
        self.page_length = 100

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(self) -> BitbucketClient:
        return BitbucketClient(api_base_url=API_BASE_URL, transport=self.transport)

    def seed(self, files: Dict[str, str]) -> None:
        self.files.update(files)

    # Handlers

    def _error(self, status: int) -> httpx.Response:
        return httpx.Response(status, json={"type": "error", "error": {"message": f"status {status}"}})

    def _failure(self, operation: str) -> Optional[httpx.Response]:
        status = self.fail.pop(operation, None)
        return self._error(status) if status else None

    def _page(self, request: httpx.Request, values: list) -> httpx.Response:
        page = int(request.url.params.get("page", "1"))
        start = (page - 1) * self.page_length
        body = {"values": values[start:start + self.page_length]}
        if start + self.page_length < len(values):
            body["next"] = str(request.url.copy_merge_params({"page": str(page + 1)}))
        return httpx.Response(200, json=body)

    def _directory(self, request: httpx.Request, directory: str) -> httpx.Response:
        prefix = directory.strip("/") + "/"
        entries = {}
        for path in sorted(list(self.files) + list(self.binary_files)):
            if not path.startswith(prefix):
                continue
            rest = path[len(prefix):]
            if "/" in rest:
                child = prefix + rest.split("/", 1)[0]
                entries[child] = {"path": child, "type": "commit_directory"}
            else:
                entries[path] = {"path": path, "type": "commit_file", "size": len(self.files.get(path, ""))}
        if not entries:
            return self._error(404)
        return self._page(request, [entries[k] for k in sorted(entries)])

    def _file(self, path: str) -> httpx.Response:
        if path in self.binary_files:
            return httpx.Response(
                200,
                content=self.binary_files[path],
                headers={"content-type": "application/octet-stream"},
            )
        if path not in self.files:
            return self._error(404)
        return httpx.Response(
            200,
            content=self.files[path].encode("utf-8"),
            headers={"content-type": "text/plain; charset=utf-8"},
        )

    def _commit(self, request: httpx.Request) -> httpx.Response:
        header = f"Content-Type: {request.headers['content-type']}\r\n\r\n".encode()
        message = BytesParser(policy=default_policy).parsebytes(header + request.content)
        fields, files = {}, {}
        for part in message.iter_parts():
            name = part.get_param("name", header="content-disposition")
            payload = part.get_payload(decode=True).decode("utf-8")
            if part.get_filename():
                files[name] = payload
            else:
                fields[name] = payload
        self.commits.append({"message": fields.get("message"), "branch": fields.get("branch"), "files": files})
        self.files.update(files)
        return httpx.Response(201)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        raw_path = request.url.raw_path.decode().split("?", 1)[0]
        path = raw_path[len("/2.0"):] if raw_path.startswith("/2.0") else raw_path
        workspace = quote(self.workspace, safe="")
        repo_prefix = f"/repositories/{workspace}/{quote(self.repo, safe='')}"
        method = request.method

        if path == "/workspaces" and method == "GET":
            return self._failure("list_workspaces") or self._page(request, self.workspaces)
        if re.fullmatch(r"/workspaces/[^/]+/projects", path):
            return self._failure("list_projects") or self._page(request, self.projects)
        if path == f"/repositories/{workspace}" and method == "GET":
            return self._failure("list_repositories") or self._page(request, self.repositories)

        if not path.startswith(repo_prefix):
            return self._error(404)
        rest = path[len(repo_prefix):]

        if rest == "/refs/branches" and method == "GET":
            values = [{"name": n, "target": {"hash": h}} for n, h in sorted(self.branches.items())]
            return self._failure("list_branches") or self._page(request, values)

        if rest == "/refs/branches" and method == "POST":
            failure = self._failure("create_branch")
            if failure:
                return failure
            body = httpx.Response(200, content=request.content).json()
            if body["name"] in self.branches:
                return self._error(409)
            self.branches[body["name"]] = body["target"]["hash"]
            self.created_branches.append(body["name"])
            return httpx.Response(201, json={"name": body["name"], "target": body["target"]})

        match = re.fullmatch(r"/refs/branches/([^/]+)", rest)
        if match and method == "GET":
            failure = self._failure("get_branch")
            if failure:
                return failure
            name = unquote(match.group(1))
            if name not in self.branches:
                return self._error(404)
            return httpx.Response(200, json={"name": name, "target": {"hash": self.branches[name]}})

        if rest == "/src" and method == "POST":
            return self._failure("commit") or self._commit(request)

        match = re.fullmatch(r"/src/([^/]+)/(.*)", rest)
        if match and method == "GET":
            target = unquote(match.group(2))
            if target.endswith("/"):
                return self._failure("list_directory") or self._directory(request, target)
            return self._failure("fetch_file") or self._file(target)

        if rest == "/pullrequests" and method == "POST":
            failure = self._failure("create_pr")
            if failure:
                return failure
            body = httpx.Response(200, content=request.content).json()
            pr_id = len(self.pull_requests) + 1
            self.pull_requests[pr_id] = body
            return httpx.Response(201, json={
                "id": pr_id,
                "title": body["title"],
                "links": {"html": {"href": f"https://bitbucket.test/{self.workspace}/{self.repo}/pull-requests/{pr_id}"}},
            })

        match = re.fullmatch(r"/pullrequests/(\d+)", rest)
        if match and method == "PUT":
            failure = self._failure("update_pr")
            if failure:
                return failure
            body = httpx.Response(200, content=request.content).json()
            self.title_updates.append((int(match.group(1)), body["title"]))
            return httpx.Response(200, json={"id": int(match.group(1)), "title": body["title"]})

        return self._error(404)


class FakeEmbedder:
    """Keyword-presence vectors; texts sharing keywords are similar."""

    def __init__(self, overrides: Optional[Dict[str, List[float]]] = None):
        self.overrides = overrides or {}
        self.calls: List[List[str]] = []

    def vector(self, text: str) -> List[float]:
        if text in self.overrides:
            return self.overrides[text]
        lowered = text.lower()
        return [1.0 if keyword in lowered else 0.0 for keyword in KEYWORDS]

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [self.vector(t) for t in texts]


# ============================================================================
# Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def db():
    """Fresh schema for every test."""
    await drop_db()
    await init_db()
    yield


@pytest.fixture
def fake_bitbucket() -> FakeBitbucket:
    return FakeBitbucket()


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


def make_credential(expires_in: float = 3600, **overrides) -> Credential:
    values = {
        "access_token": "access-token",
        "refresh_token": "refresh-token",
        "expires_at": time.time() + expires_in,
        "correlation_id": "corr-1",
    }
    values.update(overrides)
    return Credential(**values)


def make_oauth_client(transport: Optional[httpx.AsyncBaseTransport] = None, **overrides) -> BitbucketOAuthClient:
    values = {
        "client_id": "test-client-id",
        "client_secret": "test-client-secret",
        "redirect_uri": "http://testserver/api/bitbucket/callback",
        "token_url": "https://bitbucket.test/site/oauth2/access_token",
        "transport": transport,
    }
    values.update(overrides)
    return BitbucketOAuthClient(**values)


@pytest.fixture
def credential_store() -> MemoryCredentialStore:
    return MemoryCredentialStore(make_credential())


@pytest.fixture
def token_manager(credential_store) -> TokenLifecycleManager:
    return TokenLifecycleManager(credential_store, oauth_client=make_oauth_client())


async def create_session_row(**overrides):
    """Insert a session bound to acme/docs@main."""
    values = {
        "session_id": "session-1",
        "label": "Documentation · main",
        "project_uuid": "{proj-1}",
        "project_key": "DOC",
        "project_name": "Documentation",
        "workspace_slug": "acme",
        "workspace_name": "Acme",
        "workspace_uuid": "{ws-1}",
        "repository_slug": "docs",
        "repository_name": "Docs",
        "branch_name": "main",
        "branch_is_default": True,
        "context_folder_exists": True,
        "context_truncated": False,
        "context_has_bootstrap": True,
        "context_files": [],
        "persist_allow_writes": True,
    }
    values.update(overrides)
    return await SessionRepository().create_session(**values)

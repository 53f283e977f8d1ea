"""Bitbucket Cloud REST and OAuth clients."""

import codecs
import logging
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar
from urllib.parse import quote, urlencode

import httpx

from app.config import BitbucketConfig

logger = logging.getLogger(__name__)

T = TypeVar('T')

PAGE_LENGTH = 100

TEXTUAL_CONTENT_TYPES = (
    "application/json",
    "application/javascript",
    "application/xml",
    "application/yaml",
    "application/x-yaml",
    "application/graphql",
)


class BitbucketAPIError(Exception):
    """Non-2xx response or transport failure from Bitbucket."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        operation: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.operation = operation
        self.details = details or {}


class BitbucketUnauthorizedError(BitbucketAPIError):
    """Bitbucket rejected the access token (401)."""


@dataclass
class WorkspaceInfo:
    """Workspace the user is a member of."""
    slug: str
    name: Optional[str] = None
    uuid: Optional[str] = None


@dataclass
class ProjectInfo:
    """Project inside a workspace."""
    uuid: str
    name: str
    key: Optional[str] = None
    workspace: Optional[WorkspaceInfo] = None


@dataclass
class RepositoryInfo:
    """Repository inside a project."""
    slug: str
    name: str
    main_branch: Optional[str] = None


@dataclass
class BranchInfo:
    """Branch head."""
    name: str
    target_hash: Optional[str] = None
    is_default: bool = False


@dataclass
class DirectoryEntry:
    """One entry of a source directory listing."""
    path: str
    type: str
    size: Optional[int] = None

    @property
    def is_file(self) -> bool:
        return self.type == "commit_file"

    @property
    def is_directory(self) -> bool:
        return self.type == "commit_directory"


@dataclass
class RemoteFile:
    """Decoded file body, capped at the requested byte ceiling."""
    path: str
    content: str
    truncated: bool = False
    content_type: Optional[str] = None


@dataclass
class PullRequestInfo:
    """Created pull request."""
    id: int
    url: Optional[str]
    title: Optional[str] = None


@dataclass
class TokenGrant:
    """Token endpoint response."""
    access_token: str
    refresh_token: str
    expires_in: int
    scopes: List[str] = field(default_factory=list)


def is_textual_content_type(content_type: Optional[str]) -> bool:
    """A missing content type is treated as text."""
    if not content_type:
        return True
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type.startswith("text/") or media_type in TEXTUAL_CONTENT_TYPES


def bitbucket_api_operation(operation_name: str):
    """Decorator wrapping transport failures into BitbucketAPIError."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            try:
                return await func(*args, **kwargs)
            except BitbucketAPIError:
                raise
            except httpx.HTTPError as e:
                logger.warning(f"Bitbucket {operation_name} transport failure: {e}")
                raise BitbucketAPIError(
                    message=f"Bitbucket {operation_name} failed: {e}",
                    operation=operation_name,
                ) from e
        return wrapper
    return decorator


def _segment(value: str) -> str:
    return quote(value, safe="")


def _path(value: str) -> str:
    return quote(value.strip("/"), safe="/")


def _error_details(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {"body": response.text[:500]}
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"]
    return {"body": body}


def raise_for_status(response: httpx.Response, operation: str) -> None:
    """Raise the typed error for a non-2xx response."""
    if response.is_success:
        return
    details = _error_details(response)
    message = f"Bitbucket {operation} failed with status {response.status_code}"
    if response.status_code == 401:
        raise BitbucketUnauthorizedError(message, status_code=401, operation=operation, details=details)
    raise BitbucketAPIError(message, status_code=response.status_code, operation=operation, details=details)


class BitbucketClient:
    """Stateless Bitbucket Cloud REST client; every call takes an access token."""

    def __init__(
        self,
        api_base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base_url = (api_base_url or BitbucketConfig.API_BASE_URL).rstrip("/")
        self.timeout = timeout or BitbucketConfig.TIMEOUT
        self._transport = transport

    def _client(self, token: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
            },
            timeout=self.timeout,
            transport=self._transport,
        )

    @staticmethod
    def _repo_url(workspace: str, repo: str) -> str:
        return f"/repositories/{_segment(workspace)}/{_segment(repo)}"

    async def _paginate(
        self,
        client: httpx.AsyncClient,
        url: str,
        operation: str,
        params: Optional[Mapping[str, Any]] = None,
        allow_missing: bool = False,
    ) -> Optional[List[dict]]:
        """Collect ``values`` across pages following ``next``; None on a 404 when allowed."""
        values: List[dict] = []
        next_url: Optional[str] = url
        next_params = dict(params or {})
        next_params.setdefault("pagelen", PAGE_LENGTH)

        while next_url:
            response = await client.get(next_url, params=next_params)
            if response.status_code == 404 and allow_missing and not values:
                return None
            raise_for_status(response, operation)
            page = response.json()
            values.extend(page.get("values", []))
            next_url = page.get("next")
            # The next link already carries the query string
            next_params = None

        return values

    # ===================
    # Listings
    # ===================

    @bitbucket_api_operation("list workspaces")
    async def list_workspaces(self, token: str) -> List[WorkspaceInfo]:
        async with self._client(token) as client:
            values = await self._paginate(client, "/workspaces", "list workspaces", {"role": "member"})
        return [
            WorkspaceInfo(slug=v.get("slug"), name=v.get("name"), uuid=v.get("uuid"))
            for v in values
            if v.get("slug")
        ]

    @bitbucket_api_operation("list projects")
    async def list_projects(self, token: str, workspace: WorkspaceInfo) -> List[ProjectInfo]:
        async with self._client(token) as client:
            values = await self._paginate(
                client,
                f"/workspaces/{_segment(workspace.slug)}/projects",
                "list projects",
            )
        return [
            ProjectInfo(uuid=v["uuid"], name=v.get("name") or v.get("key") or v["uuid"], key=v.get("key"), workspace=workspace)
            for v in values
            if v.get("uuid")
        ]

    @bitbucket_api_operation("list repositories")
    async def list_repositories(
        self,
        token: str,
        workspace: str,
        project_uuid: str,
        project_key: Optional[str] = None,
    ) -> List[RepositoryInfo]:
        query = f'project.uuid="{project_uuid}"'
        if project_key:
            query += f' OR project.key="{project_key}"'
        async with self._client(token) as client:
            values = await self._paginate(
                client,
                f"/repositories/{_segment(workspace)}",
                "list repositories",
                {"q": query},
            )
        return [
            RepositoryInfo(
                slug=v["slug"],
                name=v.get("name") or v["slug"],
                main_branch=(v.get("mainbranch") or {}).get("name"),
            )
            for v in values
            if v.get("slug")
        ]

    @bitbucket_api_operation("list branches")
    async def list_branches(self, token: str, workspace: str, repo: str) -> List[BranchInfo]:
        async with self._client(token) as client:
            values = await self._paginate(
                client,
                f"{self._repo_url(workspace, repo)}/refs/branches",
                "list branches",
            )
        return [
            BranchInfo(name=v["name"], target_hash=(v.get("target") or {}).get("hash"))
            for v in values
            if v.get("name")
        ]

    @bitbucket_api_operation("get branch")
    async def get_branch(self, token: str, workspace: str, repo: str, branch: str) -> Optional[BranchInfo]:
        """Branch head, or None when the branch does not exist."""
        async with self._client(token) as client:
            response = await client.get(f"{self._repo_url(workspace, repo)}/refs/branches/{_segment(branch)}")
        if response.status_code == 404:
            return None
        raise_for_status(response, "get branch")
        body = response.json()
        return BranchInfo(name=body.get("name", branch), target_hash=(body.get("target") or {}).get("hash"))

    @bitbucket_api_operation("list directory")
    async def list_directory(
        self,
        token: str,
        workspace: str,
        repo: str,
        branch: str,
        path: str,
    ) -> Optional[List[DirectoryEntry]]:
        """Entries of a source directory, or None when it does not exist."""
        url = f"{self._repo_url(workspace, repo)}/src/{_segment(branch)}/{_path(path)}/"
        async with self._client(token) as client:
            values = await self._paginate(client, url, "list directory", allow_missing=True)
        if values is None:
            return None
        return [
            DirectoryEntry(path=v["path"], type=v.get("type", ""), size=v.get("size"))
            for v in values
            if v.get("path")
        ]

    @bitbucket_api_operation("fetch file")
    async def fetch_file(
        self,
        token: str,
        workspace: str,
        repo: str,
        branch: str,
        path: str,
        max_bytes: int,
    ) -> Optional[RemoteFile]:
        """
        Raw file body capped at ``max_bytes``.

        Returns None when the file is missing or its content type is not
        text-like.
        """
        url = f"{self._repo_url(workspace, repo)}/src/{_segment(branch)}/{_path(path)}"
        async with self._client(token) as client:
            async with client.stream("GET", url) as response:
                if response.status_code == 404:
                    return None
                if not response.is_success:
                    await response.aread()
                    raise_for_status(response, "fetch file")

                content_type = response.headers.get("content-type")
                if not is_textual_content_type(content_type):
                    logger.debug(f"Skipping non-text file {path} ({content_type})")
                    return None

                body = bytearray()
                truncated = False
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > max_bytes:
                        truncated = True
                        break

        # A multibyte sequence split by the cap is dropped, invalid bytes become U+FFFD
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        return RemoteFile(
            path=path,
            content=decoder.decode(bytes(body[:max_bytes]), final=not truncated),
            truncated=truncated,
            content_type=content_type,
        )

    # ===================
    # Mutations
    # ===================

    @bitbucket_api_operation("create branch")
    async def create_branch(self, token: str, workspace: str, repo: str, name: str, target_hash: str) -> bool:
        """Create a branch; returns False when it already exists (409)."""
        async with self._client(token) as client:
            response = await client.post(
                f"{self._repo_url(workspace, repo)}/refs/branches",
                json={"name": name, "target": {"hash": target_hash}},
            )
        if response.status_code == 409:
            logger.info(f"Branch {name} already exists in {workspace}/{repo}")
            return False
        raise_for_status(response, "create branch")
        return True

    @bitbucket_api_operation("commit files")
    async def commit_files(
        self,
        token: str,
        workspace: str,
        repo: str,
        branch: str,
        message: str,
        files: Dict[str, str],
    ) -> None:
        """Commit every file in one multipart request."""
        parts = [
            (path, (path.rsplit("/", 1)[-1], content.encode("utf-8"), "text/plain; charset=utf-8"))
            for path, content in files.items()
        ]
        async with self._client(token) as client:
            response = await client.post(
                f"{self._repo_url(workspace, repo)}/src",
                data={"message": message, "branch": branch},
                files=parts,
            )
        raise_for_status(response, "commit files")

    @bitbucket_api_operation("create pull request")
    async def create_pull_request(
        self,
        token: str,
        workspace: str,
        repo: str,
        title: str,
        source_branch: str,
        destination_branch: str,
        description: str,
    ) -> PullRequestInfo:
        async with self._client(token) as client:
            response = await client.post(
                f"{self._repo_url(workspace, repo)}/pullrequests",
                json={
                    "title": title,
                    "description": description,
                    "source": {"branch": {"name": source_branch}},
                    "destination": {"branch": {"name": destination_branch}},
                },
            )
        raise_for_status(response, "create pull request")
        body = response.json()
        return PullRequestInfo(
            id=body["id"],
            url=((body.get("links") or {}).get("html") or {}).get("href"),
            title=body.get("title", title),
        )

    @bitbucket_api_operation("update pull request")
    async def update_pull_request_title(self, token: str, workspace: str, repo: str, pr_id: int, title: str) -> None:
        async with self._client(token) as client:
            response = await client.put(
                f"{self._repo_url(workspace, repo)}/pullrequests/{pr_id}",
                json={"title": title},
            )
        raise_for_status(response, "update pull request")


class BitbucketOAuthClient:
    """Authorization-code and refresh-token grants against the Bitbucket token endpoint."""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        token_url: Optional[str] = None,
        authorize_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id if client_id is not None else BitbucketConfig.CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else BitbucketConfig.CLIENT_SECRET
        self.redirect_uri = redirect_uri if redirect_uri is not None else BitbucketConfig.REDIRECT_URI
        self.token_url = token_url or BitbucketConfig.TOKEN_URL
        self.authorize_url = authorize_url or BitbucketConfig.AUTHORIZE_URL
        self.timeout = timeout or BitbucketConfig.TIMEOUT
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def build_authorize_url(self, state: str) -> str:
        query = urlencode({
            "client_id": self.client_id,
            "response_type": "code",
            "state": state,
            "redirect_uri": self.redirect_uri,
        })
        return f"{self.authorize_url}?{query}"

    @bitbucket_api_operation("token request")
    async def _request_token(self, form: Dict[str, str], operation: str) -> TokenGrant:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                self.token_url,
                data=form,
                auth=(self.client_id, self.client_secret),
                headers={"Accept": "application/json"},
            )
        if not response.is_success:
            raise BitbucketAPIError(
                f"Bitbucket {operation} failed with status {response.status_code}",
                status_code=response.status_code,
                operation=operation,
                details=_error_details(response),
            )

        body = response.json()
        if not body.get("access_token") or not body.get("refresh_token") or body.get("expires_in") is None:
            raise BitbucketAPIError(
                f"Bitbucket {operation} returned an incomplete token",
                status_code=response.status_code,
                operation=operation,
            )
        return TokenGrant(
            access_token=body["access_token"],
            refresh_token=body["refresh_token"],
            expires_in=int(body["expires_in"]),
            scopes=(body.get("scopes") or "").split(),
        )

    async def exchange_code(self, code: str) -> TokenGrant:
        return await self._request_token(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": self.redirect_uri},
            "code exchange",
        )

    async def refresh(self, refresh_token: str) -> TokenGrant:
        return await self._request_token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            "token refresh",
        )

"""
Tests for the Bitbucket Cloud client
"""

import httpx
import pytest

from app.core.bitbucket_client import (
    BitbucketAPIError,
    BitbucketClient,
    BitbucketUnauthorizedError,
    WorkspaceInfo,
    is_textual_content_type,
)

from conftest import API_BASE_URL, make_oauth_client


class TestContentType:
    """Test textual content detection"""

    @pytest.mark.parametrize("content_type, expected", [
        (None, True),
        ("text/plain; charset=utf-8", True),
        ("text/markdown", True),
        ("application/json", True),
        ("Application/YAML", True),
        ("application/octet-stream", False),
        ("image/png", False),
    ])
    def test_is_textual(self, content_type, expected):
        assert is_textual_content_type(content_type) is expected


class TestListings:
    """Test paginated listings"""

    @pytest.mark.asyncio
    async def test_branches_follow_next(self, fake_bitbucket):
        fake_bitbucket.page_length = 1

        branches = await fake_bitbucket.client().list_branches("token", "acme", "docs")

        assert [b.name for b in branches] == ["develop", "main"]
        assert branches[1].target_hash == "c0ffee"
        branch_requests = [r for r in fake_bitbucket.requests if r.url.path.endswith("/refs/branches")]
        assert len(branch_requests) == 2
        assert branch_requests[0].url.params["pagelen"] == "100"

    @pytest.mark.asyncio
    async def test_sends_bearer_token(self, fake_bitbucket):
        await fake_bitbucket.client().list_workspaces("secret-token")

        request = fake_bitbucket.requests[0]
        assert request.headers["authorization"] == "Bearer secret-token"
        assert request.url.params["role"] == "member"

    @pytest.mark.asyncio
    async def test_projects_and_repositories(self, fake_bitbucket):
        client = fake_bitbucket.client()
        workspace = WorkspaceInfo(slug="acme", name="Acme")

        projects = await client.list_projects("token", workspace)
        repositories = await client.list_repositories("token", "acme", "{proj-1}", "DOC")

        assert projects[0].key == "DOC"
        assert projects[0].workspace is workspace
        assert repositories[0].main_branch == "main"
        query = fake_bitbucket.requests[-1].url.params["q"]
        assert query == 'project.uuid="{proj-1}" OR project.key="DOC"'

    @pytest.mark.asyncio
    async def test_missing_directory(self, fake_bitbucket):
        assert await fake_bitbucket.client().list_directory("token", "acme", "docs", "main", "ai") is None

    @pytest.mark.asyncio
    async def test_get_branch(self, fake_bitbucket):
        client = fake_bitbucket.client()

        assert (await client.get_branch("token", "acme", "docs", "main")).target_hash == "c0ffee"
        assert await client.get_branch("token", "acme", "docs", "gone") is None

    @pytest.mark.asyncio
    async def test_branch_name_with_slash_encoded(self, fake_bitbucket):
        fake_bitbucket.branches["feature/x"] = "abc"

        branch = await fake_bitbucket.client().get_branch("token", "acme", "docs", "feature/x")

        assert branch.name == "feature/x"
        assert "feature%2Fx" in fake_bitbucket.requests[0].url.raw_path.decode()


class TestFetchFile:
    """Test raw file fetches"""

    @pytest.mark.asyncio
    async def test_text_file(self, fake_bitbucket):
        fake_bitbucket.seed({"ai/a.mdc": "héllo"})

        remote = await fake_bitbucket.client().fetch_file("token", "acme", "docs", "main", "ai/a.mdc", 1000)

        assert remote.content == "héllo"
        assert remote.truncated is False

    @pytest.mark.asyncio
    async def test_truncated(self, fake_bitbucket):
        fake_bitbucket.seed({"ai/a.mdc": "abcdefghij"})

        remote = await fake_bitbucket.client().fetch_file("token", "acme", "docs", "main", "ai/a.mdc", 4)

        assert remote.content == "abcd"
        assert remote.truncated is True

    @pytest.mark.asyncio
    async def test_cap_inside_multibyte_character(self, fake_bitbucket):
        fake_bitbucket.seed({"ai/a.mdc": "abcé"})

        remote = await fake_bitbucket.client().fetch_file("token", "acme", "docs", "main", "ai/a.mdc", 4)

        assert remote.content == "abc"
        assert remote.truncated is True

    @pytest.mark.asyncio
    async def test_invalid_bytes_replaced_not_dropped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"ab\xffcd\xc3", headers={"content-type": "text/plain"})

        client = BitbucketClient(api_base_url=API_BASE_URL, transport=httpx.MockTransport(handler))

        whole = await client.fetch_file("token", "acme", "docs", "main", "ai/a.mdc", 100)
        capped = await client.fetch_file("token", "acme", "docs", "main", "ai/a.mdc", 5)

        assert whole.content == "ab\ufffdcd\ufffd"
        assert capped.content == "ab\ufffdcd"

    @pytest.mark.asyncio
    async def test_missing_and_binary(self, fake_bitbucket):
        fake_bitbucket.binary_files["ai/b.mdc"] = b"\x00\x01"
        client = fake_bitbucket.client()

        assert await client.fetch_file("token", "acme", "docs", "main", "ai/none.mdc", 10) is None
        assert await client.fetch_file("token", "acme", "docs", "main", "ai/b.mdc", 10) is None


class TestMutations:
    """Test branch, commit and pull request calls"""

    @pytest.mark.asyncio
    async def test_create_branch(self, fake_bitbucket):
        client = fake_bitbucket.client()

        assert await client.create_branch("token", "acme", "docs", "ai-session/x", "c0ffee") is True
        assert await client.create_branch("token", "acme", "docs", "ai-session/x", "c0ffee") is False

    @pytest.mark.asyncio
    async def test_commit_files_named_by_path(self, fake_bitbucket):
        await fake_bitbucket.client().commit_files(
            "token", "acme", "docs", "ai-session/x", "Update a", {"ai/a.mdc": "A", "ai/sub/b.mdc": "B"}
        )

        assert fake_bitbucket.commits == [{
            "message": "Update a",
            "branch": "ai-session/x",
            "files": {"ai/a.mdc": "A", "ai/sub/b.mdc": "B"},
        }]

    @pytest.mark.asyncio
    async def test_pull_request(self, fake_bitbucket):
        client = fake_bitbucket.client()

        pr = await client.create_pull_request("token", "acme", "docs", "Title", "ai-session/x", "main", "Body")
        await client.update_pull_request_title("token", "acme", "docs", pr.id, "Retitled")

        assert pr.id == 1
        assert pr.url.endswith("/pull-requests/1")
        assert fake_bitbucket.title_updates == [(1, "Retitled")]

    @pytest.mark.asyncio
    async def test_unauthorized(self, fake_bitbucket):
        fake_bitbucket.fail["commit"] = 401

        with pytest.raises(BitbucketUnauthorizedError) as exc_info:
            await fake_bitbucket.client().commit_files("token", "acme", "docs", "b", "m", {"ai/a.mdc": "A"})

        assert exc_info.value.status_code == 401
        assert exc_info.value.operation == "commit files"

    @pytest.mark.asyncio
    async def test_error_details(self, fake_bitbucket):
        fake_bitbucket.fail["create_branch"] = 500

        with pytest.raises(BitbucketAPIError) as exc_info:
            await fake_bitbucket.client().create_branch("token", "acme", "docs", "b", "c0ffee")

        assert exc_info.value.status_code == 500
        assert exc_info.value.details == {"message": "status 500"}
        assert not isinstance(exc_info.value, BitbucketUnauthorizedError)

    @pytest.mark.asyncio
    async def test_transport_failure_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = BitbucketClient(api_base_url=API_BASE_URL, transport=httpx.MockTransport(handler))

        with pytest.raises(BitbucketAPIError) as exc_info:
            await client.get_branch("token", "acme", "docs", "main")

        assert exc_info.value.status_code is None
        assert exc_info.value.operation == "get branch"


class TestOAuthClient:
    """Test OAuth helpers"""

    def test_authorize_url(self):
        url = make_oauth_client(authorize_url="https://bitbucket.test/site/oauth2/authorize").build_authorize_url("st")

        assert url.startswith("https://bitbucket.test/site/oauth2/authorize?")
        assert "client_id=test-client-id" in url
        assert "response_type=code" in url
        assert "state=st" in url

    def test_is_configured(self):
        assert make_oauth_client().is_configured is True
        assert make_oauth_client(redirect_uri="").is_configured is False

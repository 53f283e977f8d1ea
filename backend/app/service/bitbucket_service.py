"""
Bitbucket Service

Business logic layer - OAuth login flow and cached project/branch listings
"""

import logging
from typing import Awaitable, Callable, List, Optional

from fastapi import Request
from fastapi.responses import RedirectResponse

from app.config import CacheConfig, ServerConfig
from app.config.logging_config import log_print
from app.core.bitbucket_client import BitbucketAPIError, BitbucketClient, BitbucketOAuthClient, BitbucketUnauthorizedError
from app.core.context_assembler import ContextAssembler
from app.core.token_manager import CookieCredentialStore, Credential, TokenLifecycleManager
from app.db.repository import CacheRepository
from app.db.schemas import BranchListing, ConnectionStatusResponse, ContextFolderResponse, ProjectListing
from app.utils.auth.jwt_utils import JWTUtils
from app.utils.exceptions import BusinessException, RemoteRequestError
from app.utils.model.response_model import BaseResponse, ListResponse

logger = logging.getLogger(__name__)

PROJECTS_SCOPE = "projects"
BRANCHES_SCOPE = "branches"


class BitbucketService:
    """
    Bitbucket service

    Login/logout, connection status and the listings used to pick a
    project and branch for a new session
    """

    def __init__(self, client: Optional[BitbucketClient] = None, oauth_client: Optional[BitbucketOAuthClient] = None):
        self.client = client or BitbucketClient()
        self.oauth_client = oauth_client or BitbucketOAuthClient()
        self.cache_repo = CacheRepository()

    def _redirect(self, error: Optional[str] = None) -> RedirectResponse:
        url = ServerConfig.APP_URL.rstrip("/") + "/"
        if error:
            url += f"?bitbucket_error={error}"
        return RedirectResponse(url, status_code=302)

    @log_print
    async def login(self, tokens: TokenLifecycleManager) -> RedirectResponse:
        """Redirect to the Bitbucket consent screen"""
        tokens.assert_configured()
        return RedirectResponse(self.oauth_client.build_authorize_url(JWTUtils.create_state()), status_code=302)

    @log_print
    async def callback(
        self,
        request: Request,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
    ) -> RedirectResponse:
        """
        Complete the authorization-code grant

        The credential cookie is written onto the redirect itself.
        """
        if error:
            logger.warning(f"Bitbucket authorization denied: {error}")
            return self._redirect("access_denied")
        if not JWTUtils.verify_state(state):
            logger.warning("Bitbucket callback with an invalid state")
            return self._redirect("invalid_state")
        if not code:
            return self._redirect("missing_code")

        redirect = self._redirect()
        tokens = TokenLifecycleManager(CookieCredentialStore(request, redirect), oauth_client=self.oauth_client)
        try:
            await tokens.exchange_code(code)
        except BitbucketAPIError as e:
            logger.error(f"Bitbucket code exchange failed: {e}")
            return self._redirect("token_exchange_failed")
        return redirect

    @log_print
    async def status(self, tokens: TokenLifecycleManager):
        """Whether a usable credential is present"""
        configured = self.oauth_client.is_configured
        credential = await tokens.current()
        linked = False
        if credential is not None and configured:
            try:
                await tokens.ensure_fresh(credential)
                linked = True
            except BusinessException as e:
                logger.info(f"Bitbucket credential not usable: {e.message}")
        return BaseResponse.success(data=ConnectionStatusResponse(linked=linked, configured=configured))

    @log_print
    async def logout(self, tokens: TokenLifecycleManager):
        await tokens.invalidate()
        return BaseResponse.success(data={"linked": False}, message="Logged out of Bitbucket")

    async def _cached(
        self,
        credential: Credential,
        scope: str,
        cache_key: str,
        refresh: bool,
        load: Callable[[], Awaitable[List[dict]]],
    ) -> List[dict]:
        if not refresh:
            entry = await self.cache_repo.get_entry(credential.correlation_id, scope, cache_key)
            if entry is not None and entry.is_fresh(CacheConfig.TTL_SECONDS):
                logger.info(f"Serving {scope} listing {cache_key!r} from cache")
                return entry.payload
        payload = await load()
        await self.cache_repo.save_entry(credential.correlation_id, scope, cache_key, payload)
        return payload

    @log_print
    async def list_projects(self, tokens: TokenLifecycleManager, refresh: bool = False):
        """Projects of every workspace the user belongs to"""
        tokens.assert_configured()
        async with tokens.authorized() as credential:
            async def load() -> List[dict]:
                listings = []
                for workspace in await self.client.list_workspaces(credential.access_token):
                    for project in await self.client.list_projects(credential.access_token, workspace):
                        listings.append(ProjectListing(
                            uuid=project.uuid,
                            key=project.key,
                            name=project.name,
                            workspace_slug=workspace.slug,
                            workspace_name=workspace.name,
                            workspace_uuid=workspace.uuid,
                        ).model_dump())
                listings.sort(key=lambda p: ((p["workspace_name"] or "").lower(), p["name"].lower()))
                return listings

            try:
                items = await self._cached(credential, PROJECTS_SCOPE, "all", refresh, load)
            except BitbucketUnauthorizedError:
                raise
            except BitbucketAPIError as e:
                raise RemoteRequestError("Failed to load Bitbucket projects.", status_code=e.status_code) from e
        return ListResponse.success(items=items)

    @log_print
    async def list_branches(
        self,
        tokens: TokenLifecycleManager,
        workspace: str,
        project_uuid: str,
        project_key: Optional[str] = None,
        refresh: bool = False,
    ):
        """
        Branches of every repository of a project

        Sorted by repository name, default branch first, then by branch name
        """
        tokens.assert_configured()
        async with tokens.authorized() as credential:
            async def load() -> List[dict]:
                listings = []
                token = credential.access_token
                for repository in await self.client.list_repositories(token, workspace, project_uuid, project_key):
                    for branch in await self.client.list_branches(token, workspace, repository.slug):
                        listings.append(BranchListing(
                            name=branch.name,
                            is_default=branch.name == repository.main_branch,
                            repository_slug=repository.slug,
                            repository_name=repository.name,
                        ).model_dump())
                listings.sort(key=lambda b: (b["repository_name"].lower(), not b["is_default"], b["name"].lower()))
                return listings

            cache_key = f"{workspace}:{project_uuid}:{project_key or ''}"
            try:
                items = await self._cached(credential, BRANCHES_SCOPE, cache_key, refresh, load)
            except BitbucketUnauthorizedError:
                raise
            except BitbucketAPIError as e:
                raise RemoteRequestError("Failed to load Bitbucket branches.", status_code=e.status_code) from e
        return ListResponse.success(items=items)

    @log_print
    async def get_ai_folder(self, tokens: TokenLifecycleManager, workspace: str, repository: str, branch: str):
        """Raw, ungated snapshot of the persistency folder"""
        tokens.assert_configured()
        assembler = ContextAssembler(self.client)
        async with tokens.authorized() as credential:
            try:
                bundle = await assembler.assemble(credential.access_token, workspace, repository, branch)
            except BitbucketUnauthorizedError:
                raise
            except BitbucketAPIError as e:
                raise RemoteRequestError("Failed to load the ai/ folder.", status_code=e.status_code) from e

        data = ContextFolderResponse(
            exists=bundle.exists,
            truncated=bundle.truncated,
            has_bootstrap=bundle.has_bootstrap,
            files=[f.to_dict() for f in bundle.files],
        )
        return BaseResponse.success(data=data)

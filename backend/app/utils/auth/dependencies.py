"""
Authentication Dependencies

FastAPI dependencies that expose the Bitbucket credential of the caller
"""

from fastapi import Depends, Request, Response

from app.core.token_manager import CookieCredentialStore, CredentialStore, TokenLifecycleManager
from app.utils.exceptions.exception_handlers import CREDENTIAL_STORE_STATE


async def get_credential_store(request: Request, response: Response) -> CookieCredentialStore:
    """
    Credential store bound to the current request/response pair

    Cookies written to ``response`` are merged into whatever the endpoint
    returns, unless it returns a ``Response`` object itself. The store is
    also kept on ``request.state`` so the exception handlers can carry a
    renewed credential onto error responses.
    """
    store = CookieCredentialStore(request, response)
    setattr(request.state, CREDENTIAL_STORE_STATE, store)
    return store

async def get_token_manager(
    store: CredentialStore = Depends(get_credential_store),
) -> TokenLifecycleManager:
    return TokenLifecycleManager(store)

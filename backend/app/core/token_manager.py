"""Bitbucket credential lifecycle: freshness, refresh, invalidation."""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, asdict
from typing import AsyncIterator, Callable, Optional

from fastapi import Request, Response

from app.config import BitbucketConfig, CredentialCookieConfig
from app.core.bitbucket_client import (
    BitbucketAPIError,
    BitbucketOAuthClient,
    BitbucketUnauthorizedError,
    TokenGrant,
)
from app.utils.auth.jwt_utils import JWTConfig, JWTUtils
from app.utils.exceptions import ConfigurationMissingError, UnauthorizedError

logger = logging.getLogger(__name__)


def _new_correlation_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Credential:
    """OAuth credential; ``expires_at`` is an absolute epoch timestamp in seconds."""
    access_token: str
    refresh_token: str
    expires_at: float
    correlation_id: str = field(default_factory=_new_correlation_id)

    @classmethod
    def from_grant(cls, grant: TokenGrant, now: float, correlation_id: Optional[str] = None) -> "Credential":
        return cls(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=now + grant.expires_in,
            correlation_id=correlation_id or _new_correlation_id(),
        )

    def is_fresh(self, now: float, skew_seconds: float) -> bool:
        return now < self.expires_at - skew_seconds

    def __repr__(self):
        return f"Credential(correlation_id='{self.correlation_id}', expires_at={self.expires_at})"


class CredentialStore(ABC):
    """Where the credential lives between requests."""

    @abstractmethod
    async def load(self) -> Optional[Credential]:
        ...

    @abstractmethod
    async def save(self, credential: Credential) -> None:
        ...

    @abstractmethod
    async def delete(self) -> None:
        ...


class MemoryCredentialStore(CredentialStore):
    """Process-local store for scripts and tests."""

    def __init__(self, credential: Optional[Credential] = None):
        self.credential = credential
        self.deleted = False

    async def load(self) -> Optional[Credential]:
        return self.credential

    async def save(self, credential: Credential) -> None:
        self.credential = credential
        self.deleted = False

    async def delete(self) -> None:
        self.credential = None
        self.deleted = True


class CookieCredentialStore(CredentialStore):
    """
    Credential kept in a signed, httpOnly cookie.

    Reads come from the incoming request; writes and deletions are applied
    to the outgoing response.
    """

    def __init__(self, request: Request, response: Response, cookie_name: Optional[str] = None):
        self.request = request
        self.response = response
        self.cookie_name = cookie_name or CredentialCookieConfig.NAME
        self._credential: Optional[Credential] = None
        self._loaded = False

    async def load(self) -> Optional[Credential]:
        if self._loaded:
            return self._credential
        self._loaded = True

        raw = self.request.cookies.get(self.cookie_name)
        if not raw:
            return None

        try:
            claims = JWTUtils.decode(raw, JWTConfig.CREDENTIAL_TYPE)
            credential = Credential(
                access_token=claims["access_token"],
                refresh_token=claims["refresh_token"],
                expires_at=float(claims["expires_at"]),
                correlation_id=claims.get("correlation_id") or _new_correlation_id(),
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable credential cookie: {e}")
            await self.delete()
            return None

        if not claims.get("correlation_id"):
            await self.save(credential)

        self._credential = credential
        return credential

    async def save(self, credential: Credential) -> None:
        self._credential = credential
        self._loaded = True
        self.response.set_cookie(
            self.cookie_name,
            JWTUtils.encode(asdict(credential), JWTConfig.CREDENTIAL_TYPE),
            max_age=CredentialCookieConfig.max_age_seconds(),
            httponly=True,
            secure=CredentialCookieConfig.SECURE,
            samesite="lax",
            path="/",
        )

    async def delete(self) -> None:
        self._credential = None
        self._loaded = True
        self.response.delete_cookie(self.cookie_name, path="/")


class TokenLifecycleManager:
    """
    Guarantees callers a Bitbucket access token with more than
    ``skew_seconds`` of validity left.

    Expiring credentials are refreshed and persisted transparently. A failed
    refresh, or a 401 seen inside ``authorized()``, deletes the stored
    credential and raises ``UnauthorizedError``.
    """

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: Optional[BitbucketOAuthClient] = None,
        skew_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.oauth_client = oauth_client or BitbucketOAuthClient()
        self.skew_seconds = BitbucketConfig.REFRESH_SKEW_SECONDS if skew_seconds is None else skew_seconds
        self.clock = clock

    def assert_configured(self) -> None:
        if not self.oauth_client.is_configured:
            raise ConfigurationMissingError()

    async def current(self) -> Optional[Credential]:
        """Stored credential, without a freshness check"""
        return await self.store.load()

    async def ensure_fresh(self, credential: Optional[Credential] = None) -> Credential:
        """
        Return a credential valid for at least ``skew_seconds``.

        Args:
            credential: Credential to check; loaded from the store when omitted

        Raises:
            UnauthorizedError: No credential, or the refresh failed
            ConfigurationMissingError: A refresh is needed but OAuth is not configured
        """
        if credential is None:
            credential = await self.store.load()
        if credential is None:
            raise UnauthorizedError("Log in to Bitbucket to continue.")

        now = self.clock()
        if credential.is_fresh(now, self.skew_seconds):
            return credential

        self.assert_configured()
        logger.info(f"Refreshing Bitbucket token for {credential.correlation_id}")
        try:
            grant = await self.oauth_client.refresh(credential.refresh_token)
        except BitbucketAPIError as e:
            logger.warning(f"Bitbucket token refresh failed ({e.status_code}); dropping credential")
            await self.invalidate()
            raise UnauthorizedError("Bitbucket session expired. Please log in again.") from e

        refreshed = Credential.from_grant(grant, self.clock(), correlation_id=credential.correlation_id)
        await self.store.save(refreshed)
        return refreshed

    async def invalidate(self) -> None:
        await self.store.delete()

    @asynccontextmanager
    async def authorized(self) -> AsyncIterator[Credential]:
        """
        Yield a fresh credential; a remote 401 inside the block invalidates it.

        Usage:
            async with tokens.authorized() as credential:
                await client.get_branch(credential.access_token, ...)
        """
        credential = await self.ensure_fresh()
        try:
            yield credential
        except BitbucketUnauthorizedError as e:
            logger.warning(f"Bitbucket rejected the access token during {e.operation}; dropping credential")
            await self.invalidate()
            raise UnauthorizedError() from e

    async def exchange_code(self, code: str) -> Credential:
        """Complete the authorization-code grant and store the credential."""
        self.assert_configured()
        previous = await self.store.load()
        grant = await self.oauth_client.exchange_code(code)
        credential = Credential.from_grant(
            grant,
            self.clock(),
            correlation_id=previous.correlation_id if previous else None,
        )
        await self.store.save(credential)
        return credential

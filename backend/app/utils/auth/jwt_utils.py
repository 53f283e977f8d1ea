"""
JWT Utilities

Signs and verifies the credential cookie and the OAuth ``state`` parameter.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from app.config.settings import CredentialCookieConfig

logger = logging.getLogger(__name__)


class JWTConfig:
    """JWT signing settings"""

    MIN_KEY_LENGTH = 32

    ALGORITHM = CredentialCookieConfig.ALGORITHM
    STATE_TTL_SECONDS = CredentialCookieConfig.STATE_TTL_SECONDS

    TOKEN_TYPE_CLAIM = "token_type"
    CREDENTIAL_TYPE = "bitbucket_credential"
    STATE_TYPE = "oauth_state"

    _secret_key: Optional[str] = None

    @classmethod
    def secret_key(cls) -> str:
        """Configured secret, or a per-process random one when unset"""
        if cls._secret_key is None:
            configured = CredentialCookieConfig.SECRET_KEY
            if not configured:
                logger.warning("credential_cookie.secret_key is not set; cookies will not survive a restart")
                configured = secrets.token_urlsafe(48)
            elif len(configured) < cls.MIN_KEY_LENGTH:
                logger.warning(f"credential_cookie.secret_key is shorter than {cls.MIN_KEY_LENGTH} characters")
            cls._secret_key = configured
        return cls._secret_key


class JWTUtils:
    """Encode and decode signed payloads"""

    @staticmethod
    def encode(payload: Dict[str, Any], token_type: str, expires_delta: Optional[timedelta] = None) -> str:
        now = datetime.now(timezone.utc)
        claims = dict(payload)
        claims[JWTConfig.TOKEN_TYPE_CLAIM] = token_type
        claims["iat"] = now
        if expires_delta is not None:
            claims["exp"] = now + expires_delta
        return jwt.encode(claims, JWTConfig.secret_key(), algorithm=JWTConfig.ALGORITHM)

    @staticmethod
    def decode(token: str, token_type: str) -> Dict[str, Any]:
        """
        Decode and validate a signed payload

        Raises:
            ValueError: If the token is expired, tampered with, or of another type
        """
        try:
            payload = jwt.decode(token, JWTConfig.secret_key(), algorithms=[JWTConfig.ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise ValueError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise ValueError(f"Invalid token: {e}")

        if payload.get(JWTConfig.TOKEN_TYPE_CLAIM) != token_type:
            raise ValueError(f"Token type mismatch: expected {token_type}")
        return payload

    @staticmethod
    def create_state() -> str:
        """Short-lived signed OAuth state"""
        return JWTUtils.encode(
            {"nonce": secrets.token_urlsafe(16)},
            JWTConfig.STATE_TYPE,
            expires_delta=timedelta(seconds=JWTConfig.STATE_TTL_SECONDS),
        )

    @staticmethod
    def verify_state(state: Optional[str]) -> bool:
        if not state:
            return False
        try:
            JWTUtils.decode(state, JWTConfig.STATE_TYPE)
            return True
        except ValueError as e:
            logger.warning(f"Rejected OAuth state: {e}")
            return False

"""Authentication and authorization for the Safe Transit admin API"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from safetransit.config import settings
from safetransit.exceptions import AuthenticationError, AuthorizationError
from safetransit.governance.crypto_service import DEFAULT_SECRET

logger = logging.getLogger(__name__)


class AuthResult(BaseModel):
    """Authentication result"""
    authenticated: bool
    user_id: Optional[str] = None
    role: Optional[str] = None
    error: Optional[str] = None

    @property
    def actor(self) -> str:
        """Identifier recorded in admin notes and audit entries, e.g. "Admin - 42"."""
        return f"{self.role} - {self.user_id}"


class Authenticator:
    """
    Issues and verifies administrator JWTs.

    - Signature and expiry checks via python-jose
    - In-memory revocation list
    - Cache of verified tokens

    Revocations and cache entries are kept only until the token's own
    expiry, after which the signature check rejects it anyway.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        expiry_hours: Optional[int] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize authenticator.

        Args:
            secret_key: Secret key for JWT signing (defaults to config)
            algorithm: JWT algorithm (defaults to config)
            expiry_hours: Token lifetime in hours (defaults to config)
            clock: Returns the current time as epoch seconds
        """
        self.secret_key = secret_key or settings.security.jwt_secret
        self.algorithm = algorithm or settings.security.jwt_algorithm
        self.expiry_hours = expiry_hours or settings.security.jwt_expiry_hours
        self._clock = clock

        # token -> exp claim
        self._revoked_tokens: Dict[str, float] = {}
        self._token_cache: Dict[str, Tuple[AuthResult, float]] = {}

        if self.secret_key == DEFAULT_SECRET:
            logger.warning("Using default JWT secret - change in production!")

        logger.info("Authenticator initialized")

    def generate_token(
        self,
        user_id: str,
        role: str,
        expiry_minutes: Optional[int] = None
    ) -> str:
        """
        Generate a JWT for an administrator.

        Args:
            user_id: Administrator identifier
            role: Role, e.g. "Admin" or "Verifier"
            expiry_minutes: Custom lifetime (overrides the configured hours)

        Returns:
            JWT token string
        """
        now = datetime.now(timezone.utc)
        lifetime = (
            timedelta(minutes=expiry_minutes) if expiry_minutes is not None
            else timedelta(hours=self.expiry_hours)
        )
        payload = {
            "user_id": str(user_id),
            "role": role,
            "exp": now + lifetime,
            "iat": now
        }

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        logger.info(f"Generated token for user {user_id} with role {role}")
        return token

    def verify_token(self, token: str) -> AuthResult:
        """
        Verify a JWT. Tokens without an exp claim are rejected.

        Args:
            token: JWT token string

        Returns:
            AuthResult with authentication status and user info
        """
        self._evict_expired()

        if token in self._revoked_tokens:
            logger.warning("Attempted use of revoked token")
            return AuthResult(authenticated=False, error="Token has been revoked")

        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"require_exp": True}
            )
        except jwt.ExpiredSignatureError:
            self._token_cache.pop(token, None)
            logger.warning("Token has expired")
            return AuthResult(authenticated=False, error="Token has expired")
        except JWTError as e:
            self._token_cache.pop(token, None)
            logger.warning(f"Token verification failed: {str(e)}")
            return AuthResult(authenticated=False, error="Invalid token")

        cached = self._token_cache.get(token)
        if cached is not None:
            return cached[0]

        user_id = payload.get("user_id")
        if not user_id:
            logger.warning("Token missing user_id")
            return AuthResult(authenticated=False, error="Invalid token payload")

        result = AuthResult(authenticated=True, user_id=user_id, role=payload.get("role"))
        self._token_cache[token] = (result, float(payload["exp"]))
        return result

    def revoke_token(self, token: str) -> None:
        """
        Revoke a verified token and drop it from the cache.

        Tokens that no longer verify are ignored; they are rejected already.
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"require_exp": True}
            )
        except JWTError:
            return
        self._revoked_tokens[token] = float(payload["exp"])
        self._token_cache.pop(token, None)
        logger.info("Token revoked")

    def _evict_expired(self) -> None:
        now = self._clock()
        for token in [t for t, exp in self._revoked_tokens.items() if exp <= now]:
            del self._revoked_tokens[token]
        for token in [t for t, (_, exp) in self._token_cache.items() if exp <= now]:
            del self._token_cache[token]


bearer_scheme = HTTPBearer(auto_error=False)


def require_admin(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> AuthResult:
    """
    FastAPI dependency admitting only administrator roles.

    Raises:
        AuthenticationError: Missing or invalid token
        AuthorizationError: Valid token without an administrator role
    """
    if credentials is None:
        raise AuthenticationError("Authentication required")

    authenticator: Authenticator = request.app.state.authenticator
    result = authenticator.verify_token(credentials.credentials)
    if not result.authenticated:
        raise AuthenticationError(result.error or "Invalid token")

    admin_roles: List[str] = request.app.state.settings.security.admin_roles
    if result.role not in admin_roles:
        logger.warning(f"User {result.user_id} with role {result.role} denied admin access")
        raise AuthorizationError("Administrator role required")

    return result

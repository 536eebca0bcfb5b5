# =============================================================================
# Token Service
# =============================================================================
#
# Issues, verifies and revokes credentials:
#   - Access tokens (short-lived JWT, 30 minutes)
#   - Refresh tokens (long-lived JWT, 7 days, distinct secret)
#   - One-time action tokens (email verification, password reset)
#
# Revoked tokens are kept in CacheStorage under a per-kind prefix with a TTL
# equal to the token's remaining lifetime, so the list prunes itself. Any
# process sharing the same cache (Redis) observes every revocation.
#
# =============================================================================

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import jwt
from pydantic import BaseModel

from tracker.config import Settings
from tracker.core.models import User
from tracker.core.results import Forbidden, NotFound, Unauthenticated
from tracker.core.utils import generate_token, seconds_until, utc_now
from tracker.storage.base import CacheStorage, Collections, MetadataStorage

logger = logging.getLogger(__name__)


# =============================================================================
# Models
# =============================================================================


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class ActionPurpose(str, Enum):
    """What a one-time action token may be used for."""

    EMAIL_VERIFICATION = "EMAIL"
    PASSWORD_RESET = "PASSWORD"


class TokenClaims(BaseModel):
    """Validated JWT claims."""
    sub: int  # user_id
    username: str
    email: str
    type: TokenKind
    iat: datetime
    exp: datetime
    jti: str  # unique token ID


class TokenPair(BaseModel):
    """Access and refresh token pair."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until access token expires


# =============================================================================
# Errors
# =============================================================================


class TokenError(Unauthenticated):
    """Base exception for invalid credentials."""
    default_message = "Invalid credentials"


class TokenExpiredError(TokenError):
    """Token has expired."""
    default_message = "Token has expired"


class TokenInvalidError(TokenError):
    """Token is invalid or malformed."""
    default_message = "Invalid token"


class TokenRevokedError(TokenError):
    """Token was revoked (logout) before it expired."""
    default_message = "Token has been revoked"


class MissingCredentialError(Unauthenticated):
    """No bearer header or cookie was presented at all."""
    default_message = "No credentials provided"


# =============================================================================
# Token Service
# =============================================================================


class TokenService:
    """Credential lifecycle backed by a shared cache for revocations."""

    def __init__(self, settings: Settings, cache: CacheStorage):
        self.settings = settings
        self.cache = cache

    # -------------------------------------------------------------------------
    # Issuance
    # -------------------------------------------------------------------------

    def _secret(self, kind: TokenKind) -> str:
        if kind == TokenKind.REFRESH:
            return self.settings.jwt_refresh_secret_key
        return self.settings.jwt_secret_key

    def _lifetime(self, kind: TokenKind) -> timedelta:
        if kind == TokenKind.REFRESH:
            return timedelta(days=self.settings.jwt_refresh_token_expire_days)
        return timedelta(minutes=self.settings.jwt_access_token_expire_minutes)

    def _encode(self, user: User, kind: TokenKind) -> str:
        now = utc_now()
        payload = {
            "sub": str(user.id),
            "username": user.username,
            "email": user.email,
            "type": kind.value,
            "iat": now,
            "exp": now + self._lifetime(kind),
            "jti": generate_token(8),
        }
        return jwt.encode(payload, self._secret(kind), algorithm=self.settings.jwt_algorithm)

    def issue_access_token(self, user: User) -> str:
        """Create a JWT access token."""
        return self._encode(user, TokenKind.ACCESS)

    def issue_refresh_token(self, user: User) -> str:
        """Create a JWT refresh token (longer-lived, separate secret)."""
        return self._encode(user, TokenKind.REFRESH)

    def issue_pair(self, user: User) -> TokenPair:
        """Create both access and refresh tokens."""
        return TokenPair(
            access_token=self.issue_access_token(user),
            refresh_token=self.issue_refresh_token(user),
            expires_in=self.settings.jwt_access_token_expire_minutes * 60,
        )

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def decode(self, token: str, kind: TokenKind) -> TokenClaims:
        """
        Check signature, expiry and token type. Does not consult the
        revocation list; use `verify` for that.

        Raises:
            TokenExpiredError: Token has expired
            TokenInvalidError: Token is invalid
        """
        try:
            payload = jwt.decode(
                token,
                self._secret(kind),
                algorithms=[self.settings.jwt_algorithm],
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError()
        except jwt.InvalidTokenError as e:
            raise TokenInvalidError(f"Invalid token: {e}")

        if payload.get("type") != kind.value:
            raise TokenInvalidError(f"Expected {kind.value} token, got {payload.get('type')}")

        try:
            return TokenClaims(
                sub=int(payload["sub"]),
                username=payload["username"],
                email=payload["email"],
                type=kind,
                iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
                jti=payload.get("jti", ""),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise TokenInvalidError(f"Malformed claims: {e}")

    async def verify(self, token: str, kind: TokenKind) -> TokenClaims:
        """
        Full verification: signature, expiry, type and revocation list.

        Raises:
            TokenExpiredError, TokenInvalidError, TokenRevokedError
        """
        claims = self.decode(token, kind)
        if await self.is_revoked(token, kind):
            raise TokenRevokedError()
        return claims

    # -------------------------------------------------------------------------
    # Revocation
    # -------------------------------------------------------------------------

    def _blacklist_key(self, token: str, kind: TokenKind) -> str:
        if kind == TokenKind.REFRESH:
            return f"{self.settings.refresh_blacklist_prefix}{token}"
        return f"{self.settings.access_blacklist_prefix}{token}"

    async def is_revoked(self, token: str, kind: TokenKind) -> bool:
        return await self.cache.exists(self._blacklist_key(token, kind))

    async def _revoke(self, token: str, kind: TokenKind) -> bool:
        try:
            claims = self.decode(token, kind)
        except TokenExpiredError:
            return False  # Already unusable

        ttl = seconds_until(claims.exp)
        if ttl <= 0:
            return False

        await self.cache.set(self._blacklist_key(token, kind), 1, ttl=ttl)
        logger.info(f"Revoked {kind.value} token {claims.jti} for user {claims.sub}")
        return True

    async def revoke(self, refresh_token: str) -> bool:
        """
        Revoke a refresh token until it would have expired anyway.

        Idempotent. Returns False if the token had already expired.
        Raises TokenInvalidError for tokens we never issued.
        """
        return await self._revoke(refresh_token, TokenKind.REFRESH)

    async def revoke_access(self, access_token: str) -> bool:
        """Revoke an access token (logout)."""
        return await self._revoke(access_token, TokenKind.ACCESS)

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    async def refresh(self, refresh_token: str, metadata: MetadataStorage) -> str:
        """
        Exchange a refresh token for a new access token.

        Claims are taken from the stored user, so renamed users get fresh
        claims and deleted users are refused.
        """
        claims = await self.verify(refresh_token, TokenKind.REFRESH)
        data = await metadata.get(Collections.USERS, claims.sub)
        if data is None:
            raise Unauthenticated("User no longer exists")
        return self.issue_access_token(User(**data))

    # -------------------------------------------------------------------------
    # One-time action tokens
    # -------------------------------------------------------------------------

    def _action_key(self, token: str) -> str:
        return f"{self.settings.action_token_prefix}{token}"

    async def issue_action_token(
        self,
        purpose: ActionPurpose,
        payload: dict[str, Any],
        ttl: int | None = None,
    ) -> str:
        """
        Store a payload behind an opaque one-time token.

        Args:
            purpose: What the token may be consumed for
            payload: JSON-serializable data returned on consumption
            ttl: Lifetime in seconds (defaults to action_token_expire_minutes)
        """
        token = generate_token()
        ttl = ttl or self.settings.action_token_expire_minutes * 60
        await self.cache.set(
            self._action_key(token),
            {"type": purpose.value, "payload": payload},
            ttl=ttl,
        )
        return token

    async def consume_action_token(self, token: str, purpose: ActionPurpose) -> dict[str, Any]:
        """
        Redeem a one-time token.

        Raises:
            NotFound: Unknown, expired or already used
            Forbidden: Token was issued for a different purpose
        """
        key = self._action_key(token)
        entry = await self.cache.get(key)
        if entry is None:
            raise NotFound("Token is invalid or has expired")
        if entry.get("type") != purpose.value:
            raise Forbidden("Token was not issued for this action")

        # Whoever deletes the key wins; a concurrent redeemer sees nothing to delete
        if not await self.cache.delete(key):
            raise NotFound("Token is invalid or has expired")
        return entry.get("payload") or {}

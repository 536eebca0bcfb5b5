# =============================================================================
# Google Sign-In (OAuth 2.0 authorization-code flow)
# =============================================================================
#
# Configure a web OAuth client in Google Cloud with the redirect URI
# {APP_URL}/auth/google/callback, then set GOOGLE_OAUTH_CLIENT_ID and
# GOOGLE_OAUTH_CLIENT_SECRET.
#
# The CSRF `state` lives in CacheStorage, so the callback may land on a
# different API process than the one that issued the redirect.
#
# =============================================================================

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel

from tracker.config import Settings
from tracker.core.models import Provider
from tracker.core.utils import generate_token
from tracker.storage.base import CacheStorage

logger = logging.getLogger(__name__)

STATE_TTL_SECONDS = 600
STATE_PREFIX = "oauth_state_"


class OAuthUserInfo(BaseModel):
    """Identity asserted by an external provider."""
    provider: Provider
    provider_user_id: str
    email: str
    name: str
    email_verified: bool = True


class OAuthError(Exception):
    """The provider refused, or the flow was tampered with."""
    pass


class GoogleOAuth:
    """Talks to Google's OAuth endpoints; knows nothing about our users."""

    AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

    def __init__(self, settings: Settings, cache: CacheStorage, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self.cache = cache
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.google_oauth_client_id and self.settings.google_oauth_client_secret)

    @property
    def redirect_uri(self) -> str:
        return f"{self.settings.app_url}/auth/google/callback"

    def _require_configured(self) -> None:
        if not self.is_configured:
            raise OAuthError("Google sign-in is not configured")

    @staticmethod
    def _json(response: httpx.Response, step: str) -> dict[str, Any]:
        if response.status_code != 200:
            logger.error(f"Google {step} returned {response.status_code}: {response.text}")
            raise OAuthError(f"Google {step} failed ({response.status_code})")
        return response.json()

    async def get_authorize_url(self) -> str:
        """Issue a state value and build the consent-screen URL."""
        self._require_configured()

        state = generate_token()
        await self.cache.set(f"{STATE_PREFIX}{state}", Provider.GOOGLE.value, ttl=STATE_TTL_SECONDS)

        query = urlencode({
            "client_id": self.settings.google_oauth_client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "prompt": "select_account",
            "state": state,
        })
        return f"{self.AUTHORIZE_URL}?{query}"

    async def validate_state(self, state: str) -> bool:
        """True the first time a state we issued comes back, False otherwise."""
        return await self.cache.delete(f"{STATE_PREFIX}{state}")

    async def exchange_code(self, code: str) -> dict[str, Any]:
        self._require_configured()
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.settings.google_oauth_client_id,
            "client_secret": self.settings.google_oauth_client_secret,
        }
        async with httpx.AsyncClient(transport=self._transport, timeout=10.0) as client:
            response = await client.post(self.TOKEN_URL, data=form)
        return self._json(response, "token exchange")

    async def get_user_info(self, access_token: str) -> OAuthUserInfo:
        async with httpx.AsyncClient(transport=self._transport, timeout=10.0) as client:
            response = await client.get(self.USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"})
        profile = self._json(response, "userinfo")

        email = profile["email"]
        return OAuthUserInfo(
            provider=Provider.GOOGLE,
            provider_user_id=str(profile["id"]),
            email=email,
            name=profile.get("name") or email.split("@")[0],
            email_verified=bool(profile.get("verified_email", True)),
        )

    async def authenticate(self, code: str, state: str) -> OAuthUserInfo:
        """Callback handler: state check, code exchange, profile fetch."""
        if not await self.validate_state(state):
            raise OAuthError("Unknown or expired sign-in state")
        grant = await self.exchange_code(code)
        return await self.get_user_info(grant["access_token"])

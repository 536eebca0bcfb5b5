"""
Tests for the token service.

Access/refresh JWTs, the shared revocation list and one-time action tokens.
"""

import asyncio
import time
from datetime import timedelta

import jwt
import pytest

from tracker.auth.tokens import (
    ActionPurpose,
    TokenExpiredError,
    TokenInvalidError,
    TokenKind,
    TokenRevokedError,
    TokenService,
)
from tracker.core.models import User
from tracker.core.results import Forbidden, NotFound, Unauthenticated
from tracker.core.utils import seconds_until, utc_now
from tracker.storage.base import Collections
from tracker.storage.local import InMemoryCacheStorage

from conftest import insert_user


@pytest.fixture
def cache():
    return InMemoryCacheStorage()


@pytest.fixture
def tokens(settings, cache):
    return TokenService(settings, cache)


@pytest.fixture
def user():
    return User(id=7, username="alice", email="alice@example.com", name="Alice")


def expired_token(settings, user, kind=TokenKind.ACCESS):
    past = utc_now() - timedelta(hours=2)
    secret = settings.jwt_refresh_secret_key if kind == TokenKind.REFRESH else settings.jwt_secret_key
    return jwt.encode(
        {
            "sub": str(user.id),
            "username": user.username,
            "email": user.email,
            "type": kind.value,
            "iat": past,
            "exp": past + timedelta(minutes=30),
            "jti": "old",
        },
        secret,
        algorithm=settings.jwt_algorithm,
    )


# =============================================================================
# Issuance & Decoding
# =============================================================================


class TestIssuance:
    def test_pair_round_trips_claims(self, tokens, user):
        pair = tokens.issue_pair(user)

        access = tokens.decode(pair.access_token, TokenKind.ACCESS)
        refresh = tokens.decode(pair.refresh_token, TokenKind.REFRESH)

        assert access.sub == 7
        assert access.username == "alice"
        assert refresh.sub == 7
        assert pair.expires_in == 30 * 60
        assert access.jti != refresh.jti

    def test_lifetimes(self, tokens, user):
        access = tokens.decode(tokens.issue_access_token(user), TokenKind.ACCESS)
        refresh = tokens.decode(tokens.issue_refresh_token(user), TokenKind.REFRESH)

        assert access.exp - access.iat == timedelta(minutes=30)
        assert refresh.exp - refresh.iat == timedelta(days=7)

    def test_access_token_is_not_a_refresh_token(self, tokens, user):
        # Different secrets, so the signature check fails first
        with pytest.raises(TokenInvalidError):
            tokens.decode(tokens.issue_access_token(user), TokenKind.REFRESH)

    def test_wrong_type_with_right_secret(self, settings, cache, user):
        settings.jwt_refresh_secret_key = settings.jwt_secret_key
        tokens = TokenService(settings, cache)

        with pytest.raises(TokenInvalidError):
            tokens.decode(tokens.issue_access_token(user), TokenKind.REFRESH)

    def test_tampered_token(self, tokens, user):
        token = tokens.issue_access_token(user)
        with pytest.raises(TokenInvalidError):
            tokens.decode(token[:-4] + "AAAA", TokenKind.ACCESS)

    def test_garbage(self, tokens):
        with pytest.raises(TokenInvalidError):
            tokens.decode("not-a-jwt", TokenKind.ACCESS)

    def test_expired(self, tokens, settings, user):
        with pytest.raises(TokenExpiredError):
            tokens.decode(expired_token(settings, user), TokenKind.ACCESS)

    def test_token_errors_are_unauthenticated(self, tokens):
        with pytest.raises(Unauthenticated):
            tokens.decode("not-a-jwt", TokenKind.ACCESS)


# =============================================================================
# Revocation
# =============================================================================


class TestRevocation:
    @pytest.mark.asyncio
    async def test_revoked_refresh_token_is_refused(self, tokens, user):
        token = tokens.issue_refresh_token(user)
        assert (await tokens.verify(token, TokenKind.REFRESH)).sub == user.id

        assert await tokens.revoke(token) is True
        assert await tokens.is_revoked(token, TokenKind.REFRESH)
        with pytest.raises(TokenRevokedError):
            await tokens.verify(token, TokenKind.REFRESH)

    @pytest.mark.asyncio
    async def test_revoke_is_idempotent(self, tokens, user):
        token = tokens.issue_refresh_token(user)
        assert await tokens.revoke(token) is True
        assert await tokens.revoke(token) is True
        with pytest.raises(TokenRevokedError):
            await tokens.verify(token, TokenKind.REFRESH)

    @pytest.mark.asyncio
    async def test_revoke_access_token(self, tokens, user):
        token = tokens.issue_access_token(user)
        assert await tokens.revoke_access(token) is True
        with pytest.raises(TokenRevokedError):
            await tokens.verify(token, TokenKind.ACCESS)

    @pytest.mark.asyncio
    async def test_revoking_does_not_leak_across_kinds(self, tokens, user):
        refresh = tokens.issue_refresh_token(user)
        access = tokens.issue_access_token(user)
        await tokens.revoke(refresh)

        assert (await tokens.verify(access, TokenKind.ACCESS)).sub == user.id

    @pytest.mark.asyncio
    async def test_expired_token_needs_no_revocation(self, tokens, settings, cache, user):
        token = expired_token(settings, user, TokenKind.REFRESH)
        assert await tokens.revoke(token) is False
        assert cache._entries == {}

    @pytest.mark.asyncio
    async def test_revocation_entry_expires_with_token(self, tokens, cache, user):
        token = tokens.issue_refresh_token(user)
        await tokens.revoke(token)

        _, deadline = cache._entries[f"blacklist_{token}"]
        remaining = deadline - time.monotonic()
        assert timedelta(days=7).total_seconds() - 5 < remaining <= timedelta(days=7).total_seconds()

    @pytest.mark.asyncio
    async def test_revoking_unknown_token_raises(self, tokens):
        with pytest.raises(TokenInvalidError):
            await tokens.revoke("not-a-jwt")

    @pytest.mark.asyncio
    async def test_revocation_is_shared_through_the_cache(self, settings, cache, user):
        first = TokenService(settings, cache)
        second = TokenService(settings, cache)
        token = first.issue_refresh_token(user)

        await first.revoke(token)

        with pytest.raises(TokenRevokedError):
            await second.verify(token, TokenKind.REFRESH)

    def test_partial_second_rounds_up(self):
        assert seconds_until(utc_now() + timedelta(milliseconds=900)) == 1
        assert seconds_until(utc_now() - timedelta(seconds=5)) == 0

    @pytest.mark.asyncio
    async def test_token_in_its_last_second_is_still_revoked(self, tokens, cache, user, monkeypatch):
        token = tokens.issue_access_token(user)
        exp = tokens.decode(token, TokenKind.ACCESS).exp
        monkeypatch.setattr("tracker.core.utils.utc_now", lambda: exp - timedelta(milliseconds=400))

        assert await tokens.revoke_access(token) is True

        _, deadline = cache._entries[f"bl_{token}"]
        assert 0 < deadline - time.monotonic() <= 1


# =============================================================================
# Refresh
# =============================================================================


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_issues_access_token_from_stored_user(self, tokens, metadata):
        stored = await insert_user(metadata, "carol")
        refresh = tokens.issue_refresh_token(stored)

        await metadata.update(Collections.USERS, stored.id, updates={"username": "caroline"})
        access = await tokens.refresh(refresh, metadata)

        claims = tokens.decode(access, TokenKind.ACCESS)
        assert claims.sub == stored.id
        assert claims.username == "caroline"

    @pytest.mark.asyncio
    async def test_refresh_for_deleted_user(self, tokens, metadata):
        stored = await insert_user(metadata, "carol")
        refresh = tokens.issue_refresh_token(stored)
        await metadata.delete(Collections.USERS, stored.id)

        with pytest.raises(Unauthenticated):
            await tokens.refresh(refresh, metadata)

    @pytest.mark.asyncio
    async def test_refresh_with_revoked_token(self, tokens, metadata):
        stored = await insert_user(metadata, "carol")
        refresh = tokens.issue_refresh_token(stored)
        await tokens.revoke(refresh)

        with pytest.raises(TokenRevokedError):
            await tokens.refresh(refresh, metadata)

    @pytest.mark.asyncio
    async def test_access_token_cannot_refresh(self, tokens, metadata):
        stored = await insert_user(metadata, "carol")
        with pytest.raises(TokenInvalidError):
            await tokens.refresh(tokens.issue_access_token(stored), metadata)


# =============================================================================
# One-time action tokens
# =============================================================================


class TestActionTokens:
    @pytest.mark.asyncio
    async def test_consume_once(self, tokens):
        token = await tokens.issue_action_token(ActionPurpose.PASSWORD_RESET, {"user_id": 3})

        assert await tokens.consume_action_token(token, ActionPurpose.PASSWORD_RESET) == {"user_id": 3}
        with pytest.raises(NotFound):
            await tokens.consume_action_token(token, ActionPurpose.PASSWORD_RESET)

    @pytest.mark.asyncio
    async def test_wrong_purpose(self, tokens):
        token = await tokens.issue_action_token(ActionPurpose.PASSWORD_RESET, {"user_id": 3})

        with pytest.raises(Forbidden):
            await tokens.consume_action_token(token, ActionPurpose.EMAIL_VERIFICATION)

        # Still redeemable for what it was issued for
        assert await tokens.consume_action_token(token, ActionPurpose.PASSWORD_RESET) == {"user_id": 3}

    @pytest.mark.asyncio
    async def test_unknown_token(self, tokens):
        with pytest.raises(NotFound):
            await tokens.consume_action_token("nope", ActionPurpose.EMAIL_VERIFICATION)

    @pytest.mark.asyncio
    async def test_expired_action_token(self, tokens, cache):
        token = await tokens.issue_action_token(ActionPurpose.EMAIL_VERIFICATION, {"email": "a@b.c"}, ttl=60)
        value, _ = cache._entries[f"action_{token}"]
        cache._entries[f"action_{token}"] = (value, time.monotonic() - 1)

        with pytest.raises(NotFound):
            await tokens.consume_action_token(token, ActionPurpose.EMAIL_VERIFICATION)

    @pytest.mark.asyncio
    async def test_concurrent_redemption_succeeds_once(self, tokens):
        token = await tokens.issue_action_token(ActionPurpose.PASSWORD_RESET, {"user_id": 3})

        outcomes = await asyncio.gather(
            *(tokens.consume_action_token(token, ActionPurpose.PASSWORD_RESET) for _ in range(5)),
            return_exceptions=True,
        )

        assert sum(1 for o in outcomes if o == {"user_id": 3}) == 1
        assert sum(1 for o in outcomes if isinstance(o, NotFound)) == 4

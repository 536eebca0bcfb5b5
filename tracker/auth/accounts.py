"""
Account Service - registration, sign-in and password recovery.

Registration is two-step. `register` validates and parks the pending account
(with its password already hashed) inside a one-time email-verification
token; nothing is written to the user store until `verify_email` redeems
that token. Uniqueness is checked again at that point, since the email or
username may have been claimed in the meantime.
"""

from __future__ import annotations

import logging
import re
import secrets

from pydantic import BaseModel

from tracker.auth.passwords import hash_password, verify_password
from tracker.auth.tokens import ActionPurpose, TokenPair, TokenService
from tracker.config import Settings
from tracker.core.models import Provider, Role, User, UserResponse
from tracker.core.results import (
    Conflict,
    DependencyFailure,
    Forbidden,
    NotFound,
    Result,
    Unauthenticated,
    returns_result,
)
from tracker.core.utils import utc_now
from tracker.integrations.email import EmailService
from tracker.integrations.oauth import OAuthUserInfo
from tracker.storage.base import Collections, DuplicateKeyError, StorageProvider

logger = logging.getLogger(__name__)

USERNAME_ATTEMPTS = 5


class LoginResult(BaseModel):
    """A signed-in user and their fresh credentials."""
    user: UserResponse
    tokens: TokenPair


class AccountService:
    """Credential-level operations. None of these take a Principal."""

    def __init__(
        self,
        storage: StorageProvider,
        tokens: TokenService,
        email: EmailService,
        settings: Settings,
    ):
        self.metadata = storage.metadata
        self.tokens = tokens
        self.email = email
        self.settings = settings

    async def _find(self, **filters) -> User | None:
        data = await self.metadata.find_one(Collections.USERS, filters)
        return User(**data) if data else None

    def _login(self, user: User) -> LoginResult:
        return LoginResult(user=UserResponse.from_user(user), tokens=self.tokens.issue_pair(user))

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    @returns_result
    async def register(self, username: str, name: str, email: str, password: str) -> Result[str]:
        """
        Start registration and email a verification link.

        Returns the address the link was sent to.
        """
        email = email.lower()
        if await self._find(email=email):
            raise Conflict("Email is already registered")
        if await self._find(username=username):
            raise Conflict("Username is taken")

        token = await self.tokens.issue_action_token(
            ActionPurpose.EMAIL_VERIFICATION,
            {
                "username": username,
                "name": name,
                "email": email,
                "password_hash": hash_password(password),
            },
        )
        sent = await self.email.send_verification(email, name, token)
        logger.info(f"Registration pending for {username}")
        if not sent:
            return Result(value=email, notification_error="Verification email could not be delivered")
        return Result.success(email)

    @returns_result
    async def verify_email(self, token: str) -> UserResponse:
        """Redeem a verification token and create the account."""
        pending = await self.tokens.consume_action_token(token, ActionPurpose.EMAIL_VERIFICATION)

        now = utc_now()
        try:
            data = await self.metadata.insert(Collections.USERS, {
                "username": pending["username"],
                "name": pending["name"],
                "email": pending["email"],
                "password_hash": pending["password_hash"],
                "providers": [Provider.LOCAL.value],
                "google_id": None,
                "role": Role.EMPLOYEE.value,
                "created_at": now,
                "updated_at": now,
            })
        except DuplicateKeyError:
            raise Conflict("Email or username was registered while verification was pending")

        logger.info(f"User {data['id']} ({data['username']}) verified and created")
        return UserResponse.from_user(User(**data))

    # -------------------------------------------------------------------------
    # Sign-in
    # -------------------------------------------------------------------------

    @returns_result
    async def login(self, email: str, password: str) -> LoginResult:
        user = await self._find(email=email.lower())
        if user is None:
            raise Unauthenticated("Invalid email or password")
        if user.password_hash is None:
            raise Unauthenticated("This account signs in with Google")
        if not verify_password(password, user.password_hash):
            raise Unauthenticated("Invalid email or password")

        logger.info(f"User {user.id} logged in")
        return self._login(user)

    @returns_result
    async def federated_login(self, info: OAuthUserInfo) -> LoginResult:
        """
        Sign in with an external identity.

        Matches by provider id first, then links to an existing account with
        the same (verified) email, and otherwise creates a new EMPLOYEE.
        """
        if info.provider != Provider.GOOGLE:
            raise Forbidden(f"Unsupported provider: {info.provider.value}")

        user = await self._find(google_id=info.provider_user_id)
        if user is not None:
            return self._login(user)

        email = info.email.lower()
        existing = await self._find(email=email)
        if existing is not None:
            if not info.email_verified:
                raise Forbidden("Google has not verified this email address")
            updated = await self.metadata.update(
                Collections.USERS,
                existing.id,
                updates={"google_id": info.provider_user_id, "updated_at": utc_now()},
                add_to_set={"providers": [Provider.GOOGLE.value]},
            )
            if updated is None:
                raise NotFound("User not found")
            logger.info(f"Linked Google account to user {existing.id}")
            return self._login(User(**updated))

        user = await self._create_federated(info, email)
        logger.info(f"Created user {user.id} from Google sign-in")
        return self._login(user)

    async def _create_federated(self, info: OAuthUserInfo, email: str) -> User:
        base = re.sub(r"[^a-z0-9_]", "", email.split("@")[0].lower()) or "user"
        candidate = base
        for _ in range(USERNAME_ATTEMPTS):
            if await self._find(username=candidate) is None:
                now = utc_now()
                try:
                    data = await self.metadata.insert(Collections.USERS, {
                        "username": candidate,
                        "name": info.name,
                        "email": email,
                        "password_hash": None,
                        "providers": [Provider.GOOGLE.value],
                        "google_id": info.provider_user_id,
                        "role": Role.EMPLOYEE.value,
                        "created_at": now,
                        "updated_at": now,
                    })
                    return User(**data)
                except DuplicateKeyError:
                    if await self._find(email=email):
                        raise Conflict("Email was registered concurrently")
            candidate = f"{base}{secrets.randbelow(10_000):04d}"
        raise DependencyFailure("Could not allocate a unique username")

    # -------------------------------------------------------------------------
    # Password recovery
    # -------------------------------------------------------------------------

    @returns_result
    async def forgot_password(self, email: str) -> None:
        """
        Email a reset link if the account exists.

        Always succeeds, so the response does not reveal which emails are
        registered.
        """
        user = await self._find(email=email.lower())
        if user is None:
            logger.info("Password reset requested for unknown email")
            return None

        token = await self.tokens.issue_action_token(ActionPurpose.PASSWORD_RESET, {"user_id": user.id})
        if not await self.email.send_password_reset(user.email, token):
            logger.warning(f"Password reset email for user {user.id} not delivered")
        return None

    @returns_result
    async def reset_password(self, token: str, password: str) -> UserResponse:
        payload = await self.tokens.consume_action_token(token, ActionPurpose.PASSWORD_RESET)
        updated = await self.metadata.update(
            Collections.USERS,
            payload["user_id"],
            updates={"password_hash": hash_password(password), "updated_at": utc_now()},
            add_to_set={"providers": [Provider.LOCAL.value]},
        )
        if updated is None:
            raise NotFound("User not found")

        logger.info(f"User {updated['id']} reset their password")
        return UserResponse.from_user(User(**updated))

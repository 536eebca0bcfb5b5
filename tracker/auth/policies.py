"""
Policies - route-level authentication for FastAPI.

Route handlers just declare:
    principal: Principal = Depends(get_principal)

The dependency extracts the access token (Authorization header first,
then the access cookie), verifies it including the revocation list, and
loads the caller from storage. Fine-grained decisions stay in the
workflows; `require()` only exists to reject obviously unauthorised
callers early.

"No credential" and "bad credential" are both 401, told apart by the
`kind` in the response detail.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tracker.auth.capabilities import Capability
from tracker.auth.context import Principal, load_principal
from tracker.auth.tokens import MissingCredentialError, TokenKind
from tracker.core.results import Unauthenticated
from tracker.engine import Engine
from tracker.integrations.sentry import set_user
from tracker.storage.base import StorageError

logger = logging.getLogger(__name__)


# Optional JWT bearer (doesn't fail if no token; the cookie may carry it)
optional_bearer = HTTPBearer(auto_error=False)


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def extract_access_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None,
    cookie_name: str,
) -> str:
    """Bearer header wins over cookie. Raises MissingCredentialError."""
    if credentials and credentials.credentials:
        return credentials.credentials
    token = request.cookies.get(cookie_name)
    if token:
        return token
    raise MissingCredentialError()


def _unauthenticated(kind: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"kind": kind, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_bearer),
    engine: Engine = Depends(get_engine),
) -> Principal:
    """Authenticate the caller or raise 401."""
    try:
        token = extract_access_token(request, credentials, engine.settings.access_cookie_name)
    except MissingCredentialError as e:
        raise _unauthenticated("missing_credential", e.message)

    try:
        claims = await engine.tokens.verify(token, TokenKind.ACCESS)
        principal = await load_principal(claims.sub, engine.storage.metadata)
    except Unauthenticated as e:
        raise _unauthenticated("unauthenticated", e.message)
    except StorageError:
        logger.exception("Credential check failed")
        raise HTTPException(
            status_code=500,
            detail={"kind": "dependency_failure", "message": "Could not verify credentials"},
        )

    set_user(principal.user_id, principal.username)
    return principal


def require(*capabilities: Capability | str) -> Callable:
    """
    Require capabilities to access a route.

    Usage:
        @router.get("/roles/requests")
        async def list_requests(principal: Principal = Depends(require(Capability.ROLE_REVIEW))):
            ...
    """

    async def dependency(principal: Principal = Depends(get_principal)) -> Principal:
        missing = [str(getattr(c, "value", c)) for c in capabilities if not principal.can(c)]
        if missing:
            raise HTTPException(
                status_code=403,
                detail={"kind": "forbidden", "message": f"Missing permissions: {missing}"},
            )
        return principal

    return dependency

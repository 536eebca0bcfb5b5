"""
Authentication and authorization.

- tokens: access/refresh JWTs, revocation, one-time action tokens
- capabilities: what each global role may do
- context: the Principal passed into every core operation
- accounts: registration, sign-in, password recovery

The FastAPI dependencies live in `tracker.auth.policies` and are not
re-exported here; they need the engine, which itself imports this package.
"""

from tracker.auth.capabilities import Capability, get_capabilities
from tracker.auth.context import Principal, load_principal
from tracker.auth.passwords import hash_password, verify_password
from tracker.auth.tokens import (
    ActionPurpose,
    MissingCredentialError,
    TokenClaims,
    TokenError,
    TokenExpiredError,
    TokenInvalidError,
    TokenKind,
    TokenPair,
    TokenRevokedError,
    TokenService,
)

__all__ = [
    "ActionPurpose",
    "Capability",
    "MissingCredentialError",
    "Principal",
    "TokenClaims",
    "TokenError",
    "TokenExpiredError",
    "TokenInvalidError",
    "TokenKind",
    "TokenPair",
    "TokenRevokedError",
    "TokenService",
    "get_capabilities",
    "hash_password",
    "load_principal",
    "verify_password",
]

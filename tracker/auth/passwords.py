"""
Password hashing.

PBKDF2-SHA256 with a random per-password salt, stored as "salt:hash".
"""

import hashlib
import secrets

ITERATIONS = 100_000


def hash_password(password: str) -> str:
    """
    Hash a password using PBKDF2-SHA256.

    Returns: salt:hash format string
    """
    salt = secrets.token_hex(32)
    hash_bytes = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt.encode("utf-8"),
        iterations=ITERATIONS,
    )
    return f"{salt}:{hash_bytes.hex()}"


def verify_password(password: str, password_hash: str | None) -> bool:
    """Verify a password against its hash. Accounts without one never match."""
    if not password_hash:
        return False
    try:
        salt, stored_hash = password_hash.split(":")
        hash_bytes = hashlib.pbkdf2_hmac(
            "sha256",
            password.encode("utf-8"),
            salt.encode("utf-8"),
            iterations=ITERATIONS,
        )
        return secrets.compare_digest(hash_bytes.hex(), stored_hash)
    except (ValueError, AttributeError):
        return False

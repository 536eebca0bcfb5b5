"""
Shared utility functions for the tracker.

This module contains common utilities used across the codebase.
"""

from __future__ import annotations

import math
import secrets
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def seconds_until(moment: datetime) -> int:
    """
    Seconds from now until `moment`, rounded up.

    Any time left at all counts as at least one second; moments in the
    past give 0.
    """
    remaining = (moment - utc_now()).total_seconds()
    return max(math.ceil(remaining), 0)


def generate_token(nbytes: int = 16) -> str:
    """
    Generate an opaque random token.

    Args:
        nbytes: Number of random bytes (hex output is twice as long)

    Returns:
        A hex string like "9f86d081884c7d65..."
    """
    return secrets.token_hex(nbytes)

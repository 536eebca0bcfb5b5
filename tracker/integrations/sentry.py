# =============================================================================
# Error Reporting (Sentry)
# =============================================================================
#
# Enabled when SENTRY_DSN is set and sentry-sdk is installed. The app
# lifespan calls init_sentry(); get_principal() tags events with the caller.
#
# Refusals (4xx) are normal outcomes of the access rules and are never sent.
# Credentials are stripped from every event before it leaves the process.
#
# =============================================================================

from __future__ import annotations

import logging

from tracker.config import Settings

logger = logging.getLogger(__name__)

try:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration
    SENTRY_AVAILABLE = True
except ImportError:
    SENTRY_AVAILABLE = False
    sentry_sdk = None

REFUSAL_STATUS_CODES = frozenset({400, 401, 403, 404, 409, 422})
CREDENTIAL_HEADERS = frozenset({"authorization", "cookie", "set-cookie"})
UNTRACED_PATHS = frozenset({"/health"})


def init_sentry(settings: Settings) -> bool:
    """Start the SDK. Returns whether reporting is active."""
    if not settings.sentry_dsn:
        logger.info("Error reporting off (no SENTRY_DSN)")
        return False
    if not SENTRY_AVAILABLE:
        logger.warning("SENTRY_DSN is set but sentry-sdk is not installed")
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=f"tracker@{_version()}",
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        send_default_pii=False,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        before_send=_filter_events,
        before_send_transaction=_filter_transactions,
    )
    logger.info(f"Error reporting on ({settings.environment})")
    return True


def _version() -> str:
    from tracker import __version__
    return __version__


def _is_refusal(hint: dict) -> bool:
    exc_info = hint.get("exc_info")
    if not exc_info:
        return False

    from fastapi import HTTPException
    exc = exc_info[1]
    return isinstance(exc, HTTPException) and exc.status_code in REFUSAL_STATUS_CODES


def _filter_events(event: dict, hint: dict) -> dict | None:
    if _is_refusal(hint):
        return None

    request = event.get("request") or {}
    headers = request.get("headers") or {}
    for name in headers:
        if name.lower() in CREDENTIAL_HEADERS:
            headers[name] = "[Filtered]"
    if "cookies" in request:
        request["cookies"] = "[Filtered]"
    return event


def _filter_transactions(event: dict, hint: dict) -> dict | None:
    if event.get("transaction") in UNTRACED_PATHS:
        return None
    return event


def set_user(user_id: int, username: str | None = None) -> None:
    """Attach the authenticated caller to subsequent events."""
    if SENTRY_AVAILABLE and sentry_sdk.get_client().is_active():
        sentry_sdk.set_user({"id": str(user_id), "username": username})

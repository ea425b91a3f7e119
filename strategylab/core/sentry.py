"""Sentry initialization and configuration."""

import os
from typing import Optional

import sentry_sdk
import structlog
from sentry_sdk.integrations.logging import LoggingIntegration

from strategylab import __version__
from strategylab.config import Settings

logger = structlog.get_logger(__name__)


def _before_send(event: dict, hint: dict) -> Optional[dict]:
    """
    Drop insufficient-history noise.

    Degraded indicator values are warnings, never Sentry events, even if a
    handler escalates them.
    """
    logentry = event.get("logentry") or {}
    message = logentry.get("message") or ""
    if message.startswith("Insufficient bars"):
        return None
    return event


def init_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry if DSN is configured.

    Returns True if Sentry was initialized, False otherwise.
    """
    if not settings.sentry_dsn:
        return False

    # Only send ERROR-level logs as Sentry events
    sentry_logging = LoggingIntegration(
        level=None,  # Keep normal log levels
        event_level="ERROR",  # Only ERROR+ become Sentry events
    )

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment,
        release=os.environ.get("GIT_SHA", f"strategylab@{__version__}"),
        integrations=[sentry_logging],
        send_default_pii=False,
        attach_stacktrace=True,
        before_send=_before_send,
    )

    sentry_sdk.set_tag("service", "strategylab")

    logger.info(
        "Sentry initialized",
        environment=settings.sentry_environment,
    )

    return True


def capture_exception(
    exc: BaseException,
    tags: Optional[dict[str, str]] = None,
    extras: Optional[dict] = None,
) -> None:
    """Forward an exception to Sentry when a client is active."""
    if not sentry_sdk.get_client().is_active():
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in (tags or {}).items():
            scope.set_tag(key, value)
        for key, value in (extras or {}).items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exc)

"""
Sentry integration for error tracking.

Provides:
- Automatic exception capture with stacktrace
- SQLAlchemy query errors
- Scheduler job context tagging

Security:
- Provider tokens in query strings are redacted
- Authorization headers are scrubbed
- PII is disabled by default
"""

import logging
import re
from contextlib import contextmanager
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from app.config import get_settings

logger = logging.getLogger(__name__)

# Module-level flag to track initialization
_sentry_initialized = False

_TOKEN_PARAM_RE = re.compile(r"(?i)(api_token|token|key|secret|password)=([^&\s]*)")


def scrub_sensitive_data(event: dict, hint: dict) -> Optional[dict]:
    """Scrub provider tokens from Sentry events before sending."""
    try:
        request = event.get("request") or {}
        headers = request.get("headers") or {}
        for name in list(headers.keys()):
            if name.lower() in ("authorization", "cookie", "x-api-key"):
                headers[name] = "[REDACTED]"
        if headers:
            request["headers"] = headers

        query_string = request.get("query_string")
        if isinstance(query_string, str) and query_string:
            request["query_string"] = _TOKEN_PARAM_RE.sub(r"\1=[REDACTED]", query_string)
        if request:
            event["request"] = request

        # httpx errors carry the full URL (including api_token) in the message
        for value in (event.get("exception") or {}).get("values") or []:
            if isinstance(value.get("value"), str):
                value["value"] = _TOKEN_PARAM_RE.sub(r"\1=[REDACTED]", value["value"])

    except Exception as e:
        # Never fail scrubbing - just log and continue
        logger.warning(f"Sentry scrubbing error (continuing): {e}")

    return event


def init_sentry() -> bool:
    """
    Initialize Sentry SDK if SENTRY_DSN is configured.

    Returns True if Sentry was initialized, False otherwise.
    """
    global _sentry_initialized

    if _sentry_initialized:
        logger.debug("Sentry already initialized, skipping")
        return True

    settings = get_settings()
    if not settings.SENTRY_ENABLED:
        logger.info("Sentry disabled via SENTRY_ENABLED=false")
        return False

    if not settings.SENTRY_DSN:
        logger.info("Sentry not configured (SENTRY_DSN not set)")
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENV,
        integrations=[
            SqlalchemyIntegration(),
            LoggingIntegration(
                level=logging.ERROR,
                event_level=logging.ERROR,
            ),
        ],
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        send_default_pii=False,
        before_send=scrub_sensitive_data,
        ignore_errors=[
            KeyboardInterrupt,
            SystemExit,
        ],
    )

    _sentry_initialized = True
    logger.info(
        f"Sentry initialized: env={settings.SENTRY_ENV}, "
        f"traces_sample_rate={settings.SENTRY_TRACES_SAMPLE_RATE}"
    )
    return True


def is_sentry_enabled() -> bool:
    """Check if Sentry is initialized and active."""
    return _sentry_initialized


@contextmanager
def sentry_job_context(job_id: str, **extra_tags):
    """
    Context manager for scheduler ticks that sets Sentry tags.

    Usage:
        with sentry_job_context("upsert-live-fixtures", instance="web-1:42"):
            ...

    Capturing is left to the caller: lock skips raise but are not errors.
    """
    if not _sentry_initialized:
        yield None
        return

    with sentry_sdk.push_scope() as scope:
        scope.set_tag("job_id", job_id)
        scope.set_context("job", {"job_id": job_id, **extra_tags})

        for key, value in extra_tags.items():
            if value is not None:
                scope.set_tag(key, str(value))

        yield scope


def capture_exception(exc: BaseException, **extra) -> None:
    if not _sentry_initialized:
        return

    with sentry_sdk.push_scope() as scope:
        for key, value in extra.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exc)

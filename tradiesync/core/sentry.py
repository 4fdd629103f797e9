"""
Sentry error tracking for the sync API.

Events pass through ``filter_sensitive_data`` before leaving the process:
bearer tokens, OAuth codes and state, provider tokens and bank details are
replaced with ``[Filtered]`` wherever they appear in request data.
"""

import logging
from typing import Optional, Dict, Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)

FILTERED = "[Filtered]"

SENSITIVE_HEADERS = {"authorization", "cookie", "set-cookie", "x-api-key", "x-myobapi-key"}

SENSITIVE_FIELDS = {
    "access_token",
    "refresh_token",
    "id_token",
    "code",
    "state",
    "client_secret",
    "password",
    "token",
    "secret",
}

SENSITIVE_PREFIXES = ("bank_",)

_sentry_initialized = False


def init_sentry() -> bool:
    """
    Initialize Sentry when SENTRY_DSN is configured.

    Returns True when the SDK was initialized.
    """
    global _sentry_initialized

    from tradiesync.config import settings

    if not settings.SENTRY_DSN:
        logger.info("Sentry DSN not configured, error tracking disabled")
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        release=settings.VERSION,
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(
                level=logging.WARNING,
                event_level=logging.ERROR,
            ),
        ],
        before_send=filter_sensitive_data,
        send_default_pii=False,
        attach_stacktrace=True,
        max_breadcrumbs=50,
    )

    _sentry_initialized = True
    logger.info(f"Sentry initialized for {settings.ENVIRONMENT} environment")
    return True


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return lowered in SENSITIVE_FIELDS or lowered.startswith(SENSITIVE_PREFIXES)


def _scrub(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: FILTERED if isinstance(k, str) and _is_sensitive(k) else _scrub(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_scrub(item) for item in value]
    return value


def _scrub_query_string(query: str) -> str:
    parts = []
    for pair in query.split("&"):
        name, sep, _ = pair.partition("=")
        parts.append(f"{name}={FILTERED}" if sep and _is_sensitive(name) else pair)
    return "&".join(parts)


def filter_sensitive_data(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Filter sensitive data before sending to Sentry.

    Removes:
    - Authorization / cookie / API-key headers
    - OAuth codes, state tokens and provider tokens
    - Bank detail fields, plaintext or encrypted
    """
    request = event.get("request")
    if isinstance(request, dict):
        headers = request.get("headers")
        if isinstance(headers, dict):
            for name in list(headers):
                if name.lower() in SENSITIVE_HEADERS:
                    headers[name] = FILTERED

        if "cookies" in request:
            request["cookies"] = FILTERED

        if "data" in request:
            request["data"] = _scrub(request["data"])

        query = request.get("query_string")
        if isinstance(query, str) and query:
            request["query_string"] = _scrub_query_string(query)

    if "extra" in event:
        event["extra"] = _scrub(event["extra"])

    return event


def capture_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """
    Capture an exception to Sentry with additional context.

    Returns the Sentry event ID if captured, None otherwise.
    """
    if not _sentry_initialized:
        return None

    with sentry_sdk.new_scope() as scope:
        if context:
            for key, value in context.items():
                scope.set_extra(key, value)
        return sentry_sdk.capture_exception(exception)

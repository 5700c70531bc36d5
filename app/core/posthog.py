"""PostHog analytics client for backend event tracking."""

from typing import Any, Dict, Optional

import structlog

from app.core.config import get_settings

logger = structlog.get_logger()
settings = get_settings()

_posthog_client = None

if settings.posthog_api_key:
    import posthog

    posthog.project_api_key = settings.posthog_api_key
    posthog.host = settings.posthog_host
    posthog.debug = settings.debug
    _posthog_client = posthog


def capture_event(
    distinct_id: str,
    event: str,
    properties: Optional[Dict[str, Any]] = None,
) -> None:
    """Capture an event in PostHog. No-op if PostHog is not configured."""
    if _posthog_client is None:
        return
    try:
        _posthog_client.capture(
            event=event, distinct_id=distinct_id, properties=properties or {}
        )
    except Exception as e:
        logger.warning("posthog.capture_failed", event=event, error=str(e))


def identify_user(
    distinct_id: str,
    properties: Optional[Dict[str, Any]] = None,
) -> None:
    """Set person properties in PostHog. No-op if PostHog is not configured."""
    if _posthog_client is None:
        return
    try:
        _posthog_client.set(distinct_id=distinct_id, properties=properties or {})
    except Exception as e:
        logger.warning("posthog.identify_failed", error=str(e))


def shutdown() -> None:
    """Flush pending events and shut down the PostHog client."""
    if _posthog_client is None:
        return
    try:
        _posthog_client.shutdown()
    except Exception as e:
        logger.warning("posthog.shutdown_failed", error=str(e))

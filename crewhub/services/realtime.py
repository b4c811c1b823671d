"""
Optional real-time broadcast of staffing events (e.g. a slot going up for grabs).
When REALTIME_WEBHOOK_URL is unset the broadcast is skipped; delivery errors are logged only.
"""
from typing import Any, Dict, Optional

import httpx
import structlog

from ..config import settings


logger = structlog.get_logger(__name__)


def broadcast(event: str, payload: Dict[str, Any], url: Optional[str] = None) -> bool:
    """
    POST an event to the configured broadcast webhook.

    Returns:
        True if the hub accepted the event, False if skipped or failed
    """
    target = url or settings.realtime_webhook_url
    if not target:
        return False
    try:
        r = httpx.post(
            target,
            json={"event": event, "payload": payload},
            timeout=settings.realtime_timeout_s,
        )
        r.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning("realtime_broadcast_failed", event_name=event, error=str(e))
        return False
    return True

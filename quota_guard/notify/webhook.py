"""
Generic webhook delivery.

Best-effort: delivery failures are logged and reported as False.
"""

from typing import Any, Dict, Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 10.0


class WebhookSender:
    """POSTs JSON payloads to user-configured URLs."""

    def __init__(self, client: Optional[httpx.Client] = None):
        self.client = client

    def _post(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        if self.client is not None:
            return self.client.post(url, json=payload)
        with httpx.Client(timeout=WEBHOOK_TIMEOUT_SECONDS) as client:
            return client.post(url, json=payload)

    def send(self, url: str, payload: Dict[str, Any]) -> bool:
        try:
            response = self._post(url, payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("webhook_delivery_failed", url=url, error=str(e))
            return False
        return True

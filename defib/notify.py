"""
Notification sink - log every notice, post to a webhook if configured

Payloads use the Discord embed shape, which Slack-compatible relays accept.
Delivery is best-effort: failures are logged, never raised.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

ERROR_COLOR = 15158332
NOTICE_COLOR = 16776960
WEBHOOK_TIMEOUT_SECONDS = 10.0


class Notifier:
    def __init__(self, webhook_url: Optional[str] = None, timeout: float = WEBHOOK_TIMEOUT_SECONDS):
        self.webhook_url = webhook_url
        self.timeout = timeout

    @staticmethod
    def build_payload(title: str, message: str, is_error: bool = False) -> Dict[str, Any]:
        return {
            "embeds": [{
                "title": f"🔴 {title}" if is_error else f"🟡 {title}",
                "description": message,
                "color": ERROR_COLOR if is_error else NOTICE_COLOR,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "footer": {"text": "defib"},
            }]
        }

    def send(self, title: str, message: str, is_error: bool = False) -> None:
        if is_error:
            logger.error(f"🚨 {title}: {message}")
        else:
            logger.info(f"{title}: {message}")

        if not self.webhook_url:
            return

        try:
            response = httpx.post(
                self.webhook_url,
                json=self.build_payload(title, message, is_error),
                timeout=self.timeout,
            )
            if not response.is_success:
                logger.error(f"Notification failed: HTTP {response.status_code}")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Failed to send notification: {e}")

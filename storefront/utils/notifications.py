# storefront/utils/notifications.py
import logging
from typing import Optional

import httpx

from storefront.config import Settings, settings

logger = logging.getLogger(__name__)


class Notifier:
    """Order e-mails are delivered by an outside service listening on a webhook.

    Without ``NOTIFY_WEBHOOK_URL`` the messages are only logged. Delivery
    errors are logged and never raised: an order stands even if its
    confirmation never goes out.
    """

    def __init__(self, cfg: Settings = settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.webhook_url = cfg.NOTIFY_WEBHOOK_URL
        self.admin_email = cfg.ADMIN_EMAIL
        self.timeout = cfg.EXTERNAL_TIMEOUT_SECONDS
        self._transport = transport

    async def _send(self, kind: str, payload: dict) -> bool:
        if not self.webhook_url:
            logger.info("Notification %s (no webhook configured): %s", kind, payload.get("order", {}).get("id"))
            return False

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(self.webhook_url, json={"type": kind, **payload})
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error("Notification %s failed: %s", kind, e)
                return False
        return True

    async def send_order_confirmation(self, email: str, order: dict) -> bool:
        return await self._send("order_confirmation", {"to": email, "order": order})

    async def send_admin_service_notice(self, order: dict) -> bool:
        return await self._send("admin_service_notice", {"to": self.admin_email, "order": order})


notifier = Notifier()


def get_notifier() -> Notifier:
    return notifier

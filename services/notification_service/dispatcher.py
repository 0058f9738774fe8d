"""
Outbound delivery: push notifications and transactional mail.

Both run after the order transaction commits. A failed delivery never undoes
the transition; the push dispatcher raises ServiceUnavailableError and the
mail sender returns False so the action layer can report it.
"""
import httpx
import structlog

from shared.config.settings import (
    DELIVERY_TIMEOUT_SECONDS,
    MAIL_RELAY_URL,
    MAIL_SENDER_ADDRESS,
    PUSH_GATEWAY_URL,
)
from shared.errors import ServiceUnavailableError
from shared.observability import rentals_delivery_failures_total
from shared.security.api_key import INTERNAL_API_KEY

from .models import Notification

logger = structlog.get_logger(__name__)

API_HEADERS = {"X-Internal-API-Key": INTERNAL_API_KEY}


class NotificationDispatcher:
    def __init__(self, url: str = PUSH_GATEWAY_URL, timeout: float = DELIVERY_TIMEOUT_SECONDS, transport=None):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def deliver(self, notification: Notification) -> None:
        payload = {
            "id": notification.id,
            "user_id": notification.user_id,
            "type": notification.type.value,
            "order_number": notification.order_number,
            "shipping_status": notification.shipping_status,
            "created_at": notification.created_at.isoformat() if notification.created_at else None,
        }
        try:
            async with httpx.AsyncClient(headers=API_HEADERS, timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(self.url, json=payload)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            rentals_delivery_failures_total.labels(channel="push").inc()
            logger.warning(
                "notification_delivery_failed",
                notification_id=notification.id,
                user_id=notification.user_id,
                error=str(e),
            )
            raise ServiceUnavailableError("Failed to deliver notification") from e


class MailSender:
    def __init__(self, url: str = MAIL_RELAY_URL, sender: str = MAIL_SENDER_ADDRESS,
                 timeout: float = DELIVERY_TIMEOUT_SECONDS, transport=None):
        self.url = url
        self.sender = sender
        self.timeout = timeout
        self.transport = transport

    async def send(self, to_email: str, template: str, context: dict) -> bool:
        """Hands a templated mail to the relay. Rendering happens on the relay side."""
        payload = {
            "from": self.sender,
            "to": to_email,
            "template": template,
            "context": context,
        }
        try:
            async with httpx.AsyncClient(headers=API_HEADERS, timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(self.url, json=payload)
                resp.raise_for_status()
                return True
        except httpx.HTTPError as e:
            rentals_delivery_failures_total.labels(channel="mail").inc()
            logger.warning("mail_delivery_failed", template=template, error=str(e))
            return False

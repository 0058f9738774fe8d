"""Process-wide collaborators handed to the routers through Depends()."""
from functools import lru_cache

from services.notification_service.dispatcher import MailSender, NotificationDispatcher
from services.payment_service.gateway import PaymentGateway, StripePaymentGateway

from .service import OrderService


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    return StripePaymentGateway()


@lru_cache
def get_notification_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher()


@lru_cache
def get_order_service() -> OrderService:
    return OrderService(
        gateway=get_payment_gateway(),
        dispatcher=get_notification_dispatcher(),
        mailer=MailSender(),
    )

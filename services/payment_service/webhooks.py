"""
Inbound Stripe events. Only the signature is checked here; what an event
means for orders is decided by the order service.
"""
import stripe
import structlog

from shared.config.settings import STRIPE_WEBHOOK_SECRET
from shared.errors import InvalidWebhookError

logger = structlog.get_logger(__name__)

CHECKOUT_AUTHORIZED = "payment_intent.amount_capturable_updated"
CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"


def construct_event(payload: bytes, signature: str, secret: str = STRIPE_WEBHOOK_SECRET) -> stripe.Event:
    """Verifies the Stripe-Signature header against the raw body and parses the event."""
    if not secret:
        logger.error("stripe_webhook_secret_missing")
        raise InvalidWebhookError("Webhook signing secret is not configured")
    try:
        event = stripe.Webhook.construct_event(payload=payload, sig_header=signature, secret=secret)
    except stripe.SignatureVerificationError as e:
        logger.warning("webhook_signature_verification_failed", error=str(e))
        raise InvalidWebhookError() from e
    except ValueError as e:
        logger.warning("webhook_payload_invalid", error=str(e))
        raise InvalidWebhookError() from e
    logger.info("webhook_signature_verified", event_id=event.id, event_type=event.type)
    return event

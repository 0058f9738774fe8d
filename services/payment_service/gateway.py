"""
Payment gateway used by the order engine.

The engine only speaks to the abstract PaymentGateway. The production
implementation drives Stripe: one manual-capture PaymentIntent per checkout,
partial capture when some vendors reject, Connect transfers for vendor
payouts and a separate Checkout Session for overdue fines.
"""
import abc
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import stripe
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from shared.config.settings import (
    STRIPE_CANCEL_URL,
    STRIPE_CURRENCY,
    STRIPE_SECRET_KEY,
    STRIPE_SUCCESS_URL,
)

logger = structlog.get_logger(__name__)

# metadata "kind" on provider objects, read back by the webhook
CHECKOUT_KIND = "checkout"
OVERDUE_FINE_KIND = "overdue_fine"


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: Optional[str]


class PaymentGateway(abc.ABC):
    """Money movements the order engine needs. Amounts are integer cents."""

    @abc.abstractmethod
    async def authorize(
        self, amount_cents: int, *, customer_ref: str, shipping_cents: int = 0, idempotency_key: str
    ) -> str:
        """
        Places a hold for the checkout total and returns the payment reference.
        customer_ref and shipping_cents travel with the hold so the provider's
        webhook can split the cart once the hold is confirmed.
        """

    @abc.abstractmethod
    async def capture(self, payment_ref: str, amount_cents: int, *, idempotency_key: str) -> str:
        """Captures part or all of the hold; the uncaptured remainder is released."""

    @abc.abstractmethod
    async def release(self, payment_ref: str, *, idempotency_key: str) -> str:
        """Releases the whole hold."""

    @abc.abstractmethod
    async def transfer_to_vendor(
        self,
        vendor_account: str,
        payment_ref: str,
        amount_cents: int,
        platform_fee_cents: int,
        *,
        idempotency_key: str,
    ) -> str:
        """Pays the vendor amount_cents minus the platform fee; returns the transfer id."""

    @abc.abstractmethod
    async def create_overdue_charge(
        self,
        buyer_email: str,
        vendor_account: Optional[str],
        order_number: int,
        amount_cents: int,
    ) -> CheckoutSession:
        """Opens a checkout session the buyer pays to settle an overdue fine."""


class PaymentErrorType(Enum):
    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these
    RATE_LIMIT = "rate_limit"  # Retry with backoff


class PaymentGatewayError(Exception):
    def __init__(self, message: str, error_type: PaymentErrorType, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.error_type = error_type
        self.original_error = original_error


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, PaymentGatewayError) and error.error_type != PaymentErrorType.PERMANENT


def _classify_error(error: stripe.StripeError) -> PaymentErrorType:
    if isinstance(error, stripe.RateLimitError):
        return PaymentErrorType.RATE_LIMIT
    if isinstance(error, (stripe.CardError, stripe.InvalidRequestError, stripe.AuthenticationError)):
        return PaymentErrorType.PERMANENT
    # Connection errors, API errors and anything unknown are retried
    return PaymentErrorType.TRANSIENT


_gateway_retry = retry(
    retry=retry_if_exception(_is_retryable),
    stop=stop_after_attempt(4),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    reraise=True,
)


class StripePaymentGateway(PaymentGateway):
    """
    Stripe implementation. The SDK is synchronous, so every call runs in a
    worker thread. Idempotency keys make retries (ours and the caller's) safe.
    """

    def __init__(self, api_key: str = STRIPE_SECRET_KEY, currency: str = STRIPE_CURRENCY):
        stripe.api_key = api_key
        self.currency = currency
        logger.info("stripe_gateway_initialized", currency=currency)

    async def _call(self, operation: str, func, **kwargs: Any):
        try:
            return await asyncio.to_thread(func, **kwargs)
        except stripe.StripeError as e:
            error_type = _classify_error(e)
            logger.error(
                "stripe_api_error",
                operation=operation,
                error_type=error_type.value,
                error_code=getattr(e, "code", None),
                error_message=str(e),
            )
            raise PaymentGatewayError(str(e), error_type, e) from e

    @_gateway_retry
    async def authorize(
        self, amount_cents: int, *, customer_ref: str, shipping_cents: int = 0, idempotency_key: str
    ) -> str:
        intent = await self._call(
            "authorize",
            stripe.PaymentIntent.create,
            amount=amount_cents,
            currency=self.currency,
            capture_method="manual",
            metadata={
                "kind": CHECKOUT_KIND,
                "customer_ref": customer_ref,
                "shipping_cents": str(shipping_cents),
            },
            idempotency_key=idempotency_key,
        )
        logger.info("payment_authorized", payment_ref=intent.id, amount_cents=amount_cents)
        return intent.id

    @_gateway_retry
    async def capture(self, payment_ref: str, amount_cents: int, *, idempotency_key: str) -> str:
        intent = await self._call(
            "capture",
            stripe.PaymentIntent.capture,
            intent=payment_ref,
            amount_to_capture=amount_cents,
            idempotency_key=idempotency_key,
        )
        logger.info("payment_captured", payment_ref=payment_ref, amount_cents=amount_cents)
        return intent.id

    @_gateway_retry
    async def release(self, payment_ref: str, *, idempotency_key: str) -> str:
        intent = await self._call(
            "release",
            stripe.PaymentIntent.cancel,
            intent=payment_ref,
            idempotency_key=idempotency_key,
        )
        logger.info("payment_released", payment_ref=payment_ref)
        return intent.id

    @_gateway_retry
    async def transfer_to_vendor(
        self,
        vendor_account: str,
        payment_ref: str,
        amount_cents: int,
        platform_fee_cents: int,
        *,
        idempotency_key: str,
    ) -> str:
        transfer = await self._call(
            "transfer_to_vendor",
            stripe.Transfer.create,
            amount=amount_cents - platform_fee_cents,
            currency=self.currency,
            destination=vendor_account,
            transfer_group=payment_ref,
            metadata={"payment_ref": payment_ref, "platform_fee_cents": platform_fee_cents},
            idempotency_key=idempotency_key,
        )
        logger.info(
            "vendor_transfer_created",
            transfer_id=transfer.id,
            vendor_account=vendor_account,
            amount_cents=amount_cents,
            platform_fee_cents=platform_fee_cents,
        )
        return transfer.id

    @_gateway_retry
    async def create_overdue_charge(
        self,
        buyer_email: str,
        vendor_account: Optional[str],
        order_number: int,
        amount_cents: int,
    ) -> CheckoutSession:
        params: Dict[str, Any] = {
            "mode": "payment",
            "customer_email": buyer_email,
            "line_items": [
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {"name": f"Overdue fine for order #{order_number}"},
                        "unit_amount": amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            "metadata": {"order_number": str(order_number), "kind": OVERDUE_FINE_KIND},
            "success_url": STRIPE_SUCCESS_URL,
            "cancel_url": STRIPE_CANCEL_URL,
            "idempotency_key": f"overdue-{order_number}-{amount_cents}",
        }
        if vendor_account:
            params["payment_intent_data"] = {"transfer_data": {"destination": vendor_account}}
        session = await self._call("create_overdue_charge", stripe.checkout.Session.create, **params)
        logger.info("overdue_charge_created", session_id=session.id, order_number=order_number)
        return CheckoutSession(id=session.id, url=session.url)

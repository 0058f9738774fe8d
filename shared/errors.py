"""
Error taxonomy shared by every service.

Business rejections (NotFound, Conflict) are safe to show to the acting user.
ServiceUnavailable means the action itself was committed but a downstream
delivery (notification push, mail) failed. Internal is reported generically.
"""
import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class MarketplaceError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Internal server error"

    def __init__(self, detail: str | None = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


# --- 404 ---

class NotFoundError(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Resource not found"


class UserNotFoundError(NotFoundError):
    detail = "User not found"


class VendorNotFoundError(NotFoundError):
    detail = "Vendor not found"


class ProductNotFoundError(NotFoundError):
    detail = "Product not found"


class OrderNotFoundError(NotFoundError):
    detail = "Order not found"


class EmptyCartError(NotFoundError):
    detail = "Cart is empty"


class CartEntryNotFoundError(NotFoundError):
    detail = "Cart entry not found"


# --- 400 ---

class InvalidWebhookError(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Invalid webhook payload or signature"


# --- 409 ---

class ConflictError(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    detail = "Request conflicts with the current state"


class InvalidTransitionError(ConflictError):
    detail = "Order cannot move to the requested status"


class IneligibleDurationError(ConflictError):
    detail = "Requested rental duration is not allowed for this account"


class IneligiblePriceError(ConflictError):
    detail = "Requested item price exceeds the limit for this account"


class ExtendedPrivilegesRequiredError(ConflictError):
    detail = "Extended rental privileges are required for this request"


class AccountDeactivatedError(ConflictError):
    detail = "Account is deactivated"


class ProductAlreadyInCartError(ConflictError):
    detail = "Product is already in the cart"


class ProductUnavailableError(ConflictError):
    detail = "Product is no longer available"


class PriceMismatchError(ConflictError):
    detail = "Cart total does not match the authorized amount"


class DuplicateCheckoutError(ConflictError):
    detail = "Orders for this payment were already created"


class StaleCartError(ConflictError):
    detail = "Cart is out of date, please review it"


# --- 503 / 500 ---

class ServiceUnavailableError(MarketplaceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    detail = "Downstream delivery failed"


class DeliveryFailedError(ServiceUnavailableError):
    """The action was committed; only the push/mail delivery failed. `result` holds the committed outcome."""
    detail = "Action completed but notification delivery failed"

    def __init__(self, detail: str | None = None, result=None):
        super().__init__(detail)
        self.result = result


class InternalError(MarketplaceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Internal server error"


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error("internal_error", path=request.url.path, error=str(exc.__cause__ or exc))
        return JSONResponse(status_code=exc.status_code, content={"detail": InternalError.detail})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)

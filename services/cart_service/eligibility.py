"""
Eligibility gate for adding a rental to a cart.

Buyers are classified into three trust tiers from their order history and
ratings; each tier bounds the rental duration and item price it may request.
The gate is a pure decision: persisting the cart line is the caller's job.
"""
import enum
from dataclasses import dataclass

from shared.config.settings import (
    BASIC_MAX_DURATION_DAYS,
    BASIC_PRICE_CAP_CENTS,
    EXTENDED_MIN_TOP_REVIEWS,
    HIGH_TRUST_RATING,
    LONG_RENTAL_DAYS,
    MAX_RENTAL_DAYS,
    STANDARD_PRICE_CAP_CENTS,
)
from shared.errors import (
    AccountDeactivatedError,
    ExtendedPrivilegesRequiredError,
    IneligibleDurationError,
    IneligiblePriceError,
)


class EligibilityTier(str, enum.Enum):
    BASIC = "basic"
    STANDARD = "standard"
    EXTENDED = "extended"


@dataclass(frozen=True)
class TrustSnapshot:
    completed_orders: int
    average_rating: float
    top_reviews: int
    is_account_active: bool = True


@dataclass(frozen=True)
class EligibilityPolicy:
    high_trust_rating: float = HIGH_TRUST_RATING
    basic_max_duration_days: int = BASIC_MAX_DURATION_DAYS
    long_rental_days: int = LONG_RENTAL_DAYS
    max_rental_days: int = MAX_RENTAL_DAYS
    basic_price_cap_cents: int = BASIC_PRICE_CAP_CENTS
    standard_price_cap_cents: int = STANDARD_PRICE_CAP_CENTS
    extended_min_top_reviews: int = EXTENDED_MIN_TOP_REVIEWS


DEFAULT_POLICY = EligibilityPolicy()


def classify(trust: TrustSnapshot, policy: EligibilityPolicy = DEFAULT_POLICY) -> EligibilityTier:
    if trust.completed_orders <= 0 or trust.average_rating < policy.high_trust_rating:
        return EligibilityTier.BASIC
    if trust.top_reviews < policy.extended_min_top_reviews:
        return EligibilityTier.STANDARD
    return EligibilityTier.EXTENDED


def check_eligibility(
    trust: TrustSnapshot,
    duration_days: int,
    price_cents: int,
    policy: EligibilityPolicy = DEFAULT_POLICY,
) -> EligibilityTier:
    """
    Approves a rental request and returns the buyer's tier, or raises the
    ConflictError subclass naming the rule that failed.
    """
    if not trust.is_account_active:
        raise AccountDeactivatedError()
    if duration_days < 1 or duration_days > policy.max_rental_days:
        raise IneligibleDurationError()
    if price_cents <= 0:
        raise IneligiblePriceError()

    tier = classify(trust, policy)

    if tier == EligibilityTier.BASIC:
        if duration_days > policy.basic_max_duration_days:
            raise IneligibleDurationError()
        if price_cents > policy.basic_price_cap_cents:
            raise IneligiblePriceError()
    elif tier == EligibilityTier.STANDARD:
        if duration_days >= policy.long_rental_days or price_cents > policy.standard_price_cap_cents:
            raise ExtendedPrivilegesRequiredError()

    return tier

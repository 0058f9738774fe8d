from .setup import setup_observability, configure_logging
from .metrics import (
    rentals_checkout_total,
    rentals_orders_created_total,
    rentals_order_transitions_total,
    rentals_settlements_total,
    rentals_settled_amount_cents,
    rentals_sweep_duration_seconds,
    rentals_overdue_promotions_total,
    rentals_sweep_failures_total,
    rentals_delivery_failures_total
)

from prometheus_client import Counter, Histogram

# Business Metrics
rentals_checkout_total = Counter(
    "rentals_checkout_total",
    "Checkouts split into vendor orders",
    ["status"] # Labels: 'success', 'failed'
)

rentals_orders_created_total = Counter(
    "rentals_orders_created_total",
    "Vendor sub-orders created at checkout"
)

rentals_order_transitions_total = Counter(
    "rentals_order_transitions_total",
    "Order status transitions committed",
    ["event", "to_status"] # Labels: event='ship', to_status='Sent', etc.
)

rentals_settlements_total = Counter(
    "rentals_settlements_total",
    "Buyer order settlements applied",
    ["outcome"] # Labels: 'captured', 'released', 'partially_captured'
)

rentals_settled_amount_cents = Counter(
    "rentals_settled_amount_cents",
    "Amount captured by settlements, in cents"
)

rentals_sweep_duration_seconds = Histogram(
    "rentals_sweep_duration_seconds",
    "Duration of one overdue sweep tick in seconds"
)

rentals_overdue_promotions_total = Counter(
    "rentals_overdue_promotions_total",
    "Orders promoted to overdue by the sweeper"
)

rentals_sweep_failures_total = Counter(
    "rentals_sweep_failures_total",
    "Orders the sweeper failed to update"
)

rentals_delivery_failures_total = Counter(
    "rentals_delivery_failures_total",
    "Failed outbound notification or mail deliveries",
    ["channel"] # Labels: 'push', 'mail'
)

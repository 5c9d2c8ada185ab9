from prometheus_client import Counter, Histogram

# Order Aggregate
fulfil_orders_created_total = Counter(
    "fulfil_orders_created_total",
    "Orders accepted by the create operation",
)

fulfil_order_rejections_total = Counter(
    "fulfil_order_rejections_total",
    "Order creations rejected synchronously",
    ["reason"]  # Labels: 'EMPTY_CART', 'PRODUCT_UNAVAILABLE', ...
)

fulfil_order_transitions_total = Counter(
    "fulfil_order_transitions_total",
    "Order status transitions",
    ["to_status"]
)

fulfil_compensations_total = Counter(
    "fulfil_compensations_total",
    "Compensating commands emitted",
    ["command", "outcome"]  # outcome: 'enqueued', 'failed'
)

fulfil_dependency_seconds = Histogram(
    "fulfil_dependency_seconds",
    "Latency of synchronous collaborator calls during order creation",
    ["dependency"]
)

# Message fabric
fulfil_messages_consumed_total = Counter(
    "fulfil_messages_consumed_total",
    "Messages handled by consumers",
    ["consumer", "queue", "outcome"]  # outcome: 'handled', 'duplicate', 'retry', 'dead_lettered'
)

fulfil_outbox_publish_failures_total = Counter(
    "fulfil_outbox_publish_failures_total",
    "Outbox rows that failed to publish",
    ["source", "queue"]
)

fulfil_outbox_published_total = Counter(
    "fulfil_outbox_published_total",
    "Outbox rows published to the broker",
    ["source", "queue"]
)

# Ledgers
fulfil_reservations_total = Counter(
    "fulfil_reservations_total",
    "Inventory reservation outcomes",
    ["outcome"]  # 'reserved', 'failed', 'released', 'committed', 'noop'
)

fulfil_payments_total = Counter(
    "fulfil_payments_total",
    "Payment charge outcomes",
    ["outcome"]  # 'completed', 'failed'
)

fulfil_refunds_total = Counter(
    "fulfil_refunds_total",
    "Refund outcomes",
    ["outcome"]  # 'refunded', 'partial', 'failed', 'noop'
)

fulfil_shipment_status_total = Counter(
    "fulfil_shipment_status_total",
    "Shipment status changes",
    ["status"]
)

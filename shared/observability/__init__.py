from .setup import setup_observability
from .correlation import CorrelationContext, bound_context, correlation_from_request
from .metrics import (
    fulfil_orders_created_total,
    fulfil_order_rejections_total,
    fulfil_order_transitions_total,
    fulfil_compensations_total,
    fulfil_dependency_seconds,
    fulfil_messages_consumed_total,
    fulfil_outbox_publish_failures_total,
    fulfil_outbox_published_total,
    fulfil_reservations_total,
    fulfil_payments_total,
    fulfil_refunds_total,
    fulfil_shipment_status_total,
)

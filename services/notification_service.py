"""
Operator notifications.

Called once per unrecoverable data-loss event with the full order context.
Delivery is fire-and-forget: a failed notification is logged, never raised.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Protocol

import requests

from domain.order import PaymentOrder

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify_data_loss(self, order: PaymentOrder, context: Mapping[str, Any]) -> None: ...


def order_context(order: PaymentOrder) -> Dict[str, Any]:
    """Serializable snapshot of an order for alerts and audit records."""

    return {
        "order_id": order.order_id,
        "order_number": order.order_number,
        "buyer_id": order.buyer_id,
        "buyer_name": order.billing.full_name,
        "buyer_email": order.billing.email,
        "line_items": [
            {
                "descriptor": item.descriptor,
                "product_id": item.product_id,
                "unit_price": str(item.unit_price),
                "quantity": item.quantity,
            }
            for item in order.line_items
        ],
    }


class LoggingNotifier:
    """Used when no alert webhook is configured."""

    def notify_data_loss(self, order: PaymentOrder, context: Mapping[str, Any]) -> None:
        logger.critical(f"NO REGISTRATION DATA FOUND for paid order {order.order_id}: {dict(context)}")


class WebhookNotifier:
    DEFAULT_TIMEOUT = 10

    def __init__(
        self,
        url: str,
        session: Optional[requests.Session] = None,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    def notify_data_loss(self, order: PaymentOrder, context: Mapping[str, Any]) -> None:
        payload = {
            "event": "registration_data_loss",
            "severity": "critical",
            "text": (
                f"Paid order {order.order_id} has no recoverable registration data. "
                f"Buyer: {order.billing.full_name or order.buyer_id} ({order.billing.email or 'no email'})"
            ),
            "context": dict(context),
        }
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to deliver data-loss alert for order {order.order_id}: {e}")
            return
        logger.info(f"Data-loss alert delivered for order {order.order_id}")


__all__ = ["LoggingNotifier", "Notifier", "WebhookNotifier", "order_context"]

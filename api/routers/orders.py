"""
Orders API Endpoints.

Inbound order-completion trigger from the commerce platform.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import ServiceContainer, get_container
from api.models import OrderCompletedRequest, ReconciliationResponse
from domain.errors import InvalidOrderError
from domain.order import BillingIdentity, LineItem, PaymentOrder

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_payment_order(request: OrderCompletedRequest) -> PaymentOrder:
    """Raises InvalidOrderError for a missing order id or invalid line items."""
    try:
        line_items = tuple(
            LineItem(
                descriptor=item.descriptor,
                unit_price=item.unit_price,
                quantity=item.quantity,
                product_id=item.product_id,
            )
            for item in request.line_items
        )
    except ValueError as e:
        raise InvalidOrderError(f"Invalid line item: {e}") from e

    return PaymentOrder(
        order_id=request.order_id or "",
        buyer_id=request.buyer_id,
        line_items=line_items,
        billing=BillingIdentity(
            first_name=request.billing.first_name,
            last_name=request.billing.last_name,
            email=request.billing.email,
        ),
        order_number=request.order_number,
    )


@router.post(
    "/orders/completed",
    response_model=ReconciliationResponse,
    summary="Reconcile Completed Order",
    description="Bind a paid order to the buyer's queued registrations and persist them exactly once."
)
def reconcile_completed_order(
    request: OrderCompletedRequest,
    container: ServiceContainer = Depends(get_container),
):
    """
    Reconcile a completed payment order.

    **Process:**
    1. Skips orders already processed or currently being processed
    2. Syncs donation line items once per order
    3. Loads intents from the buyer session, else recovers the pending backup
    4. Matches intents to paid line-item slots by division
    5. Saves each match to the registrations table and syncs it to Airtable
    6. Cleans up the session queue and marks the backup completed

    Re-sending the same order is safe: the second call is a no-op.
    """
    try:
        order = _to_payment_order(request)
    except InvalidOrderError as e:
        logger.error(f"Rejected malformed order notification: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    queue = container.sessions.queue_for(order.buyer_id or "")

    try:
        outcome = container.reconciler.reconcile(order, queue)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to reconcile order: {str(e)}"
        )

    batch = outcome.batch
    if outcome.aborted:
        message = f"Payment received. Registration follow-up required: {outcome.reason}."
    elif batch is None:
        message = f"Order skipped: {outcome.reason}."
    elif batch.failed or outcome.unmatched:
        message = "Payment received. Some registrations need follow-up."
    else:
        message = "Registration complete."

    return ReconciliationResponse(
        success=True,
        order_id=outcome.order_id,
        state=outcome.state.value,
        history=[state.value for state in outcome.history],
        source=outcome.origin.value,
        matched=outcome.matched_count,
        unmatched_intent_ids=[intent.intent_id for intent in outcome.unmatched],
        total=batch.total if batch else 0,
        successful=batch.successful if batch else 0,
        partial=batch.partial if batch else 0,
        failed=batch.failed if batch else 0,
        message=message,
    )

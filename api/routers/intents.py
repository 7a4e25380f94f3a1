"""
Intents API Endpoints.

Queue registration intents in the buyer's session and back them up before
checkout.
"""

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import ServiceContainer, get_container
from api.models import CheckoutResponse, IntentListResponse, IntentRequest, IntentResponse
from domain.errors import DuplicateIntentError
from domain.intent import PendingIntent

router = APIRouter()


def _to_response(intent: PendingIntent) -> IntentResponse:
    return IntentResponse(
        intent_id=intent.intent_id,
        buyer_id=intent.buyer_id,
        player_id=intent.player_id,
        division=intent.division,
        sport=intent.sport,
        season=intent.season,
        computed_fee=intent.computed_fee,
        submitted_at=intent.submitted_at,
    )


@router.post(
    "/intents",
    response_model=IntentResponse,
    status_code=201,
    summary="Queue Registration Intent",
)
def add_intent(request: IntentRequest, container: ServiceContainer = Depends(get_container)):
    """
    Add a registration intent to the buyer's queue.

    Returns 409 when the same player is already queued for the same sport and season.
    """
    auxiliary = dict(request.auxiliary)
    if request.player_name:
        auxiliary["player_name"] = request.player_name

    intent = PendingIntent.create(
        buyer_id=request.buyer_id,
        player_id=request.player_id,
        division=request.division,
        sport=request.sport,
        season=request.season,
        computed_fee=request.computed_fee,
        auxiliary=auxiliary,
    )

    try:
        container.sessions.queue_for(request.buyer_id).add(intent)
    except DuplicateIntentError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return _to_response(intent)


@router.get("/intents/{buyer_id}", response_model=IntentListResponse, summary="List Queued Intents")
def list_intents(buyer_id: str, container: ServiceContainer = Depends(get_container)):
    intents = container.sessions.queue_for(buyer_id).get()
    return IntentListResponse(
        buyer_id=buyer_id,
        intents=[_to_response(intent) for intent in intents],
        total_count=len(intents),
    )


@router.post(
    "/intents/{buyer_id}/checkout",
    response_model=CheckoutResponse,
    summary="Back Up Intents Before Payment",
)
def checkout(buyer_id: str, container: ServiceContainer = Depends(get_container)):
    """
    Save the buyer's queued intents to the durable backup store.

    Called right before the buyer is sent to payment, so the batch can be
    recovered if the session is lost.
    """
    intents = container.sessions.queue_for(buyer_id).get()
    if not intents:
        raise HTTPException(status_code=400, detail="No queued registrations to check out")

    try:
        record = container.backup_store.save(buyer_id, intents)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to save registration backup: {str(e)}"
        )

    return CheckoutResponse(
        record_id=record.record_id,
        buyer_id=buyer_id,
        intent_count=len(record.intents),
        status=record.status.value,
    )

"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# ============================================================================
# Intent Models
# ============================================================================

class IntentRequest(BaseModel):
    """Registration intent submitted before checkout."""
    buyer_id: str = Field(..., min_length=1)
    player_id: str = Field(..., min_length=1)
    player_name: Optional[str] = None
    division: str = Field(..., min_length=1, max_length=100)
    sport: str = Field(..., min_length=1)
    season: str = Field(..., min_length=1)
    computed_fee: Decimal = Field(..., ge=0)
    auxiliary: Dict[str, str] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "buyer_id": "member-123",
                "player_id": "player-456",
                "player_name": "Sam Rivera",
                "division": "Majors",
                "sport": "Baseball",
                "season": "2026.1",
                "computed_fee": "150.00",
                "auxiliary": {"school": "Lincoln Elementary"}
            }
        }


class IntentResponse(BaseModel):
    intent_id: str
    buyer_id: str
    player_id: str
    division: str
    sport: str
    season: str
    computed_fee: Decimal
    submitted_at: datetime


class IntentListResponse(BaseModel):
    buyer_id: str
    intents: List[IntentResponse]
    total_count: int


class CheckoutResponse(BaseModel):
    """Backup of the buyer's queue written before payment."""
    record_id: str
    buyer_id: str
    intent_count: int
    status: str


# ============================================================================
# Order Models
# ============================================================================

class LineItemModel(BaseModel):
    descriptor: str
    unit_price: Decimal = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    product_id: Optional[str] = None


class BillingModel(BaseModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""


class OrderCompletedRequest(BaseModel):
    """
    Order-completion notification from the commerce platform.

    order_id is optional here so a missing id reaches the reconciler's own
    validation and is reported as a non-retryable 400.
    """
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    buyer_id: Optional[str] = None
    line_items: List[LineItemModel] = Field(default_factory=list)
    billing: BillingModel = Field(default_factory=BillingModel)

    class Config:
        json_schema_extra = {
            "example": {
                "order_id": "a1b2c3d4",
                "order_number": "10042",
                "buyer_id": "member-123",
                "line_items": [
                    {"descriptor": "Baseball Majors - 2026.1", "unit_price": "150.00", "quantity": 1}
                ],
                "billing": {"first_name": "Alex", "last_name": "Rivera", "email": "alex@example.com"}
            }
        }


class ReconciliationResponse(BaseModel):
    """
    Result of reconciling a completed order.

    success reflects the buyer-facing view: payment is confirmed, so it is
    true whenever the order was valid. Sync problems show only in `partial`.
    """
    success: bool
    order_id: str
    state: str
    history: List[str]
    source: str
    matched: int
    unmatched_intent_ids: List[str]
    total: int = 0
    successful: int = 0
    partial: int = 0
    failed: int = 0
    message: Optional[str] = None

"""
schemas.py: intake Pydantic v2 data contracts.

Defines:
  - IntakeRequest, IntakeResponse   (POST /api/ussd/init)
  - ErrorDetail, ErrorBody, ErrorResponse  (cross-cutting error envelope)

IntakeResponse serializes session_id as "sessionId"; USSD/portal clients poll
/api/voucher/status/{sessionId} with it.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class IntakeRequest(BaseModel):
    """
    One purchase intent. amount is whole Ariary; "1000" is accepted as 1000.
    Offer membership is checked by the registry (unknown offer -> 422).
    """
    phone: str = Field(..., min_length=1, description="Subscriber number, any format.")
    amount: int = Field(..., gt=0, description="Expected payment amount in Ariary.")
    offer: str = Field(..., min_length=1, description="Offer code, e.g. '1h', '5h', '24h'.")


class IntakeResponse(BaseModel):
    success: bool = True
    session_id: str = Field(..., serialization_alias="sessionId")
    reference: str


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single field-level validation error."""
    model_config = ConfigDict(extra="forbid")

    field: Optional[str] = None   # Dot-notation field path, e.g. "amount"
    issue: str


class ErrorBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str                                      # VALIDATION_ERROR, NOT_FOUND, etc.
    message: str
    details: List[ErrorDetail] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """
    Standard error response format for every endpoint.

    Structure: {"error": {"code": "...", "message": "...", "details": [...]}}
    """
    model_config = ConfigDict(extra="forbid")

    error: ErrorBody

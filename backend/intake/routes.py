"""
routes.py: purchase intake endpoint.

POST /api/ussd/init  creates a PENDING session and returns {success, sessionId, reference}

Validation failures (missing field, unknown offer, short phone) surface as the
standard 422 VALIDATION_ERROR envelope via the handlers in main.py.
"""
import logging

from fastapi import APIRouter, Depends

from backend.engine import VoucherEngine, get_engine
from backend.intake.schemas import ErrorResponse, IntakeRequest, IntakeResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["Intake"])


@router.post(
    "/ussd/init",
    response_model=IntakeResponse,
    responses={422: {"model": ErrorResponse}},
)
async def init_purchase(
    body: IntakeRequest,
    engine: VoucherEngine = Depends(get_engine),
) -> IntakeResponse:
    """
    Register a purchase intent before the customer pays.
    The returned reference is shown to the customer for manual reconciliation.
    """
    session = engine.registry.create(body.phone, body.amount, body.offer)
    return IntakeResponse(session_id=session.session_id, reference=session.reference)

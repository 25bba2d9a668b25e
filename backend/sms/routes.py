"""
routes.py: payment confirmation ingestion.

POST /api/sms/incoming  {sender, message} -> always 200 {acknowledged: true}

The forwarder is never told whether the SMS matched a session or whether a
voucher was issued; the outcome is only logged. The body is decoded by hand
so that malformed payloads are acknowledged too instead of failing request
validation.
"""
import logging

from fastapi import APIRouter, Depends, Request

from backend.engine import VoucherEngine, get_engine
from backend.sms.schemas import SmsAck, SmsNotification

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["SMS"])


@router.post("/sms/incoming", response_model=SmsAck)
async def incoming_sms(
    request: Request,
    engine: VoucherEngine = Depends(get_engine),
) -> SmsAck:
    try:
        payload = await request.json()
    except ValueError:
        logger.info("SMS notification body is not JSON; ignoring")
        payload = None
    body = SmsNotification.from_payload(payload)
    outcome = await engine.matcher.handle(body.sender, body.message)
    logger.debug("SMS processed outcome=%s", outcome.value)
    return SmsAck()

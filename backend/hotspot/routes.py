"""
routes.py: voucher polling endpoints.

GET /api/voucher/status/{session_id}  polled by the portal after payment
GET /api/voucher/all/{session_id}     same payload, used by the "show my vouchers" screen

Pure reads, safe to call repeatedly. A voucher stays available for the
lifetime of the process.
"""
from fastapi import APIRouter, Depends

from backend.engine import VoucherEngine, get_engine
from backend.hotspot.schemas import VoucherOut, VoucherStatusResponse

router = APIRouter(prefix="/api", tags=["Voucher"])


def _lookup(engine: VoucherEngine, session_id: str) -> VoucherStatusResponse:
    voucher = engine.vouchers.get(session_id)
    if voucher is None:
        return VoucherStatusResponse(found=False)
    return VoucherStatusResponse(
        found=True,
        voucher=VoucherOut(username=voucher.username, password=voucher.password),
    )


@router.get(
    "/voucher/status/{session_id}",
    response_model=VoucherStatusResponse,
    response_model_exclude_none=True,
)
async def voucher_status(
    session_id: str,
    engine: VoucherEngine = Depends(get_engine),
) -> VoucherStatusResponse:
    return _lookup(engine, session_id)


@router.get(
    "/voucher/all/{session_id}",
    response_model=VoucherStatusResponse,
    response_model_exclude_none=True,
)
async def voucher_all(
    session_id: str,
    engine: VoucherEngine = Depends(get_engine),
) -> VoucherStatusResponse:
    return _lookup(engine, session_id)

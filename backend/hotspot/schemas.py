"""
schemas.py: voucher polling contracts.

{found: false} covers both "payment not confirmed yet" and "issuance failed
for good"; clients cannot tell the two apart.
"""
from typing import Optional

from pydantic import BaseModel


class VoucherOut(BaseModel):
    username: str
    password: str


class VoucherStatusResponse(BaseModel):
    found: bool
    voucher: Optional[VoucherOut] = None

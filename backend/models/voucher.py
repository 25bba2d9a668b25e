"""
models/voucher.py: hotspot credential handed to a paying customer.
"""
from pydantic import BaseModel, ConfigDict


class Voucher(BaseModel):
    """Username/password pair created on the controller. Immutable once issued."""
    model_config = ConfigDict(frozen=True)

    username: str
    password: str

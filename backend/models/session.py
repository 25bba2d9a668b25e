"""
models/session.py: in-memory purchase session record.

A PurchaseSession lives only in the SessionRegistry. It is born PENDING at
intake and leaves the registry either when a payment confirmation consumes it
(CONFIRMED, then removed) or when the expiry sweeper evicts it.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SessionStatus(str, Enum):
    pending = "PENDING"
    confirmed = "CONFIRMED"


class PurchaseSession(BaseModel):
    """
    One outstanding purchase intent.

    phone is already normalized (digits only, last 9 kept) so it compares equal
    to the number extracted from a confirmation SMS.
    amount is in whole Ariary, no minor unit.
    """
    model_config = ConfigDict(extra="forbid")

    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    phone: str
    amount: int = Field(..., gt=0)
    offer: str
    reference: str
    status: SessionStatus = SessionStatus.pending
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def masked_phone(self) -> str:
        """Phone with all but the last 3 digits hidden, safe for logs."""
        return "*" * max(len(self.phone) - 3, 0) + self.phone[-3:]

"""
schemas.py: inbound SMS contracts.

Forwarders are not consistent about what they post: senders arrive as
shortcodes or MSISDNs (numbers), bodies may be missing or not JSON at all.
Anything that is not usable text becomes None, and the message is then
ignored; the forwarder still gets a 200 acknowledgement.
"""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class SmsNotification(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sender: Optional[str] = None
    message: Optional[str] = None

    @field_validator("sender", "message", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> Optional[str]:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return None

    @classmethod
    def from_payload(cls, payload: Any) -> "SmsNotification":
        """Build from a decoded JSON body; non-object bodies yield an empty notification."""
        if not isinstance(payload, dict):
            return cls()
        return cls.model_validate(payload)


class SmsAck(BaseModel):
    acknowledged: bool = True

"""
matcher.py: reconciles inbound payment SMS with PENDING purchase sessions.

Flow for one notification:
  1. sender filter            (not the payment provider -> IGNORED)
  2. parse amount + phone     (either missing -> UNPARSED)
  3. registry.claim_match()   (no PENDING session -> NO_MATCH, message dropped)
  4. resolve offer -> profile (unmapped -> FAILED)
  5. issuer.issue(profile)    (device failure -> FAILED, session already gone)
  6. store the voucher        -> ISSUED

handle() never raises: the SMS source is always acknowledged and is never told
how reconciliation went. A confirmation that arrives before its session exists,
or after it expired, is lost; there is no retry queue.
"""
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from backend.hotspot.errors import DeviceError
from backend.hotspot.issuer import VoucherIssuer
from backend.intake.registry import SessionRegistry, normalize_phone
from backend.store import VoucherStore

logger = logging.getLogger(__name__)

# "1000 Ar", "1 000Ar", "10,000 Ar", "2.500 AR"
AMOUNT_REGEX = re.compile(r"(\d{1,3}(?:[ ,.\u00a0]\d{3})+|\d+)\s?Ar", re.IGNORECASE)
_GROUPING = re.compile(r"[ ,.\u00a0]")
# "(0321234567)"
PHONE_REGEX = re.compile(r"\((0\d{9,10})\)")


class MatchOutcome(str, Enum):
    ignored = "IGNORED"
    unparsed = "UNPARSED"
    no_match = "NO_MATCH"
    issued = "ISSUED"
    failed = "FAILED"


@dataclass(frozen=True)
class ParsedConfirmation:
    amount: int
    phone: str   # normalized


def parse_amount(message: str) -> Optional[int]:
    match = AMOUNT_REGEX.search(message)
    if match is None:
        return None
    return int(_GROUPING.sub("", match.group(1)))


def parse_phone(message: str) -> Optional[str]:
    match = PHONE_REGEX.search(message)
    if match is None:
        return None
    return normalize_phone(match.group(1))


def parse_confirmation(message: str) -> Optional[ParsedConfirmation]:
    """Extract (amount, normalized phone) from a provider SMS, None if either is missing."""
    amount = parse_amount(message)
    if amount is None:
        return None
    phone = parse_phone(message)
    if phone is None:
        return None
    return ParsedConfirmation(amount=amount, phone=phone)


class NotificationMatcher:
    def __init__(
        self,
        registry: SessionRegistry,
        issuer: VoucherIssuer,
        vouchers: VoucherStore,
        sender_pattern: str = "mvola",
    ) -> None:
        self._registry = registry
        self._issuer = issuer
        self._vouchers = vouchers
        self._sender = re.compile(sender_pattern, re.IGNORECASE)

    def accepts_sender(self, sender: Optional[str]) -> bool:
        return bool(sender) and self._sender.search(sender) is not None

    async def handle(self, sender: Optional[str], message: Optional[str]) -> MatchOutcome:
        try:
            return await self._handle(sender, message)
        except Exception:
            logger.error("Unexpected error while reconciling SMS", exc_info=True)
            return MatchOutcome.failed

    async def _handle(self, sender: Optional[str], message: Optional[str]) -> MatchOutcome:
        if not message or not self.accepts_sender(sender):
            return MatchOutcome.ignored

        logger.info("Payment SMS received sender=%s", sender)
        parsed = parse_confirmation(message)
        if parsed is None:
            logger.info("Payment SMS without amount or phone, dropped")
            return MatchOutcome.unparsed

        session = self._registry.claim_match(parsed.amount, parsed.phone)
        if session is None:
            logger.info(
                "No pending session for amount=%d phone=***%s, dropped",
                parsed.amount, parsed.phone[-3:],
            )
            return MatchOutcome.no_match

        logger.info(
            "Payment confirmed session_id=%s ref=%s amount=%d offer=%s",
            session.session_id, session.reference, session.amount, session.offer,
        )

        profile = self._registry.profile_for(session.offer)
        if profile is None:
            logger.warning(
                "Offer %s has no hotspot profile, session_id=%s dropped",
                session.offer, session.session_id,
            )
            return MatchOutcome.failed

        try:
            voucher = await self._issuer.issue(profile)
        except DeviceError as exc:
            logger.error(
                "Voucher issuance failed session_id=%s ref=%s: %s",
                session.session_id, session.reference, exc,
            )
            return MatchOutcome.failed

        self._vouchers.save(session.session_id, voucher)
        return MatchOutcome.issued

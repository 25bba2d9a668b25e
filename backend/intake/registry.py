"""
registry.py: in-memory SessionRegistry for outstanding purchase intents.

The registry is the single owner of PurchaseSession records. Every
read-modify-write sequence runs under one threading.Lock so that
  - two confirmations can never consume the same session, and
  - the expiry sweeper and the matcher never both act on one entry
    (whoever takes the lock first wins, the other sees the entry gone).

Matching is a linear scan. When several PENDING sessions share the same
(amount, phone), the oldest created_at wins; equal timestamps fall back to
insertion order. The payment provider gives us no other correlation key.
"""
import logging
import re
import secrets
import string
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Mapping, Optional

from backend.models.session import PurchaseSession, SessionStatus

logger = logging.getLogger(__name__)

PHONE_DIGITS = 9
REFERENCE_LENGTH = 6
_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
_NON_DIGIT = re.compile(r"\D")


def normalize_phone(phone: str) -> str:
    """
    Keep digits only, then the last 9 of them.

    "032 12 345 67", "+261 32 12 345 67" and "0321234567" all become
    "321234567", so intake and SMS matching compare equal.
    """
    return _NON_DIGIT.sub("", phone)[-PHONE_DIGITS:]


def generate_reference() -> str:
    """Short human-readable correlation code shown to the purchaser."""
    return "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(REFERENCE_LENGTH))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionRegistry:
    """
    session_id -> PurchaseSession, process lifetime only.

    offer_profiles is the closed set of accepted offers; create() rejects
    anything outside it with ValueError.
    """

    def __init__(
        self,
        offer_profiles: Mapping[str, str],
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._offer_profiles = dict(offer_profiles)
        self._clock = clock
        self._sessions: Dict[str, PurchaseSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def create(self, phone: str, amount: int, offer: str) -> PurchaseSession:
        """
        Register a new PENDING session.

        Raises:
            ValueError: unknown offer, phone with fewer than 9 digits,
                or non-positive amount.
        """
        if offer not in self._offer_profiles:
            raise ValueError(
                f"Unknown offer '{offer}'. Expected one of: {', '.join(sorted(self._offer_profiles))}"
            )
        normalized = normalize_phone(phone)
        if len(normalized) < PHONE_DIGITS:
            raise ValueError(f"Phone number must contain at least {PHONE_DIGITS} digits")
        if amount <= 0:
            raise ValueError("Amount must be a positive integer")

        session = PurchaseSession(
            phone=normalized,
            amount=amount,
            offer=offer,
            reference=generate_reference(),
            created_at=self._clock(),
        )
        with self._lock:
            # uuid4 collisions are not expected; refuse to overwrite if one happens
            if session.session_id in self._sessions:
                raise RuntimeError(f"Duplicate session_id {session.session_id}")
            self._sessions[session.session_id] = session

        logger.info(
            "Session created session_id=%s ref=%s amount=%d offer=%s phone=%s",
            session.session_id, session.reference, amount, offer, session.masked_phone,
        )
        return session

    def get(self, session_id: str) -> Optional[PurchaseSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def profile_for(self, offer: str) -> Optional[str]:
        """Controller-side profile name for an offer, None if unmapped."""
        return self._offer_profiles.get(offer)

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _find_pending_match_locked(self, amount: int, phone: str) -> Optional[str]:
        candidates = [
            s for s in self._sessions.values()
            if s.status is SessionStatus.pending and s.amount == amount and s.phone == phone
        ]
        if not candidates:
            return None
        # min() keeps the first of equal keys, i.e. insertion order on ties
        return min(candidates, key=lambda s: s.created_at).session_id

    def _confirm_and_remove_locked(self, session_id: str) -> Optional[PurchaseSession]:
        session = self._sessions.get(session_id)
        if session is None or session.status is not SessionStatus.pending:
            return None
        del self._sessions[session_id]
        return session.model_copy(update={"status": SessionStatus.confirmed})

    def find_pending_match(self, amount: int, phone: str) -> Optional[str]:
        """Oldest PENDING session_id with this (amount, normalized phone), or None."""
        with self._lock:
            return self._find_pending_match_locked(amount, phone)

    def confirm_and_remove(self, session_id: str) -> Optional[PurchaseSession]:
        """
        PENDING -> CONFIRMED and drop the entry, atomically.
        Returns the confirmed record, or None if the session is already gone.
        """
        with self._lock:
            return self._confirm_and_remove_locked(session_id)

    def claim_match(self, amount: int, phone: str) -> Optional[PurchaseSession]:
        """find_pending_match + confirm_and_remove under a single lock acquisition."""
        with self._lock:
            session_id = self._find_pending_match_locked(amount, phone)
            if session_id is None:
                return None
            return self._confirm_and_remove_locked(session_id)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def remove_if_older_than(self, max_age: timedelta) -> List[PurchaseSession]:
        """Evict every PENDING session older than max_age. Returns the evicted records."""
        cutoff = self._clock() - max_age
        with self._lock:
            expired = [
                s for s in self._sessions.values()
                if s.status is SessionStatus.pending and s.created_at < cutoff
            ]
            for session in expired:
                del self._sessions[session.session_id]
        return expired

"""
store.py: Voucher Store, the in-memory session_id -> Voucher map.

Design principles:
  - Process lifetime only: nothing expires, nothing survives a restart
  - Written once per session by the notification matcher, read by polling clients
  - Writes are overwrite-safe by key; the lock only keeps the dict consistent
  - Logs only session_id and username, never the password
"""
import logging
import threading
from typing import Dict, Optional

from backend.models.voucher import Voucher

logger = logging.getLogger(__name__)


class VoucherStore:
    def __init__(self) -> None:
        self._vouchers: Dict[str, Voucher] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._vouchers)

    def save(self, session_id: str, voucher: Voucher) -> None:
        """Store the voucher issued for session_id. A second write for the same key overwrites."""
        with self._lock:
            previous = self._vouchers.get(session_id)
            self._vouchers[session_id] = voucher
        if previous is not None and previous != voucher:
            logger.warning("Voucher overwritten session_id=%s", session_id)
        logger.info("Saved voucher session_id=%s username=%s", session_id, voucher.username)

    def get(self, session_id: str) -> Optional[Voucher]:
        """Pure read. None until issuance succeeds, and forever if it failed."""
        with self._lock:
            return self._vouchers.get(session_id)

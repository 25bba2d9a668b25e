"""
models/__init__.py: re-exports the in-memory domain records.
"""
from backend.models.session import PurchaseSession, SessionStatus
from backend.models.voucher import Voucher

__all__ = ["PurchaseSession", "SessionStatus", "Voucher"]

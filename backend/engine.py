"""
engine.py: the reconciliation engine's explicitly-owned service state.

One VoucherEngine is built in the FastAPI lifespan and stored on
app.state.engine. Routes reach every shared structure through it; there is no
module-level mutable state.

Usage:
    from backend.engine import build_engine
    engine = build_engine(settings)
    await engine.start()
    ...
    await engine.stop()
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from fastapi import HTTPException, Request

from backend.config import Settings
from backend.hotspot.connection import ConnectionFactory, DeviceConnectionManager
from backend.hotspot.errors import DeviceUnavailableError
from backend.hotspot.issuer import VoucherIssuer
from backend.hotspot.routeros import IDENTITY_PRINT, RouterOSConnection
from backend.intake.registry import SessionRegistry
from backend.intake.sweeper import ExpirySweeper
from backend.sms.matcher import NotificationMatcher
from backend.store import VoucherStore

logger = logging.getLogger(__name__)


@dataclass
class VoucherEngine:
    registry: SessionRegistry
    vouchers: VoucherStore
    device: DeviceConnectionManager
    issuer: VoucherIssuer
    matcher: NotificationMatcher
    sweeper: ExpirySweeper
    keepalive_s: float = 0.0
    _tasks: List[asyncio.Task] = field(default_factory=list)

    async def start(self, warm_up: bool = True) -> None:
        """Start the sweeper (and keepalive) tasks, optionally pre-open the device connection."""
        loop = asyncio.get_running_loop()
        self._tasks.append(loop.create_task(self.sweeper.run(), name="expiry-sweeper"))
        if self.keepalive_s > 0:
            self._tasks.append(
                loop.create_task(
                    self.device.run_keepalive(self.keepalive_s, IDENTITY_PRINT),
                    name="device-keepalive",
                )
            )
        if warm_up:
            try:
                await self.device.ensure_ready()
            except DeviceUnavailableError as exc:
                # Not fatal: the first voucher request will try again
                logger.warning("Hotspot controller not reachable at startup: %s", exc)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self.device.close()

    def health(self) -> dict:
        return {
            "device": self.device.state.value,
            "pending_sessions": len(self.registry),
            "vouchers_issued": len(self.vouchers),
        }


def routeros_factory(settings: Settings) -> ConnectionFactory:
    """Blocking connection factory for the configured MikroTik controller."""
    def _open(on_error) -> RouterOSConnection:
        return RouterOSConnection.open(
            host=settings.mikrotik_host,
            username=settings.mikrotik_user,
            password=settings.mikrotik_password,
            port=settings.mikrotik_port,
            timeout=settings.mikrotik_timeout,
            on_error=on_error,
        )
    return _open


def build_engine(
    settings: Settings,
    connection_factory: Optional[ConnectionFactory] = None,
) -> VoucherEngine:
    """
    Wire every component from settings.
    connection_factory overrides the RouterOS transport (tests inject a fake).
    """
    registry = SessionRegistry(settings.offer_profiles)
    vouchers = VoucherStore()
    device = DeviceConnectionManager(
        connection_factory or routeros_factory(settings),
        reconnect_delay_s=settings.device_reconnect_delay_s,
    )
    issuer = VoucherIssuer(
        device,
        username_prefix=settings.voucher_username_prefix,
        username_length=settings.voucher_username_length,
        password_length=settings.voucher_password_length,
    )
    matcher = NotificationMatcher(
        registry, issuer, vouchers, sender_pattern=settings.sms_sender_pattern
    )
    sweeper = ExpirySweeper(
        registry,
        interval_s=settings.sweep_interval_s,
        max_age=timedelta(seconds=settings.session_expiry_s),
    )
    return VoucherEngine(
        registry=registry,
        vouchers=vouchers,
        device=device,
        issuer=issuer,
        matcher=matcher,
        sweeper=sweeper,
        keepalive_s=settings.device_keepalive_s,
    )


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------
def get_engine(request: Request) -> VoucherEngine:
    """Engine built by the lifespan; 503 if startup has not completed."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Voucher engine not initialized")
    return engine

"""
VoucherIssuer tests: ensure-ready, single bounded retry with the same
credentials, and the accepted credential-collision risk.
"""
from __future__ import annotations

import asyncio
import random

import pytest

from backend.hotspot.connection import DeviceConnectionManager, DeviceState
from backend.hotspot.errors import DeviceCommandError, DeviceUnavailableError
from backend.hotspot.issuer import CREDENTIAL_ALPHABET, VoucherIssuer, generate_credentials
from backend.hotspot.routeros import HOTSPOT_USER_ADD
from backend.tests.fake_router import FakeRouter


def _issuer(router: FakeRouter, rng: random.Random | None = None) -> tuple[VoucherIssuer, DeviceConnectionManager]:
    device = DeviceConnectionManager(router.factory, reconnect_delay_s=0.05)
    return VoucherIssuer(device, rng=rng), device


def test_generate_credentials_shape() -> None:
    username, password = generate_credentials(random.Random(1))
    assert username.startswith("SD-") and len(username) == 8
    assert len(password) == 6
    assert set(username[3:] + password) <= set(CREDENTIAL_ALPHABET)


def test_generate_credentials_custom_lengths() -> None:
    username, password = generate_credentials(random.Random(1), prefix="WIFI-", username_length=8, password_length=10)
    assert username.startswith("WIFI-") and len(username) == 13
    assert len(password) == 10


class TestIssue:
    @pytest.mark.asyncio
    async def test_creates_hotspot_user_with_profile(self, router: FakeRouter) -> None:
        issuer, device = _issuer(router)

        voucher = await issuer.issue("1Heure")

        assert device.state is DeviceState.ready
        assert router.users == [
            {"name": voucher.username, "password": voucher.password, "profile": "1Heure"}
        ]

    @pytest.mark.asyncio
    async def test_device_unavailable_creates_nothing(self, router: FakeRouter) -> None:
        router.connect_failures = 1
        issuer, _ = _issuer(router)

        with pytest.raises(DeviceUnavailableError):
            await issuer.issue("1Heure")
        assert router.commands == []

    @pytest.mark.asyncio
    async def test_command_failure_retries_once_with_same_credentials(self, router: FakeRouter) -> None:
        issuer, device = _issuer(router)
        router.write_failures = 1

        voucher = await issuer.issue("5Heures")

        assert len(router.commands) == 2
        (path1, args1), (path2, args2) = router.commands
        assert path1 == path2 == HOTSPOT_USER_ADD
        assert args1 == args2 == {"name": voucher.username, "password": voucher.password, "profile": "5Heures"}
        # the retry went through a fresh connection
        assert router.connects == 2
        assert router.connections[0].closed
        assert device.state is DeviceState.ready

    @pytest.mark.asyncio
    async def test_second_failure_propagates(self, router: FakeRouter) -> None:
        issuer, _ = _issuer(router)
        router.write_failures = 2

        with pytest.raises(DeviceCommandError):
            await issuer.issue("1Heure")

        assert len(router.commands) == 2
        assert router.users == []

    @pytest.mark.asyncio
    async def test_dead_socket_reconnects_and_retries(self, router: FakeRouter) -> None:
        """Connection looked READY but died silently: one reconnect, one retry, voucher issued."""
        issuer, device = _issuer(router)
        await device.ensure_ready()
        router.write_failures = 1
        router.drop_on_write = True

        voucher = await issuer.issue("24Heures")

        assert router.users[-1]["name"] == voucher.username
        assert router.connects == 2
        # the reconnect scheduled by the error callback finds the device READY and does nothing
        await asyncio.sleep(0.2)
        assert router.connects == 2
        assert device.state is DeviceState.ready

    @pytest.mark.asyncio
    async def test_reconnect_failure_during_retry_propagates(self, router: FakeRouter) -> None:
        issuer, device = _issuer(router)
        await device.ensure_ready()
        router.write_failures = 1
        router.connect_failures = 1

        with pytest.raises(DeviceUnavailableError):
            await issuer.issue("1Heure")

        assert len(router.commands) == 1
        assert router.users == []

    @pytest.mark.asyncio
    async def test_duplicate_credentials_are_not_detected(self, router: FakeRouter) -> None:
        """
        Credentials are random and unchecked. Two generators in the same state
        produce the same username and both are sent to the controller; only the
        controller's own duplicate check could stop the second one.
        """
        issuer_a, _ = _issuer(router, rng=random.Random(42))
        issuer_b, _ = _issuer(router, rng=random.Random(42))

        first = await issuer_a.issue("1Heure")
        second = await issuer_b.issue("1Heure")

        assert first == second
        assert [u["name"] for u in router.users] == [first.username, first.username]

"""
DeviceConnectionManager tests: connect state machine, in-flight guard,
transport error callback and the scheduled reconnect.

The FakeRouter factory runs in a worker thread exactly like the RouterOS one,
so the error callback crosses threads the same way it does in production.
"""
from __future__ import annotations

import asyncio

import pytest

from backend.hotspot.connection import DeviceConnectionManager, DeviceState
from backend.hotspot.errors import DeviceCommandError, DeviceUnavailableError
from backend.hotspot.routeros import IDENTITY_PRINT
from backend.tests.fake_router import FakeRouter

RECONNECT_DELAY = 0.05


def _manager(router: FakeRouter) -> DeviceConnectionManager:
    return DeviceConnectionManager(router.factory, reconnect_delay_s=RECONNECT_DELAY)


async def _settle() -> None:
    """Let call_soon_threadsafe callbacks from worker threads run."""
    for _ in range(3):
        await asyncio.sleep(0)


class TestEnsureReady:
    @pytest.mark.asyncio
    async def test_initial_state_is_disconnected(self, router: FakeRouter) -> None:
        manager = _manager(router)
        assert manager.state is DeviceState.disconnected
        assert router.connects == 0

    @pytest.mark.asyncio
    async def test_connects_once_then_stays_ready(self, router: FakeRouter) -> None:
        manager = _manager(router)

        await manager.ensure_ready()
        await manager.ensure_ready()

        assert manager.state is DeviceState.ready
        assert router.connects == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_attempt(self) -> None:
        router = FakeRouter(connect_delay_s=0.05)
        manager = _manager(router)

        await asyncio.gather(*(manager.ensure_ready() for _ in range(10)))

        assert router.connects == 1
        assert manager.state is DeviceState.ready

    @pytest.mark.asyncio
    async def test_failed_connect_raises_and_returns_to_disconnected(self, router: FakeRouter) -> None:
        router.connect_failures = 1
        manager = _manager(router)

        with pytest.raises(DeviceUnavailableError):
            await manager.ensure_ready()
        assert manager.state is DeviceState.disconnected

        await manager.ensure_ready()
        assert manager.state is DeviceState.ready
        assert router.connects == 2

    @pytest.mark.asyncio
    async def test_concurrent_callers_all_see_shared_failure(self) -> None:
        router = FakeRouter(connect_delay_s=0.05)
        router.connect_failures = 1
        manager = _manager(router)

        results = await asyncio.gather(
            *(manager.ensure_ready() for _ in range(5)), return_exceptions=True
        )

        assert all(isinstance(r, DeviceUnavailableError) for r in results)
        assert router.connects == 1

    @pytest.mark.asyncio
    async def test_unexpected_factory_error_is_reported_as_unavailable(self) -> None:
        def broken_factory(on_error):
            raise OSError("no route to host")

        manager = DeviceConnectionManager(broken_factory)
        with pytest.raises(DeviceUnavailableError, match="no route to host"):
            await manager.ensure_ready()
        assert manager.state is DeviceState.disconnected


class TestWriteCommand:
    @pytest.mark.asyncio
    async def test_write_requires_ready(self, router: FakeRouter) -> None:
        manager = _manager(router)
        with pytest.raises(DeviceUnavailableError):
            await manager.write_command(IDENTITY_PRINT, {})
        assert router.commands == []

    @pytest.mark.asyncio
    async def test_write_failure_is_not_retried(self, router: FakeRouter) -> None:
        manager = _manager(router)
        await manager.ensure_ready()
        router.write_failures = 1

        with pytest.raises(DeviceCommandError):
            await manager.write_command(IDENTITY_PRINT, {})
        assert len(router.commands) == 1

    @pytest.mark.asyncio
    async def test_force_disconnect_closes_without_reconnect(self, router: FakeRouter) -> None:
        manager = _manager(router)
        await manager.ensure_ready()
        first = router.current

        await manager.force_disconnect()

        assert first.closed
        assert manager.state is DeviceState.disconnected
        assert not manager.reconnect_scheduled
        await asyncio.sleep(RECONNECT_DELAY * 3)
        assert router.connects == 1


class TestTransportErrors:
    @pytest.mark.asyncio
    async def test_error_callback_closes_and_schedules_one_reconnect(self, router: FakeRouter) -> None:
        manager = _manager(router)
        await manager.ensure_ready()
        first = router.current

        await asyncio.to_thread(first.drop, ConnectionResetError("peer reset"))
        await _settle()

        assert first.closed
        assert manager.state is DeviceState.disconnected
        assert manager.reconnect_scheduled

        await asyncio.sleep(RECONNECT_DELAY * 4)
        assert manager.state is DeviceState.ready
        assert router.connects == 2
        assert not router.current.closed

    @pytest.mark.asyncio
    async def test_repeated_errors_schedule_a_single_reconnect(self, router: FakeRouter) -> None:
        manager = _manager(router)
        await manager.ensure_ready()
        first = router.current

        await asyncio.to_thread(first.drop, OSError("broken pipe"))
        await asyncio.to_thread(first.drop, OSError("broken pipe"))
        await _settle()

        await asyncio.sleep(RECONNECT_DELAY * 4)
        assert router.connects == 2

    @pytest.mark.asyncio
    async def test_error_from_stale_connection_is_ignored(self, router: FakeRouter) -> None:
        manager = _manager(router)
        await manager.ensure_ready()
        stale = router.current
        await manager.force_disconnect()
        await manager.ensure_ready()
        fresh = router.current

        await asyncio.to_thread(stale.drop, OSError("late error"))
        await _settle()

        assert manager.state is DeviceState.ready
        assert not fresh.closed
        assert not manager.reconnect_scheduled

    @pytest.mark.asyncio
    async def test_failed_scheduled_reconnect_is_not_repeated(self, router: FakeRouter) -> None:
        manager = _manager(router)
        await manager.ensure_ready()
        router.connect_failures = 1

        await asyncio.to_thread(router.current.drop, OSError("link down"))
        await _settle()
        await asyncio.sleep(RECONNECT_DELAY * 6)

        assert manager.state is DeviceState.disconnected
        assert router.connects == 2
        assert not manager.reconnect_scheduled

        # next request-driven call heals it
        await manager.ensure_ready()
        assert manager.state is DeviceState.ready

    @pytest.mark.asyncio
    async def test_keepalive_probe_detects_dead_socket(self, router: FakeRouter) -> None:
        manager = _manager(router)
        await manager.ensure_ready()
        router.write_failures = 1
        router.drop_on_write = True

        task = asyncio.create_task(manager.run_keepalive(0.01, IDENTITY_PRINT))
        try:
            await asyncio.sleep(RECONNECT_DELAY * 5)
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        assert (IDENTITY_PRINT, {}) in router.commands
        assert router.connects == 2
        assert manager.state is DeviceState.ready
        await manager.close()

    @pytest.mark.asyncio
    async def test_close_cancels_pending_reconnect(self, router: FakeRouter) -> None:
        manager = _manager(router)
        await manager.ensure_ready()

        await asyncio.to_thread(router.current.drop, OSError("gone"))
        await _settle()
        await manager.close()
        await asyncio.sleep(RECONNECT_DELAY * 3)

        assert router.connects == 1
        assert manager.state is DeviceState.disconnected

    @pytest.mark.asyncio
    async def test_close_during_connect_does_not_leak_session(self) -> None:
        router = FakeRouter(connect_delay_s=0.05)
        manager = _manager(router)

        waiter = asyncio.create_task(manager.ensure_ready())
        await asyncio.sleep(0.01)
        await manager.close()

        with pytest.raises(DeviceUnavailableError):
            await waiter
        assert router.connects == 1
        assert router.current.closed is True
        assert manager.state is DeviceState.disconnected

        with pytest.raises(DeviceUnavailableError):
            await manager.ensure_ready()
        assert router.connects == 1

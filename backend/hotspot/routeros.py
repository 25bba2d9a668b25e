"""
routeros.py: blocking RouterOS API transport built on librouteros.

Every method here blocks on socket I/O and is meant to be called from a worker
thread (asyncio.to_thread). The DeviceConnectionManager is the only caller.

Error split:
  - TrapError / MultiTrapError: the router answered and refused the command
    (duplicate username, unknown profile...). The socket is still healthy.
  - ConnectionClosed / FatalError / other LibRouterosError / OSError: the
    transport itself is broken. The on_error callback registered at
    construction is invoked before raising, so the manager can self-heal.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from librouteros import connect
from librouteros.exceptions import LibRouterosError, MultiTrapError, TrapError

from backend.hotspot.errors import DeviceCommandError, DeviceUnavailableError

logger = logging.getLogger(__name__)

ErrorCallback = Callable[["RouterOSConnection", BaseException], None]

HOTSPOT_USER_ADD = "/ip/hotspot/user/add"
IDENTITY_PRINT = "/system/identity/print"


class RouterOSConnection:
    """One authenticated RouterOS API session."""

    def __init__(self, api: Any, on_error: Optional[ErrorCallback] = None) -> None:
        self._api = api
        self._on_error = on_error

    @classmethod
    def open(
        cls,
        host: str,
        username: str,
        password: str,
        port: int = 8728,
        timeout: float = 10.0,
        on_error: Optional[ErrorCallback] = None,
    ) -> "RouterOSConnection":
        """
        Connect and log in.

        Raises:
            DeviceUnavailableError: socket or login failure.
        """
        try:
            api = connect(
                host=host,
                username=username,
                password=password,
                port=port,
                timeout=timeout,
            )
        except (LibRouterosError, OSError) as exc:
            raise DeviceUnavailableError(f"Cannot connect to {host}:{port}: {exc}") from exc
        logger.info("RouterOS API session opened host=%s port=%d user=%s", host, port, username)
        return cls(api, on_error)

    def write(self, path: str, args: Dict[str, str]) -> List[Dict[str, Any]]:
        """
        Send one command and collect its replies.

        Raises:
            DeviceCommandError: command refused or transport failure.
        """
        try:
            return list(self._api(path, **args))
        except (TrapError, MultiTrapError) as exc:
            raise DeviceCommandError(f"{path} rejected: {exc}") from exc
        except (LibRouterosError, OSError) as exc:
            if self._on_error is not None:
                self._on_error(self, exc)
            raise DeviceCommandError(f"{path} failed: {exc}") from exc

    def close(self) -> None:
        try:
            self._api.close()
        except (LibRouterosError, OSError) as exc:
            logger.debug("Ignoring error while closing RouterOS session: %s", exc)

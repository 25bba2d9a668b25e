"""
issuer.py: creates hotspot users on the controller.

Retry policy: ensure-ready, then one bounded retry.
  1. ensure_ready()               (failure -> DeviceUnavailableError, nothing created)
  2. generate random credentials  (no purchase data involved)
  3. /ip/hotspot/user/add
  4. on failure: force_disconnect(), ensure_ready(), retry ONCE with the same
     credentials; a second failure propagates
  5. return the Voucher

Credential collisions are not detected. The username space is
len(alphabet) ** username_length per prefix (36**5, about 60M by default) and
the controller rejects duplicate names, which surfaces as a failed issuance.
"""
import logging
import random
import secrets
import string
from typing import Optional, Tuple

from backend.hotspot.connection import DeviceConnectionManager
from backend.hotspot.errors import DeviceError
from backend.hotspot.routeros import HOTSPOT_USER_ADD
from backend.models.voucher import Voucher

logger = logging.getLogger(__name__)

CREDENTIAL_ALPHABET = string.ascii_lowercase + string.digits


def generate_credentials(
    rng: random.Random,
    prefix: str = "SD-",
    username_length: int = 5,
    password_length: int = 6,
) -> Tuple[str, str]:
    """Random (username, password). Independent of any purchase data."""
    username = prefix + "".join(rng.choice(CREDENTIAL_ALPHABET) for _ in range(username_length))
    password = "".join(rng.choice(CREDENTIAL_ALPHABET) for _ in range(password_length))
    return username, password


class VoucherIssuer:
    def __init__(
        self,
        device: DeviceConnectionManager,
        username_prefix: str = "SD-",
        username_length: int = 5,
        password_length: int = 6,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._device = device
        self._prefix = username_prefix
        self._username_length = username_length
        self._password_length = password_length
        self._rng = rng or secrets.SystemRandom()

    async def _create_user(self, voucher: Voucher, profile_name: str) -> None:
        await self._device.write_command(
            HOTSPOT_USER_ADD,
            {"name": voucher.username, "password": voucher.password, "profile": profile_name},
        )

    async def issue(self, profile_name: str) -> Voucher:
        """
        Create one hotspot user with the given profile.

        Raises:
            DeviceUnavailableError: could not get a READY connection.
            DeviceCommandError: create-user failed twice.
        """
        await self._device.ensure_ready()

        username, password = generate_credentials(
            self._rng, self._prefix, self._username_length, self._password_length
        )
        voucher = Voucher(username=username, password=password)

        try:
            await self._create_user(voucher, profile_name)
        except DeviceError as exc:
            logger.warning(
                "Create-user failed, reconnecting for one retry username=%s profile=%s: %s",
                username, profile_name, exc,
            )
            await self._device.force_disconnect()
            await self._device.ensure_ready()
            await self._create_user(voucher, profile_name)
            logger.info("Create-user succeeded on retry username=%s", username)

        logger.info("Voucher created username=%s profile=%s", username, profile_name)
        return voucher

"""
errors.py: hotspot controller failure taxonomy.

DeviceUnavailableError: no READY connection and connecting failed.
DeviceCommandError:     a command write failed on a connection that was READY
                        (rejected by RouterOS, or the socket died mid-write).
"""


class DeviceError(Exception):
    """Base class for every hotspot controller failure."""


class DeviceUnavailableError(DeviceError):
    pass


class DeviceCommandError(DeviceError):
    pass

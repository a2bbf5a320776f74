from __future__ import annotations


class MoontrackError(Exception):
    pass


class ConfigurationError(MoontrackError):
    pass


class DeviceNotFoundError(MoontrackError):
    pass


class TransportFailureError(MoontrackError):
    pass

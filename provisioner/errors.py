from __future__ import annotations


class ProvisionError(RuntimeError):
    """Fatal provisioning failure. Surfaced immediately, never retried."""


class ProcessStartError(ProvisionError):
    """The supervised command could not be started."""


class StreamReadError(ProvisionError):
    """Reading the supervised process output failed."""


class UnsupportedPlatformError(ProvisionError):
    """Host OS or architecture has no runner release."""


__all__ = [
    "ProcessStartError",
    "ProvisionError",
    "StreamReadError",
    "UnsupportedPlatformError",
]

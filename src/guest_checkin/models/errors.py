from __future__ import annotations


class CheckinError(RuntimeError):
    """Base class for every failure surfaced by the check-in core."""

    kind = "error"


class ParseError(CheckinError):
    kind = "parse_error"


class MalformedPayloadError(ParseError):
    """Raised when decoded QR text is not a structured guest record."""

    kind = "malformed"


class IncompletePayloadError(ParseError):
    """Raised when a decoded record carries no guest identity."""

    kind = "incomplete_data"


class DeviceError(CheckinError):
    kind = "device_error"


class NoDeviceAvailableError(DeviceError):
    kind = "no_device_available"


class BindFailedError(DeviceError):
    kind = "bind_failed"


class UnbindFailedError(DeviceError):
    kind = "unbind_failed"


class DeviceLostError(DeviceError):
    """Raised when a bound camera stops delivering frames."""

    kind = "device_lost"


class StoreError(CheckinError):
    kind = "store_error"


class StoreQueryError(StoreError):
    kind = "query_failed"


class StoreInsertError(StoreError):
    kind = "insert_failed"

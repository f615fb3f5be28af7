from .errors import (
    BindFailedError,
    CheckinError,
    DeviceError,
    DeviceLostError,
    IncompletePayloadError,
    MalformedPayloadError,
    NoDeviceAvailableError,
    ParseError,
    StoreError,
    StoreInsertError,
    StoreQueryError,
    UnbindFailedError,
)
from .guest import (
    AdmissionOutcome,
    AdmissionResult,
    CameraSession,
    DeviceDescriptor,
    GuestRecord,
    ScanEvent,
    SourceChannel,
)

__all__ = [
    "AdmissionOutcome",
    "AdmissionResult",
    "BindFailedError",
    "CameraSession",
    "CheckinError",
    "DeviceDescriptor",
    "DeviceError",
    "DeviceLostError",
    "GuestRecord",
    "IncompletePayloadError",
    "MalformedPayloadError",
    "NoDeviceAvailableError",
    "ParseError",
    "ScanEvent",
    "SourceChannel",
    "StoreError",
    "StoreInsertError",
    "StoreQueryError",
    "UnbindFailedError",
]

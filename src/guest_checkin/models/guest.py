from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from guest_checkin.models.errors import StoreError


class SourceChannel(str, Enum):
    QR = "qr"
    MANUAL = "manual"


@dataclass(slots=True)
class GuestRecord:
    identity: str
    name: str = ""
    phone_number: str = ""
    party_size: int = 0
    table_label: str = ""
    source_channel: SourceChannel = SourceChannel.QR
    admitted_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return self.name.strip() or self.identity


@dataclass(frozen=True, slots=True)
class DeviceDescriptor:
    device_id: str
    label: str = ""

    def display_label(self) -> str:
        return self.label or f"Camera {self.device_id}"


@dataclass(frozen=True, slots=True)
class CameraSession:
    """An immutable binding of the controller to one capture device."""

    device_id: str
    available_devices: tuple[DeviceDescriptor, ...]
    active_index: int = 0
    handle: Any = field(default=None, compare=False)

    @property
    def device_count(self) -> int:
        return len(self.available_devices)

    def next_index(self) -> int:
        return (self.active_index + 1) % self.device_count


@dataclass(frozen=True, slots=True)
class ScanEvent:
    raw_text: str
    received_at: float


class AdmissionOutcome(str, Enum):
    ADMITTED = "admitted"
    DUPLICATE = "duplicate"
    STORE_ERROR = "store_error"


@dataclass(frozen=True, slots=True)
class AdmissionResult:
    outcome: AdmissionOutcome
    identity: str
    record: Optional[GuestRecord] = None
    error: Optional[StoreError] = None

    @classmethod
    def admitted(cls, record: GuestRecord) -> "AdmissionResult":
        return cls(AdmissionOutcome.ADMITTED, record.identity, record=record)

    @classmethod
    def duplicate(cls, identity: str) -> "AdmissionResult":
        return cls(AdmissionOutcome.DUPLICATE, identity)

    @classmethod
    def store_error(cls, identity: str, error: StoreError) -> "AdmissionResult":
        return cls(AdmissionOutcome.STORE_ERROR, identity, error=error)

from __future__ import annotations

import os
import tempfile
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import pytest

# Keep the settings module from writing into the real home directory.
os.environ.setdefault("APP_DATA_DIR", tempfile.mkdtemp(prefix="guest-checkin-tests-"))

from guest_checkin.models import DeviceDescriptor, GuestRecord, SourceChannel  # noqa: E402
from guest_checkin.services import AdmissionPipeline, GuestStore, ScanSessionController  # noqa: E402


class InMemoryGuestStore(GuestStore):
    """In-memory guest store that records every call."""

    def __init__(self) -> None:
        self.records: list[GuestRecord] = []
        self.find_calls: list[str] = []
        self.insert_calls: list[GuestRecord] = []
        self.find_error: Exception | None = None
        self.insert_error: Exception | None = None
        self.find_delay: float = 0.0
        self.find_gate: threading.Event | None = None
        self.find_started = threading.Event()

    def find_by_identity(self, identity: str) -> Optional[GuestRecord]:
        self.find_calls.append(identity)
        self.find_started.set()
        if self.find_gate is not None:
            self.find_gate.wait(timeout=5)
        if self.find_delay:
            time.sleep(self.find_delay)
        if self.find_error is not None:
            raise self.find_error
        for record in self.records:
            if record.identity == identity:
                return record
        return None

    def insert(self, record: GuestRecord) -> GuestRecord:
        self.insert_calls.append(record)
        if self.insert_error is not None:
            raise self.insert_error
        self.records.append(record)
        return record

    def list_all(self, source: SourceChannel | None = None) -> list[GuestRecord]:
        records = [record for record in self.records if source is None or record.source_channel is source]
        return sorted(records, key=lambda record: record.admitted_at, reverse=True)

    def count(self, identity: str) -> int:
        return sum(1 for record in self.records if record.identity == identity)


@dataclass(eq=False)
class FakeHandle:
    device_id: str
    frame_callback: Callable[[str], None]
    on_error: Optional[Callable[[Exception], None]] = None


class FakeDecoder:
    """Decoder double; tests push payloads through the bound callbacks."""

    def __init__(self, device_ids: tuple[str, ...] = ("A",)) -> None:
        self.devices = [DeviceDescriptor(device_id=device_id, label=f"Camera {device_id}") for device_id in device_ids]
        self.list_calls = 0
        self.bound: list[str] = []
        self.unbound: list[str] = []
        self.handles: list[FakeHandle] = []
        self.list_error: Exception | None = None
        self.bind_error: Exception | None = None
        self.unbind_error: Exception | None = None
        self.bind_delay: float = 0.0

    @property
    def active(self) -> FakeHandle:
        return self.handles[-1]

    def list_devices(self) -> list[DeviceDescriptor]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return list(self.devices)

    def bind(self, device_id: str, frame_callback, *, on_error=None) -> FakeHandle:
        if self.bind_delay:
            time.sleep(self.bind_delay)
        if self.bind_error is not None:
            raise self.bind_error
        handle = FakeHandle(device_id=device_id, frame_callback=frame_callback, on_error=on_error)
        self.bound.append(device_id)
        self.handles.append(handle)
        return handle

    def unbind(self, handle: FakeHandle) -> None:
        self.unbound.append(handle.device_id)
        if self.unbind_error is not None:
            raise self.unbind_error


@dataclass
class FakeClock:
    now: float = 0.0

    def __call__(self) -> float:
        return self.now


@dataclass
class EventRecorder:
    admitted: list[GuestRecord] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)
    states: list[Any] = field(default_factory=list)
    cleared: int = 0

    def _on_error(self, kind: str, message: str) -> None:
        self.errors.append((kind, message))

    def _on_cleared(self) -> None:
        self.cleared += 1

    def callbacks(self) -> dict[str, Callable[..., None]]:
        return {
            "on_admitted": self.admitted.append,
            "on_duplicate": self.duplicates.append,
            "on_error": self._on_error,
            "on_camera_state_changed": self.states.append,
            "on_status_cleared": self._on_cleared,
        }

    @property
    def error_kinds(self) -> list[str]:
        return [kind for kind, _ in self.errors]


@pytest.fixture
def store() -> InMemoryGuestStore:
    return InMemoryGuestStore()


@pytest.fixture
def decoder() -> FakeDecoder:
    return FakeDecoder()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def events() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def make_controller(store, decoder, clock, events):
    def _make(**overrides: Any) -> ScanSessionController:
        options: dict[str, Any] = {
            "cooldown_seconds": 0.05,
            "io_timeout_seconds": 2.0,
            "clock": clock,
        }
        options.update(events.callbacks())
        options.update(overrides)
        target_decoder = options.pop("decoder", decoder)
        pipeline = options.pop("pipeline", None) or AdmissionPipeline(store, timeout_seconds=2.0)
        return ScanSessionController(target_decoder, pipeline, **options)

    return _make

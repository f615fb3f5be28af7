from __future__ import annotations

import threading
from types import SimpleNamespace

import pytest

from guest_checkin.models import BindFailedError, DeviceLostError, UnbindFailedError
from guest_checkin.services import CameraBinding, CameraDecoder
from guest_checkin.services import qr_scanner
from guest_checkin.services.qr_scanner import _decode_symbol_data


class FakeCapture:
    def __init__(self, index: int, opened: bool, frames: list | None = None) -> None:
        self.index = index
        self.opened = opened
        self.frames = list(frames or [])
        self.released = False

    def isOpened(self) -> bool:  # noqa: N802 - OpenCV naming
        return self.opened

    def read(self):
        if self.frames:
            return True, self.frames.pop(0)
        return False, None

    def release(self) -> None:
        self.released = True


def _fake_modules(available: set[int], frames: list | None = None):
    captures: list[FakeCapture] = []

    def video_capture(index, backend=None):
        capture = FakeCapture(index, index in available, frames)
        captures.append(capture)
        return capture

    cv2_module = SimpleNamespace(CAP_ANY=0, VideoCapture=video_capture, flip=lambda frame, _axis: frame)

    def read_barcodes(frame, **_kwargs):
        return [SimpleNamespace(valid=True, error=None, text=frame, bytes=b"")]

    zxing_module = SimpleNamespace(
        read_barcodes=read_barcodes,
        BarcodeFormat=SimpleNamespace(QRCode="QRCode"),
        TextMode=SimpleNamespace(HRI="HRI"),
    )
    return cv2_module, zxing_module, captures


@pytest.fixture
def patch_modules(monkeypatch):
    def _install(available: set[int], frames: list | None = None):
        cv2_module, zxing_module, captures = _fake_modules(available, frames)
        monkeypatch.setattr(CameraDecoder, "_load_modules", staticmethod(lambda: (cv2_module, zxing_module)))
        return captures

    return _install


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(b"  abc \n", "abc"), ("Café", "Café"), (b"\xffok", "ok"), (b"", "")],
)
def test_decode_symbol_data(raw, expected):
    assert _decode_symbol_data(raw) == expected


def test_list_devices_probes_indexes(patch_modules):
    captures = patch_modules({0, 2})

    devices = CameraDecoder(probe_limit=3).list_devices()

    assert [device.device_id for device in devices] == ["0", "2"]
    assert devices[0].label == "Camera 0"
    assert all(capture.released for capture in captures)


def test_bind_delivers_decoded_payloads(patch_modules):
    patch_modules({0}, frames=['{"identity": "abc"}'])
    received: list[str] = []
    delivered = threading.Event()

    def on_payload(payload: str) -> None:
        received.append(payload)
        delivered.set()

    decoder = CameraDecoder(scan_interval=0.01)
    binding = decoder.bind("0", on_payload)

    assert delivered.wait(timeout=2)
    decoder.unbind(binding)
    assert received == ['{"identity": "abc"}']
    assert not binding.is_running
    assert binding.capture.released


def test_bind_rejects_unknown_or_closed_devices(patch_modules):
    patch_modules(set())
    decoder = CameraDecoder()

    with pytest.raises(BindFailedError):
        decoder.bind("front", lambda _payload: None)
    with pytest.raises(BindFailedError):
        decoder.bind("0", lambda _payload: None)


def test_device_lost_after_repeated_failed_reads(patch_modules, monkeypatch):
    monkeypatch.setattr(qr_scanner, "MAX_FAILED_READS", 3)
    patch_modules({0})
    errors: list[Exception] = []
    reported = threading.Event()

    def on_error(exc: Exception) -> None:
        errors.append(exc)
        reported.set()

    decoder = CameraDecoder(scan_interval=0.01)
    binding = decoder.bind("0", lambda _payload: None, on_error=on_error)

    assert reported.wait(timeout=2)
    assert isinstance(errors[0], DeviceLostError)
    decoder.unbind(binding)


def test_unbind_reports_stuck_thread(monkeypatch):
    monkeypatch.setattr(qr_scanner, "UNBIND_JOIN_SECONDS", 0.01)
    release = threading.Event()
    thread = threading.Thread(target=release.wait, daemon=True)
    thread.start()
    binding = CameraBinding(device_id="0", capture=None, thread=thread)

    try:
        with pytest.raises(UnbindFailedError):
            CameraDecoder().unbind(binding)
    finally:
        release.set()

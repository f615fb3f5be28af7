from __future__ import annotations

import logging
import threading
import unicodedata
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from guest_checkin.models import (
    BindFailedError,
    DeviceDescriptor,
    DeviceLostError,
    NoDeviceAvailableError,
    UnbindFailedError,
)

logger = logging.getLogger(__name__)

SCAN_INTERVAL_SECONDS = 0.1
MAX_FAILED_READS = 50
UNBIND_JOIN_SECONDS = 1.5
DEFAULT_PROBE_LIMIT = 4


def _decode_symbol_data(raw: bytes | str) -> str:
    if not raw:
        return ""

    if isinstance(raw, str):
        decoded = raw
    else:
        try:
            decoded = raw.decode("utf-8")
        except UnicodeDecodeError:
            decoded = raw.decode("utf-8", errors="ignore")

    normalized = unicodedata.normalize("NFC", decoded)
    return normalized.strip()


@dataclass(eq=False)
class CameraBinding:
    """Handle for one open capture device and its decode thread."""

    device_id: str
    capture: Any
    stop_event: threading.Event = field(default_factory=threading.Event)
    thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self.thread is not None and self.thread.is_alive()


class CameraDecoder:
    """Camera-backed QR decoder built on OpenCV capture and zxing-cpp.

    Devices are OpenCV capture indexes, probed once per ``list_devices``
    call. Each binding runs its own daemon thread that reads frames, decodes
    QR symbols, and hands every decoded text to the frame callback. Callbacks
    run on that thread; consumers marshal them onto their own loop.
    """

    def __init__(
        self,
        *,
        probe_limit: int = DEFAULT_PROBE_LIMIT,
        scan_interval: float = SCAN_INTERVAL_SECONDS,
        mirror: bool = True,
    ) -> None:
        self._probe_limit = probe_limit
        self._scan_interval = scan_interval
        self._mirror = mirror
        self._lock = threading.Lock()

    def list_devices(self) -> list[DeviceDescriptor]:
        cv2_module, _ = self._load_modules()

        devices: list[DeviceDescriptor] = []
        with self._lock:
            for index in range(self._probe_limit):
                capture = self._open_capture(cv2_module, index)
                if capture is None:
                    continue
                with suppress(Exception):
                    capture.release()
                devices.append(DeviceDescriptor(device_id=str(index), label=f"Camera {index}"))

        logger.debug("Discovered %d camera(s)", len(devices))
        return devices

    def bind(
        self,
        device_id: str,
        frame_callback: Callable[[str], None],
        *,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> CameraBinding:
        cv2_module, zxing_module = self._load_modules()

        try:
            index = int(device_id)
        except ValueError as exc:
            raise BindFailedError(f"Unknown camera id {device_id!r}.") from exc

        with self._lock:
            capture = self._open_capture(cv2_module, index)
        if capture is None:
            raise BindFailedError(
                "Unable to access the camera. Check that it is connected and not used by another app."
            )

        binding = CameraBinding(device_id=device_id, capture=capture)

        def _runner() -> None:
            self._run_loop(binding, frame_callback, on_error, cv2_module, zxing_module)

        binding.thread = threading.Thread(target=_runner, name=f"qr-camera-{device_id}", daemon=True)
        binding.thread.start()
        logger.info("Bound camera %s", device_id)
        return binding

    def unbind(self, binding: CameraBinding) -> None:
        binding.stop_event.set()
        thread = binding.thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=UNBIND_JOIN_SECONDS)
            if thread.is_alive():
                raise UnbindFailedError(f"Camera {binding.device_id} did not stop in time.")
        logger.info("Released camera %s", binding.device_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _load_modules() -> tuple[Any, Any]:
        try:
            import cv2  # type: ignore[import-not-found]
            import zxingcpp  # type: ignore[import-not-found]
        except ImportError as exc:
            raise NoDeviceAvailableError(
                "Missing QR scanner dependencies. Install OpenCV (cv2) and zxing-cpp to enable scanning."
            ) from exc
        return cv2, zxingcpp

    def _run_loop(
        self,
        binding: CameraBinding,
        frame_callback: Callable[[str], None],
        on_error: Optional[Callable[[Exception], None]],
        cv2_module,
        zxing_module,
    ) -> None:
        capture = binding.capture
        failed_reads = 0

        try:
            while not binding.stop_event.is_set():
                ok, frame = capture.read()
                if not ok:
                    failed_reads += 1
                    if failed_reads >= MAX_FAILED_READS:
                        if on_error:
                            on_error(DeviceLostError(f"Camera {binding.device_id} stopped delivering frames."))
                        return
                    binding.stop_event.wait(self._scan_interval)
                    continue
                failed_reads = 0

                if self._mirror:
                    with suppress(Exception):
                        frame = cv2_module.flip(frame, 1)

                for payload in self._decode_frame(zxing_module, frame):
                    try:
                        frame_callback(payload)
                    except Exception:  # pragma: no cover - guard callback faults
                        logger.exception("QR payload callback failed")

                binding.stop_event.wait(self._scan_interval)
        finally:
            with suppress(Exception):
                capture.release()

    @staticmethod
    def _decode_frame(zxing_module, frame) -> list[str]:
        try:
            decoded = zxing_module.read_barcodes(
                frame,
                formats=zxing_module.BarcodeFormat.QRCode,
                try_rotate=True,
                try_downscale=True,
                text_mode=zxing_module.TextMode.HRI,
            )
        except Exception:
            logger.debug("QR decode failed for frame", exc_info=True)
            return []

        payloads: list[str] = []
        for obj in decoded or []:
            if hasattr(obj, "valid") and not obj.valid:
                continue
            if getattr(obj, "error", None):
                continue

            payload = _decode_symbol_data(getattr(obj, "text", ""))
            if not payload:
                payload_bytes = getattr(obj, "bytes", b"") or b""
                if not isinstance(payload_bytes, (bytes, bytearray)):
                    payload_bytes = bytes(payload_bytes)
                payload = _decode_symbol_data(bytes(payload_bytes))
            if payload:
                payloads.append(payload)
        return payloads

    @staticmethod
    def _open_capture(cv2_module, index: int):
        backend_preferences = [getattr(cv2_module, "CAP_DSHOW", None), getattr(cv2_module, "CAP_ANY", None)]

        for backend in backend_preferences:
            if backend is None:
                capture = cv2_module.VideoCapture(index)
            else:
                capture = cv2_module.VideoCapture(index, backend)

            if capture.isOpened():
                return capture

            with suppress(Exception):
                capture.release()

        return None

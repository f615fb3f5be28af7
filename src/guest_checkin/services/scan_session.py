from __future__ import annotations

import asyncio
import functools
import logging
import time
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Sequence

from guest_checkin.models import (
    AdmissionOutcome,
    AdmissionResult,
    BindFailedError,
    CameraSession,
    CheckinError,
    DeviceDescriptor,
    DeviceError,
    DeviceLostError,
    GuestRecord,
    MalformedPayloadError,
    NoDeviceAvailableError,
    ParseError,
    ScanEvent,
    StoreQueryError,
    UnbindFailedError,
)
from guest_checkin.services.admission import AdmissionPipeline
from guest_checkin.services.payload_parser import parse_payload

logger = logging.getLogger(__name__)

THROTTLE_SECONDS = 1.0
COOLDOWN_SECONDS = 2.5
IO_TIMEOUT_SECONDS = 10.0


class ScanState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    SWITCHING = "switching"
    STOPPING = "stopping"
    ERROR = "error"


class Decoder(Protocol):
    def list_devices(self) -> Sequence[DeviceDescriptor]: ...

    def bind(
        self,
        device_id: str,
        frame_callback: Callable[[str], None],
        *,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> Any: ...

    def unbind(self, handle: Any) -> None: ...


class ScanSessionController:
    """Owns the camera binding and turns decoded QR text into admissions.

    All methods run on one asyncio loop. Blocking decoder calls go to the
    default executor, and decoder threads hand payloads back with
    ``call_soon_threadsafe``, so controller state is only touched from the
    loop.

    Scans are gated twice: callbacks closer than ``throttle_seconds`` to the
    last accepted one are dropped unparsed, and while an admission is in
    flight every callback is dropped. After an admission or a duplicate the
    gate stays closed for ``cooldown_seconds``; after a parse or store error
    it reopens at once and only the error message lingers.
    """

    def __init__(
        self,
        decoder: Decoder,
        pipeline: AdmissionPipeline,
        *,
        throttle_seconds: float = THROTTLE_SECONDS,
        cooldown_seconds: float = COOLDOWN_SECONDS,
        io_timeout_seconds: float = IO_TIMEOUT_SECONDS,
        preferred_device_id: str | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_admitted: Optional[Callable[[GuestRecord], None]] = None,
        on_duplicate: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[str, str], None]] = None,
        on_camera_state_changed: Optional[Callable[[ScanState], None]] = None,
        on_status_cleared: Optional[Callable[[], None]] = None,
    ) -> None:
        self._decoder = decoder
        self._pipeline = pipeline
        self._throttle = throttle_seconds
        self._cooldown = cooldown_seconds
        self._io_timeout = io_timeout_seconds
        self._clock = clock

        self._on_admitted = on_admitted
        self._on_duplicate = on_duplicate
        self._on_error = on_error
        self._on_camera_state_changed = on_camera_state_changed
        self._on_status_cleared = on_status_cleared

        self._loop: asyncio.AbstractEventLoop | None = None
        self._state = ScanState.IDLE
        self._session: CameraSession | None = None
        self._selected_device_id = preferred_device_id
        self._binding_token: object | None = None

        self._in_flight = False
        self._last_accepted_at: float | None = None
        self._generation = 0
        self._pipeline_task: asyncio.Task | None = None
        self._cooldown_handle: asyncio.TimerHandle | None = None
        self._status_handle: asyncio.TimerHandle | None = None

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def session(self) -> CameraSession | None:
        return self._session

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def selected_device_id(self) -> str | None:
        return self._selected_device_id

    @property
    def can_switch(self) -> bool:
        return (
            self._state is ScanState.ACTIVE
            and self._session is not None
            and self._session.device_count > 1
        )

    # ------------------------------------------------------------------
    # Camera lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> bool:
        if self._state not in (ScanState.IDLE, ScanState.ERROR):
            logger.debug("Ignoring start while %s", self._state.value)
            return False

        self._loop = asyncio.get_running_loop()
        self._set_state(ScanState.STARTING)

        try:
            devices = tuple(await self._call_device(self._decoder.list_devices))
        except asyncio.TimeoutError:
            return self._fail(NoDeviceAvailableError("Listing cameras timed out."))
        except NoDeviceAvailableError as exc:
            return self._fail(exc)
        except Exception as exc:
            return self._fail(NoDeviceAvailableError(f"Listing cameras failed: {exc}"))

        if not devices:
            return self._fail(NoDeviceAvailableError("No camera found."))

        index = self._initial_index(devices)
        session = CameraSession(
            device_id=devices[index].device_id,
            available_devices=devices,
            active_index=index,
        )
        return await self._activate(session)

    async def stop(self) -> bool:
        if self._state is ScanState.ERROR:
            self._set_state(ScanState.IDLE)
            return True
        if self._state is not ScanState.ACTIVE:
            logger.debug("Ignoring stop while %s", self._state.value)
            return False

        self._set_state(ScanState.STOPPING)
        self._invalidate_runs()
        await self._release_session()
        self._set_state(ScanState.IDLE)
        return True

    async def switch_device(self) -> bool:
        if not self.can_switch:
            logger.info("Camera switch refused while %s", self._state.value)
            return False

        current = self._session
        if current is None:
            return False
        self._set_state(ScanState.SWITCHING)
        await self._release_session()

        next_index = current.next_index()
        next_session = replace(
            current,
            device_id=current.available_devices[next_index].device_id,
            active_index=next_index,
            handle=None,
        )
        return await self._activate(next_session)

    async def handle_device_error(self, error: Exception) -> None:
        """Move to ``ERROR`` after a device failure, releasing any binding."""

        if self._state not in (ScanState.ACTIVE, ScanState.SWITCHING):
            logger.debug("Ignoring device error while %s: %s", self._state.value, error)
            return
        if not isinstance(error, DeviceError):
            error = DeviceLostError(str(error) or "Camera failed.")
        await self._release_session()
        self._fail(error)

    # ------------------------------------------------------------------
    # Scan handling
    # ------------------------------------------------------------------
    def handle_decoded(self, raw_text: str) -> bool:
        """Accept or drop one decoder callback; returns True when accepted."""

        if self._state is not ScanState.ACTIVE:
            return False
        if self._in_flight:
            return False

        now = self._clock()
        if self._last_accepted_at is not None and (now - self._last_accepted_at) < self._throttle:
            return False

        self._last_accepted_at = now
        self._in_flight = True
        event = ScanEvent(raw_text=raw_text, received_at=now)
        loop = self._loop or asyncio.get_running_loop()
        self._pipeline_task = loop.create_task(self._run_pipeline(event, self._generation))
        return True

    async def wait_for_pipeline(self) -> AdmissionResult | None:
        task = self._pipeline_task
        if task is None:
            return None
        return await task

    async def _run_pipeline(self, event: ScanEvent, generation: int) -> AdmissionResult | None:
        try:
            record = parse_payload(event.raw_text)
        except ParseError as exc:
            logger.info("Rejected scan: %s", exc)
            self._finish_with_error(generation, exc)
            return None
        except Exception as exc:
            logger.exception("Parsing scanned text crashed")
            self._finish_with_error(generation, MalformedPayloadError(f"QR code could not be read: {exc}"))
            return None

        try:
            result = await self._pipeline.admit(record)
        except Exception as exc:
            logger.exception("Admission of %s crashed", record.identity)
            self._finish_with_error(generation, StoreQueryError(str(exc) or "Admission failed."))
            return None

        if generation != self._generation:
            logger.info("Discarding %s result for %s; scan session ended", result.outcome.value, result.identity)
            self._in_flight = False
            return result

        if result.outcome is AdmissionOutcome.ADMITTED:
            self._emit(self._on_admitted, result.record)
            self._hold_for_cooldown(generation)
        elif result.outcome is AdmissionOutcome.DUPLICATE:
            self._emit(self._on_duplicate, result.identity)
            self._hold_for_cooldown(generation)
        else:
            self._finish_with_error(generation, result.error or StoreQueryError("Admission failed."))
        return result

    def _hold_for_cooldown(self, generation: int) -> None:
        self._cancel_timer("_cooldown_handle")
        self._cooldown_handle = self._loop_or_running().call_later(
            self._cooldown, self._end_cooldown, generation
        )

    def _end_cooldown(self, generation: int) -> None:
        self._cooldown_handle = None
        if generation != self._generation:
            return
        self._in_flight = False
        self._emit(self._on_status_cleared)

    def _finish_with_error(self, generation: int, error: CheckinError) -> None:
        if generation != self._generation:
            self._in_flight = False
            return
        self._in_flight = False
        self._emit(self._on_error, error.kind, str(error))
        self._cancel_timer("_status_handle")
        self._status_handle = self._loop_or_running().call_later(
            self._cooldown, self._clear_status, generation
        )

    def _clear_status(self, generation: int) -> None:
        self._status_handle = None
        if generation == self._generation:
            self._emit(self._on_status_cleared)

    def _invalidate_runs(self) -> None:
        self._generation += 1
        self._last_accepted_at = None
        self._cancel_timer("_cooldown_handle")
        self._cancel_timer("_status_handle")
        # A run still in flight keeps the gate closed until it lands.
        task = self._pipeline_task
        self._in_flight = task is not None and not task.done()

    # ------------------------------------------------------------------
    # Device helpers
    # ------------------------------------------------------------------
    def _initial_index(self, devices: Sequence[DeviceDescriptor]) -> int:
        if self._selected_device_id is not None:
            for index, device in enumerate(devices):
                if device.device_id == self._selected_device_id:
                    return index
        return 0

    async def _activate(self, session: CameraSession) -> bool:
        try:
            handle, token = await self._bind(session.device_id)
        except DeviceError as exc:
            return self._fail(exc)

        self._session = replace(session, handle=handle)
        self._binding_token = token
        self._selected_device_id = session.device_id
        self._set_state(ScanState.ACTIVE)
        logger.info(
            "Scanning with %s (%d of %d)",
            session.available_devices[session.active_index].display_label(),
            session.active_index + 1,
            session.device_count,
        )
        return True

    async def _bind(self, device_id: str) -> tuple[Any, object]:
        loop = self._loop_or_running()
        token = object()

        def _frame_callback(raw_text: str) -> None:
            self._post(loop, self._deliver_payload, token, raw_text)

        def _error_callback(error: Exception) -> None:
            self._post(loop, self._deliver_device_error, token, error)

        future = loop.run_in_executor(
            None,
            functools.partial(self._decoder.bind, device_id, _frame_callback, on_error=_error_callback),
        )
        try:
            handle = await asyncio.wait_for(asyncio.shield(future), self._io_timeout)
        except asyncio.TimeoutError:
            future.add_done_callback(self._release_late_binding)
            raise BindFailedError(f"Opening camera {device_id} timed out.") from None
        except asyncio.CancelledError:
            future.add_done_callback(self._release_late_binding)
            raise
        except BindFailedError:
            raise
        except Exception as exc:
            raise BindFailedError(f"Opening camera {device_id} failed: {exc}") from exc
        return handle, token

    def _release_late_binding(self, future: asyncio.Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        handle = future.result()
        logger.warning("Releasing camera binding that completed after its timeout")
        loop = self._loop_or_running()
        release = loop.run_in_executor(None, self._decoder.unbind, handle)
        release.add_done_callback(self._log_release_failure)

    @staticmethod
    def _log_release_failure(future: asyncio.Future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.warning("Releasing late camera binding failed: %s", future.exception())

    async def _release_session(self) -> None:
        session, self._session = self._session, None
        self._binding_token = None
        if session is None or session.handle is None:
            return

        try:
            await self._call_device(self._decoder.unbind, session.handle)
        except asyncio.TimeoutError:
            self._warn(UnbindFailedError(f"Releasing camera {session.device_id} timed out."))
        except UnbindFailedError as exc:
            self._warn(exc)
        except Exception as exc:
            self._warn(UnbindFailedError(f"Releasing camera {session.device_id} failed: {exc}"))

    async def _call_device(self, func, *args):
        loop = self._loop_or_running()
        return await asyncio.wait_for(loop.run_in_executor(None, func, *args), self._io_timeout)

    def _deliver_payload(self, token: object, raw_text: str) -> None:
        if token is self._binding_token:
            self.handle_decoded(raw_text)

    def _deliver_device_error(self, token: object, error: Exception) -> None:
        if token is not self._binding_token or self._state is not ScanState.ACTIVE:
            return
        self._loop_or_running().create_task(self.handle_device_error(error))

    @staticmethod
    def _post(loop: asyncio.AbstractEventLoop, callback, *args) -> None:
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Event loop already closed; the decoder thread is shutting down.
            logger.debug("Dropped decoder callback after loop shutdown")

    # ------------------------------------------------------------------
    # Event plumbing
    # ------------------------------------------------------------------
    def _set_state(self, state: ScanState) -> None:
        self._state = state
        logger.debug("Scan session state -> %s", state.value)
        self._emit(self._on_camera_state_changed, state)

    def _fail(self, error: CheckinError) -> bool:
        logger.error("Camera error (%s): %s", error.kind, error)
        self._invalidate_runs()
        self._session = None
        self._binding_token = None
        self._set_state(ScanState.ERROR)
        self._emit(self._on_error, error.kind, str(error))
        return False

    def _warn(self, error: CheckinError) -> None:
        logger.warning("%s", error)
        self._emit(self._on_error, error.kind, str(error))

    def _emit(self, callback: Optional[Callable[..., None]], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Scan event handler failed")

    def _cancel_timer(self, attribute: str) -> None:
        handle = getattr(self, attribute)
        if handle is not None:
            handle.cancel()
            setattr(self, attribute, None)

    def _loop_or_running(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable

from guest_checkin.models import (
    AdmissionResult,
    GuestRecord,
    SourceChannel,
    StoreError,
    StoreInsertError,
    StoreQueryError,
)
from guest_checkin.services.guest_store import GuestStore
from guest_checkin.utils import utc_now

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class AdmissionPipeline:
    """Check-then-insert admission of one scanned guest.

    The lookup and the insert are two separate store calls. Callers must not
    run two admissions for the same store concurrently; the scan controller's
    single-flight gate guarantees that for a single scanner.
    """

    def __init__(
        self,
        store: GuestStore,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._timeout = timeout_seconds
        self._clock = clock

    @property
    def store(self) -> GuestStore:
        return self._store

    async def admit(self, record: GuestRecord) -> AdmissionResult:
        identity = record.identity

        try:
            existing = await self._call(self._store.find_by_identity, identity)
        except StoreError as exc:
            return self._failed(identity, StoreQueryError(str(exc)))
        except asyncio.TimeoutError:
            return self._failed(identity, StoreQueryError("Guest lookup timed out."))

        if existing is not None:
            logger.info("Guest %s already admitted at %s", identity, existing.admitted_at)
            return AdmissionResult.duplicate(identity)

        candidate = replace(record, source_channel=SourceChannel.QR, admitted_at=self._clock())
        try:
            stored = await self._call(self._store.insert, candidate)
        except StoreError as exc:
            return self._failed(identity, StoreInsertError(str(exc)))
        except asyncio.TimeoutError:
            return self._failed(identity, StoreInsertError("Saving guest timed out."))

        logger.info("Admitted guest %s (%s)", identity, stored.display_name)
        return AdmissionResult.admitted(stored)

    async def _call(self, func, *args):
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self._timeout)

    @staticmethod
    def _failed(identity: str, error: StoreError) -> AdmissionResult:
        logger.warning("Admission of %s failed: %s", identity, error)
        return AdmissionResult.store_error(identity, error)

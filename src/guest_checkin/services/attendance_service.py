from __future__ import annotations

import csv
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Sequence

from guest_checkin.models import GuestRecord, SourceChannel
from guest_checkin.services.guest_store import GuestStore
from guest_checkin.utils import format_timestamp, utc_now

CSV_HEADERS: tuple[str, ...] = ("UUID", "Name", "Phone", "Guests", "Table", "Time")
DEFAULT_PAGE_SIZE = 5


def table_tier(table_label: str | None) -> str:
    label = (table_label or "").upper()
    if "VVIP" in label:
        return "VVIP"
    if "VIP" in label:
        return "VIP"
    return "standard"


@dataclass(frozen=True, slots=True)
class Page:
    items: tuple[GuestRecord, ...]
    page: int
    total_pages: int

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


class AttendanceService:
    """Read side of the guest list plus manual check-in and export."""

    def __init__(
        self,
        store: GuestStore,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self._store = store
        self._page_size = page_size
        self._clock = clock

    def record_manual_guest(
        self,
        name: str,
        phone_number: str = "",
        party_size: int = 0,
        table_label: str = "",
        *,
        identity: str | None = None,
    ) -> GuestRecord:
        cleaned_name = name.strip()
        if not cleaned_name:
            raise ValueError("Guest name is required for manual check-in.")

        record = GuestRecord(
            identity=(identity or "").strip() or uuid.uuid4().hex,
            name=cleaned_name,
            phone_number=phone_number.strip(),
            party_size=max(int(party_size), 0),
            table_label=table_label.strip(),
            source_channel=SourceChannel.MANUAL,
            admitted_at=self._clock(),
        )
        return self._store.insert(record)

    def list_guests(self, source: SourceChannel | None = None) -> list[GuestRecord]:
        return self._store.list_all(source)

    def split_by_source(self) -> tuple[list[GuestRecord], list[GuestRecord]]:
        guests = self._store.list_all()
        qr_guests = [guest for guest in guests if guest.source_channel is SourceChannel.QR]
        manual_guests = [guest for guest in guests if guest.source_channel is SourceChannel.MANUAL]
        return qr_guests, manual_guests

    def paginate(self, records: Sequence[GuestRecord], page: int = 1) -> Page:
        total_pages = max(math.ceil(len(records) / self._page_size), 1)
        current = min(max(int(page), 1), total_pages)
        start = (current - 1) * self._page_size
        return Page(
            items=tuple(records[start : start + self._page_size]),
            page=current,
            total_pages=total_pages,
        )

    def export_csv(self, destination: Path) -> int:
        guests = self._store.list_all()
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)

        with destination.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle)
            writer.writerow(CSV_HEADERS)
            for guest in guests:
                writer.writerow(
                    [
                        guest.identity,
                        guest.name,
                        guest.phone_number,
                        guest.party_size,
                        guest.table_label,
                        format_timestamp(guest.admitted_at),
                    ]
                )
        return len(guests)

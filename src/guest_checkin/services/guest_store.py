from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from typing import Optional

from guest_checkin.data import Database
from guest_checkin.models import GuestRecord, SourceChannel, StoreInsertError, StoreQueryError
from guest_checkin.utils import coerce_datetime, utc_now


class GuestStore(ABC):
    """Keyed persistence for admitted guests.

    ``find_by_identity`` returns ``None`` when no guest of any source holds the
    identity; a failing lookup raises :class:`StoreQueryError` instead, so the
    two are never confused.
    """

    @abstractmethod
    def find_by_identity(self, identity: str) -> Optional[GuestRecord]:
        raise NotImplementedError

    @abstractmethod
    def insert(self, record: GuestRecord) -> GuestRecord:
        raise NotImplementedError

    @abstractmethod
    def list_all(self, source: SourceChannel | None = None) -> list[GuestRecord]:
        raise NotImplementedError


class SqliteGuestStore(GuestStore):
    def __init__(self, database: Database) -> None:
        self._database = database

    def initialize(self) -> None:
        self._database.initialize()

    def find_by_identity(self, identity: str) -> Optional[GuestRecord]:
        try:
            with self._database.connect() as connection:
                row = connection.execute(
                    """
                    SELECT identity, name, phone_number, party_size,
                           table_label, source_channel, admitted_at
                      FROM guest_attendance
                     WHERE identity = ?
                  ORDER BY id ASC
                     LIMIT 1
                    """,
                    (identity.strip(),),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreQueryError(f"Guest lookup failed: {exc}") from exc

        return self._row_to_record(row) if row else None

    def insert(self, record: GuestRecord) -> GuestRecord:
        admitted_at = coerce_datetime(record.admitted_at or utc_now())
        try:
            with self._database.connect() as connection:
                connection.execute(
                    """
                    INSERT INTO guest_attendance (
                        identity, name, phone_number, party_size,
                        table_label, source_channel, admitted_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.identity.strip(),
                        record.name.strip(),
                        record.phone_number.strip(),
                        int(record.party_size),
                        record.table_label.strip(),
                        SourceChannel(record.source_channel).value,
                        admitted_at.isoformat(),
                    ),
                )
        except sqlite3.Error as exc:
            raise StoreInsertError(f"Saving guest failed: {exc}") from exc

        record.admitted_at = admitted_at
        return record

    def list_all(self, source: SourceChannel | None = None) -> list[GuestRecord]:
        query_parts = [
            "SELECT identity, name, phone_number, party_size,",
            "       table_label, source_channel, admitted_at",
            "  FROM guest_attendance",
        ]
        params: list[str] = []
        if source is not None:
            query_parts.append(" WHERE source_channel = ?")
            params.append(SourceChannel(source).value)
        query_parts.append(" ORDER BY admitted_at DESC, id DESC")

        try:
            with self._database.connect() as connection:
                rows = connection.execute("\n".join(query_parts), tuple(params)).fetchall()
        except sqlite3.Error as exc:
            raise StoreQueryError(f"Listing guests failed: {exc}") from exc

        return [self._row_to_record(row) for row in rows]

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> GuestRecord:
        return GuestRecord(
            identity=row["identity"],
            name=row["name"] or "",
            phone_number=row["phone_number"] or "",
            party_size=int(row["party_size"] or 0),
            table_label=row["table_label"] or "",
            source_channel=SourceChannel(row["source_channel"]),
            admitted_at=coerce_datetime(row["admitted_at"]),
        )

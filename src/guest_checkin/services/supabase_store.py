from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from guest_checkin.models import GuestRecord, SourceChannel, StoreInsertError, StoreQueryError
from guest_checkin.services.guest_store import GuestStore
from guest_checkin.utils import coerce_datetime, utc_now

logger = logging.getLogger(__name__)

# PostgREST answers a single-object request that matched no rows with 406 and
# this error code.
NOT_FOUND_CODE = "PGRST116"
SINGLE_OBJECT_MEDIA_TYPE = "application/vnd.pgrst.object+json"


class SupabaseGuestStore(GuestStore):
    """Guest store backed by a Supabase table through its REST endpoint.

    Rows use the column layout of the hosted ``guest_attendance`` table:
    ``uuid, name, phone, guests, table, time, source``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        table: str = "guest_attendance",
        session: requests.Session | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._endpoint = f"{base_url.rstrip('/')}/rest/v1/{table}"
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )

    def find_by_identity(self, identity: str) -> Optional[GuestRecord]:
        params = {
            "select": "*",
            "uuid": f"eq.{identity.strip()}",
            "limit": "1",
        }
        try:
            response = self._session.get(
                self._endpoint,
                params=params,
                headers={"Accept": SINGLE_OBJECT_MEDIA_TYPE},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise StoreQueryError(f"Guest lookup failed: {exc}") from exc

        if response.status_code == 406 and self._error_code(response) == NOT_FOUND_CODE:
            return None
        if not response.ok:
            raise StoreQueryError(
                f"Guest lookup failed ({response.status_code}): {self._error_message(response)}"
            )

        return self._row_to_record(response.json())

    def insert(self, record: GuestRecord) -> GuestRecord:
        admitted_at = coerce_datetime(record.admitted_at or utc_now())
        row = {
            "uuid": record.identity.strip(),
            "name": record.name.strip(),
            "phone": record.phone_number.strip(),
            "guests": int(record.party_size),
            "table": record.table_label.strip(),
            "time": admitted_at.isoformat(),
            "source": SourceChannel(record.source_channel).value,
        }
        try:
            response = self._session.post(
                self._endpoint,
                json=[row],
                headers={"Prefer": "return=minimal"},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise StoreInsertError(f"Saving guest failed: {exc}") from exc

        if not response.ok:
            raise StoreInsertError(
                f"Saving guest failed ({response.status_code}): {self._error_message(response)}"
            )

        record.admitted_at = admitted_at
        return record

    def list_all(self, source: SourceChannel | None = None) -> list[GuestRecord]:
        params = {"select": "*", "order": "time.desc"}
        if source is not None:
            params["source"] = f"eq.{SourceChannel(source).value}"
        try:
            response = self._session.get(self._endpoint, params=params, timeout=self._timeout)
        except requests.RequestException as exc:
            raise StoreQueryError(f"Listing guests failed: {exc}") from exc

        if not response.ok:
            raise StoreQueryError(
                f"Listing guests failed ({response.status_code}): {self._error_message(response)}"
            )

        records: list[GuestRecord] = []
        for row in response.json() or []:
            try:
                records.append(self._row_to_record(row))
            except ValueError:
                logger.warning("Skipping unreadable guest row: %r", row)
        return records

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _json_body(response: requests.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    def _error_code(self, response: requests.Response) -> str | None:
        return self._json_body(response).get("code")

    def _error_message(self, response: requests.Response) -> str:
        body = self._json_body(response)
        return str(body.get("message") or response.text or response.reason or "unknown error")

    @staticmethod
    def _row_to_record(row: dict[str, Any]) -> GuestRecord:
        source = row.get("source") or SourceChannel.QR.value
        try:
            admitted_at = coerce_datetime(row["time"]) if row.get("time") else None
        except ValueError:
            # Rows written by the web scanner carry locale-formatted times.
            admitted_at = None
        try:
            party_size = int(row.get("guests") or 0)
        except (TypeError, ValueError):
            party_size = 0
        return GuestRecord(
            identity=str(row.get("uuid") or f"{row.get('name') or ''}-{row.get('phone') or ''}"),
            name=row.get("name") or "",
            phone_number=row.get("phone") or "",
            party_size=party_size,
            table_label=row.get("table") or "",
            source_channel=SourceChannel(source),
            admitted_at=admitted_at,
        )

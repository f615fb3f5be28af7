from __future__ import annotations

import json
from typing import Any

from guest_checkin.models import (
    GuestRecord,
    IncompletePayloadError,
    MalformedPayloadError,
    SourceChannel,
)

IDENTITY_KEYS: tuple[str, ...] = ("identity", "uuid")


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def _party_size(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        return 0
    try:
        size = int(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    return size if size >= 0 else 0


def _identity(payload: dict[str, Any]) -> str:
    for key in IDENTITY_KEYS:
        identity = _text(payload.get(key))
        if identity:
            return identity
    return ""


def parse_payload(raw_text: str) -> GuestRecord:
    """Turn decoded QR text into a guest record.

    The invitation encodes a JSON object with a required ``identity`` (older
    invitations use ``uuid``) and optional ``name``, ``phone``, ``guests`` and
    ``table`` keys. Optional fields are taken as issued; only a missing
    identity rejects the scan.
    """

    try:
        payload = json.loads(raw_text)
    except (TypeError, ValueError, RecursionError) as exc:
        raise MalformedPayloadError("QR code is not a valid invitation.") from exc

    if not isinstance(payload, dict):
        raise MalformedPayloadError("QR code is not a valid invitation.")

    identity = _identity(payload)
    if not identity:
        raise IncompletePayloadError("QR code is missing the guest identity.")

    return GuestRecord(
        identity=identity,
        name=_text(payload.get("name")),
        phone_number=_text(payload.get("phone")),
        party_size=_party_size(payload.get("guests")),
        table_label=_text(payload.get("table")),
        source_channel=SourceChannel.QR,
    )

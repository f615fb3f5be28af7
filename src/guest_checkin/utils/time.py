from __future__ import annotations

from datetime import datetime, timezone

DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def coerce_datetime(value: datetime | str) -> datetime:
    """Parse a stored timestamp into an aware UTC datetime."""

    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str):
        candidate = value.strip().replace(" ", "T", 1)
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(candidate)
        except ValueError:
            for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M:%S.%f"):
                try:
                    moment = datetime.strptime(value.strip(), fmt)
                    break
                except ValueError:
                    continue
            else:
                raise ValueError(f"Unsupported datetime value: {value!r}")
    else:
        raise ValueError(f"Unsupported datetime value: {value!r}")

    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def format_timestamp(value: datetime | None) -> str:
    if value is None:
        return ""
    return value.astimezone().strftime(DISPLAY_FORMAT)

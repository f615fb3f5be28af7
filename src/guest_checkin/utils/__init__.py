from .time import coerce_datetime, format_timestamp, utc_now

__all__ = ["coerce_datetime", "format_timestamp", "utc_now"]

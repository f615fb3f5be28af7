from datetime import datetime, timedelta, timezone

import pytest

from guest_checkin.utils import coerce_datetime, format_timestamp, utc_now


def test_utc_now_is_aware():
    assert utc_now().tzinfo is not None


@pytest.mark.parametrize(
    "value",
    ["2026-10-19T18:30:00Z", "2026-10-19 18:30:00", "2026-10-19T18:30:00+00:00", "2026-10-19 18:30:00.000000"],
)
def test_coerce_datetime_parses_stored_formats(value):
    assert coerce_datetime(value) == datetime(2026, 10, 19, 18, 30, tzinfo=timezone.utc)


def test_coerce_datetime_converts_offsets_to_utc():
    moment = datetime(2026, 10, 20, 1, 30, tzinfo=timezone(timedelta(hours=7)))

    assert coerce_datetime(moment) == datetime(2026, 10, 19, 18, 30, tzinfo=timezone.utc)
    assert coerce_datetime(moment).tzinfo == timezone.utc


def test_coerce_datetime_rejects_garbage():
    with pytest.raises(ValueError):
        coerce_datetime("yesterday")
    with pytest.raises(ValueError):
        coerce_datetime(12345)


def test_format_timestamp():
    assert format_timestamp(None) == ""
    assert len(format_timestamp(utc_now())) == len("2026-10-19 18:30:00")

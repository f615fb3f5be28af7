import json

import pytest

from guest_checkin.models import IncompletePayloadError, MalformedPayloadError, SourceChannel
from guest_checkin.services import parse_payload


def test_parse_full_invitation():
    record = parse_payload(json.dumps({"identity": "abc", "name": "Rina", "phone": "0812", "guests": 2, "table": "VIP-3"}))

    assert record.identity == "abc"
    assert record.name == "Rina"
    assert record.phone_number == "0812"
    assert record.party_size == 2
    assert record.table_label == "VIP-3"
    assert record.source_channel is SourceChannel.QR
    assert record.admitted_at is None


def test_optional_fields_default_to_empty():
    record = parse_payload('{"identity": "abc"}')

    assert record.name == ""
    assert record.phone_number == ""
    assert record.party_size == 0
    assert record.table_label == ""


def test_legacy_uuid_key_is_accepted():
    record = parse_payload('{"uuid": "7f3c", "name": "Budi"}')

    assert record.identity == "7f3c"


@pytest.mark.parametrize("raw", ["not json", "{identity: abc}", "", "[1, 2]", "42", '"abc"'])
def test_malformed_payloads(raw):
    with pytest.raises(MalformedPayloadError) as excinfo:
        parse_payload(raw)

    assert excinfo.value.kind == "malformed"


@pytest.mark.parametrize("raw", ["{}", '{"name": "Rina"}', '{"identity": null}', '{"identity": "   "}'])
def test_missing_identity_is_incomplete(raw):
    with pytest.raises(IncompletePayloadError) as excinfo:
        parse_payload(raw)

    assert excinfo.value.kind == "incomplete_data"


@pytest.mark.parametrize(
    ("guests", "expected"),
    [("3", 3), ("many", 0), (-2, 0), (True, 0), (None, 0), (4.0, 4)],
)
def test_party_size_is_coerced_permissively(guests, expected):
    record = parse_payload(json.dumps({"identity": "abc", "guests": guests}))

    assert record.party_size == expected


def test_non_string_fields_are_kept_as_text():
    record = parse_payload(json.dumps({"identity": 1234, "phone": 62812, "table": 7, "name": None}))

    assert record.identity == "1234"
    assert record.phone_number == "62812"
    assert record.table_label == "7"
    assert record.name == ""


def test_overflowing_party_size_is_zero():
    record = parse_payload('{"identity": "abc", "guests": 1e999}')

    assert record.identity == "abc"
    assert record.party_size == 0


def test_deeply_nested_text_is_malformed():
    with pytest.raises(MalformedPayloadError):
        parse_payload("[" * 100000)

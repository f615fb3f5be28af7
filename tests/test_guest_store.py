from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from guest_checkin.data import Database
from guest_checkin.models import GuestRecord, SourceChannel, StoreInsertError, StoreQueryError
from guest_checkin.services import SqliteGuestStore


def _store(tmp_path: Path) -> SqliteGuestStore:
    store = SqliteGuestStore(Database(tmp_path / "guests.db"))
    store.initialize()
    return store


def test_find_missing_identity_returns_none(tmp_path):
    assert _store(tmp_path).find_by_identity("nobody") is None


def test_insert_then_find(tmp_path):
    store = _store(tmp_path)
    stored = store.insert(GuestRecord(identity=" abc ", name=" Rina ", party_size=2, table_label="VIP-3"))

    found = store.find_by_identity("abc")

    assert stored.admitted_at is not None
    assert found is not None
    assert found.identity == "abc"
    assert found.name == "Rina"
    assert found.party_size == 2
    assert found.table_label == "VIP-3"
    assert found.admitted_at == stored.admitted_at


def test_store_allows_repeated_identities(tmp_path):
    store = _store(tmp_path)
    store.insert(GuestRecord(identity="abc"))
    store.insert(GuestRecord(identity="abc"))

    assert len(store.list_all()) == 2


def test_list_all_orders_newest_first_and_filters(tmp_path):
    store = _store(tmp_path)
    base = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    store.insert(GuestRecord(identity="early", admitted_at=base))
    store.insert(GuestRecord(identity="walk-in", source_channel=SourceChannel.MANUAL, admitted_at=base + timedelta(minutes=5)))
    store.insert(GuestRecord(identity="late", admitted_at=base + timedelta(minutes=10)))

    assert [guest.identity for guest in store.list_all()] == ["late", "walk-in", "early"]
    assert [guest.identity for guest in store.list_all(SourceChannel.QR)] == ["late", "early"]
    assert [guest.identity for guest in store.list_all(SourceChannel.MANUAL)] == ["walk-in"]


def test_uninitialized_database_raises_store_errors(tmp_path):
    store = SqliteGuestStore(Database(tmp_path / "empty.db"))

    with pytest.raises(StoreQueryError):
        store.find_by_identity("abc")
    with pytest.raises(StoreInsertError):
        store.insert(GuestRecord(identity="abc"))
    with pytest.raises(StoreQueryError):
        store.list_all()


def test_find_matches_any_source(tmp_path):
    store = _store(tmp_path)
    store.insert(GuestRecord(identity="abc", name="Rina", source_channel=SourceChannel.MANUAL))

    found = store.find_by_identity("abc")

    assert found is not None
    assert found.source_channel is SourceChannel.MANUAL

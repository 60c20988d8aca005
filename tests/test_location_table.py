"""Unit tests for the transmission location table."""

from __future__ import annotations

import json

import pytest

from datastore.location_table import GroundTruthConflictError, LocationTable
from models.records import ConsensusLocation


def _consensus(region: int = 1, site_id: int = 42, lat: float = 52.52, lon: float = 13.405) -> ConsensusLocation:
    return ConsensusLocation(region=region, site_id=site_id, lat=lat, lon=lon)


def test_upsert_assigns_ids_and_keeps_them_on_replace() -> None:
    table = LocationTable(name="locations")

    first = table.upsert_consensus(_consensus(site_id=1))
    second = table.upsert_consensus(_consensus(site_id=2))
    replaced = table.upsert_consensus(_consensus(site_id=1, lat=52.53))

    assert (first.id, second.id) == (1, 2)
    assert replaced.id == 1
    assert replaced.lat == 52.53
    assert replaced.ground_truth is False


def test_get_item_returns_deep_copy() -> None:
    table = LocationTable(name="locations")
    table.upsert_consensus(_consensus())

    fetched = table.get_item(1, 42)
    assert fetched is not None

    # Mutating the fetched instance should not affect stored data
    fetched.lat = 0.0
    fetched_again = table.get_item(1, 42)
    assert fetched_again is not None
    assert fetched_again.lat == 52.52


def test_get_item_returns_none_when_missing() -> None:
    table = LocationTable(name="locations")

    assert table.get_item(1, 999) is None


def test_consensus_never_overwrites_ground_truth() -> None:
    table = LocationTable(name="locations")
    table.put_ground_truth(1, 42, 52.5, 13.4)

    with pytest.raises(GroundTruthConflictError) as excinfo:
        table.upsert_consensus(_consensus())

    assert (excinfo.value.region, excinfo.value.site_id) == (1, 42)
    stored = table.get_item(1, 42)
    assert stored is not None
    assert (stored.lat, stored.lon, stored.ground_truth) == (52.5, 13.4, True)


def test_ground_truth_replaces_consensus_and_keeps_id() -> None:
    table = LocationTable(name="locations")
    inferred = table.upsert_consensus(_consensus())

    truth = table.put_ground_truth(1, 42, 52.5, 13.4)

    assert truth.id == inferred.id
    assert truth.ground_truth is True


def test_scan_filters_by_region_in_key_order() -> None:
    table = LocationTable(name="locations")
    table.upsert_consensus(_consensus(region=2, site_id=5))
    table.upsert_consensus(_consensus(region=1, site_id=9))
    table.upsert_consensus(_consensus(region=1, site_id=3))

    assert [(item.region, item.site_id) for item in table.scan()] == [(1, 3), (1, 9), (2, 5)]
    assert [item.site_id for item in table.scan(region=1)] == [3, 9]
    assert table.scan(region=7) == []


def test_persists_to_disk_and_reloads(tmp_path) -> None:
    path = tmp_path / "locations.json"
    table = LocationTable(name="locations", persistence_path=path)
    table.upsert_consensus(_consensus(site_id=1))
    table.put_ground_truth(1, 2, 50.0, 10.0)

    payload = json.loads(path.read_text())
    assert set(payload) == {"1/1", "1/2"}
    assert payload["1/2"]["ground_truth"] is True

    reloaded = LocationTable(name="locations", persistence_path=path)
    assert reloaded.get_item(1, 1) == table.get_item(1, 1)
    assert reloaded.get_item(1, 2).ground_truth is True  # type: ignore[union-attr]

    # new rows continue the surrogate sequence
    assert reloaded.upsert_consensus(_consensus(site_id=3)).id == 3


def test_unreadable_file_starts_empty(tmp_path) -> None:
    path = tmp_path / "locations.json"
    path.write_text("{not json")

    table = LocationTable(name="locations", persistence_path=path)

    assert table.scan() == []

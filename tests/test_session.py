"""
Session snapshot tests: the full pipeline from raw records to payload.
"""

import pytest

from conftest import make_record, ts
from trackreplay.config import EngineConfig
from trackreplay.models import EntityMetadata
from trackreplay.session import (
    build_session_payload,
    build_session_snapshot,
    empty_snapshot,
    window_timestamps,
)


def test_snapshot_from_square_laps(square_records):
    snapshot = build_session_snapshot(233, square_records)

    assert snapshot.session_id == 233
    assert snapshot.frame_count == 8
    assert snapshot.entity_ids == ["1", "44"]
    assert len(snapshot.enhanced) == 16
    assert len(snapshot.track) == 4
    assert snapshot.track.closed
    assert snapshot.bounds == {"min_x": -400.0, "max_x": 700.0, "min_y": -400.0, "max_y": 700.0}
    assert snapshot.entity_filter is None


def test_entity_filter_restricts_everything(square_records):
    snapshot = build_session_snapshot(233, square_records, entity_ids=(e for e in ["44"]))

    assert snapshot.entity_ids == ["44"]
    assert snapshot.entity_filter == frozenset({"44"})
    assert {s.entity_id for s in snapshot.samples} == {"44"}


def test_malformed_records_are_dropped(square_records):
    records = square_records + [make_record("1", 0, 0, 20), make_record("44", None, 5, 21)]

    snapshot = build_session_snapshot(233, records)

    assert snapshot.frame_count == 8


def test_empty_session():
    snapshot = build_session_snapshot(1, [])

    assert snapshot.is_empty
    assert snapshot.frame_count == 0
    assert snapshot.track.points == ()
    assert snapshot.bounds == {"min_x": 0, "max_x": 1000, "min_y": 0, "max_y": 1000}
    assert build_session_payload(snapshot)["stats"] == {}


def test_config_drives_track_reconstruction(square_records):
    config = EngineConfig(track_grid_size=500)

    snapshot = build_session_snapshot(233, square_records, config)

    assert len(snapshot.track) == 1
    assert snapshot.track.grid_size == 500


def test_last_known_position(square_records):
    snapshot = build_session_snapshot(233, square_records)

    assert snapshot.last_known("1", ts(3.5)).timestamp == ts(3)
    assert snapshot.last_known("1", ts(-1)) is None
    assert snapshot.last_known("99", ts(3)) is None


def test_metadata_fallback(square_records):
    metadata = {"1": EntityMetadata("1", "Max Verstappen", "#0600EF", "Red Bull")}

    snapshot = build_session_snapshot(233, square_records, metadata=metadata)

    assert snapshot.metadata_for("1").display_name == "Max Verstappen"
    fallback = snapshot.metadata_for("44").to_dict()
    assert fallback["display_name"] == "Entity #44"
    assert fallback["color_token"] == "#ffffff"


def test_payload_stats_follow_window(square_records):
    snapshot = build_session_snapshot(233, square_records)

    payload = build_session_payload(snapshot, 0, 50)

    assert payload["frame_count"] == 8
    assert len(payload["timestamps"]) == 8
    assert [e["entity_id"] for e in payload["entities"]] == ["1", "44"]
    assert payload["track"]["closed"] is True
    stats = payload["stats"]["1"]
    assert stats["sample_count"] == 4
    assert stats["total_distance"] == pytest.approx(300.0)
    assert stats["max_speed"] == pytest.approx(100.0)


def test_window_timestamps(square_records):
    timeline = build_session_snapshot(233, square_records).timeline

    assert window_timestamps(timeline, 0, 50) == (ts(0), ts(3))
    assert window_timestamps(timeline, 0, 100) == (ts(0), ts(7))
    assert window_timestamps(timeline, 50, 50) == (None, None)
    assert window_timestamps(empty_snapshot().timeline) == (None, None)


def test_last_known_uses_precomputed_entity_timestamps(square_records):
    snapshot = build_session_snapshot(233, square_records[:-2])

    assert snapshot.entity_timestamps["1"] == tuple(ts(t) for t in range(7))
    assert snapshot.max_speed == pytest.approx(100.0)
    assert snapshot.last_known("44", ts(6.5)).timestamp == ts(6)
    assert snapshot.last_known("1", ts(-1)) is None
    assert snapshot.last_known("99", ts(3)) is None
    assert empty_snapshot().entity_timestamps == {}
    assert empty_snapshot().max_speed == 0.0

"""
Live ingestion tests: inserts, updates and deletes folded into a snapshot.
"""

import pytest

from conftest import make_record, ts
from trackreplay.live import find_sample, fold_event
from trackreplay.models import LiveEvent, LiveEventKind
from trackreplay.session import build_session_snapshot, empty_snapshot


@pytest.fixture
def snapshot(square_records):
    return build_session_snapshot(233, square_records)


def insert(record):
    return LiveEvent(LiveEventKind.INSERT, record=record)


def test_insert_appends_frame_and_reuses_track(snapshot):
    updated = fold_event(snapshot, insert(make_record("1", 100, 100, 8, sample_id=17)))

    assert updated.frame_count == 9
    assert snapshot.frame_count == 8
    assert updated.track is snapshot.track
    latest = updated.by_entity["1"][-1]
    assert latest.timestamp == ts(8)
    assert latest.distance == pytest.approx(100.0)
    assert latest.speed == pytest.approx(100.0)
    assert updated.by_entity["44"] == snapshot.by_entity["44"]


def test_insert_in_new_cell_rebuilds_track(snapshot):
    updated = fold_event(snapshot, insert(make_record("44", 150, 150, 8)))

    assert len(updated.track) == 5
    assert len(snapshot.track) == 4


def test_update_replaces_same_identity(snapshot):
    event = LiveEvent(LiveEventKind.UPDATE, record=make_record("1", 150, 100, 1, sample_id=3))

    updated = fold_event(snapshot, event)

    assert updated.frame_count == 8
    moved = find_sample(updated.timeline, entity_id="1", timestamp=ts(1))
    assert (moved.x, moved.y) == (150.0, 100.0)
    assert updated.by_entity["1"][1].distance == pytest.approx(50.0)


def test_update_with_known_id_moves_sample(snapshot):
    event = LiveEvent(LiveEventKind.UPDATE, record=make_record("1", 100, 100, 10, sample_id=1))

    updated = fold_event(snapshot, event)

    assert updated.frame_count == 9
    assert updated.timeline.frame_at(0).entity_ids == ("44",)
    assert find_sample(updated.timeline, sample_id=1).timestamp == ts(10)


def test_delete_by_sample_id(snapshot):
    updated = fold_event(snapshot, LiveEvent(LiveEventKind.DELETE, sample_id=16))

    assert updated.frame_count == 8
    assert updated.timeline.frame_at(7).entity_ids == ("1",)
    assert len(updated.by_entity["44"]) == 7


def test_delete_by_identity_drops_empty_frame(snapshot):
    first = fold_event(snapshot, LiveEvent(LiveEventKind.DELETE, record=make_record("1", 1, 1, 7)))
    second = fold_event(first, LiveEvent(LiveEventKind.DELETE, record=make_record("44", 1, 1, 7)))

    assert first.frame_count == 8
    assert second.frame_count == 7
    assert second.timeline.timestamps[-1] == ts(6)


def test_ignored_events_return_same_snapshot(snapshot):
    assert fold_event(snapshot, insert(make_record("1", 0, 0, 9))) is snapshot
    assert fold_event(snapshot, insert({"entity_id": "1"})) is snapshot
    assert fold_event(snapshot, LiveEvent(LiveEventKind.DELETE, sample_id=999)) is snapshot


def test_entities_outside_filter_are_ignored(square_records):
    filtered = build_session_snapshot(233, square_records, entity_ids=["44"])

    assert fold_event(filtered, insert(make_record("1", 100, 100, 8))) is filtered
    assert fold_event(filtered, insert(make_record("44", 100, 100, 8))).frame_count == 9


def test_insert_into_empty_session():
    updated = fold_event(empty_snapshot(233), insert(make_record("16", 10, 10, 0)))

    assert updated.frame_count == 1
    assert updated.entity_ids == ["16"]
    assert updated.by_entity["16"][0].speed == 0.0


def test_unknown_kind_rejected(snapshot):
    with pytest.raises(ValueError):
        fold_event(snapshot, LiveEvent("TRUNCATE"))


def test_insert_refreshes_last_known_lookup(snapshot):
    updated = fold_event(snapshot, insert(make_record("44", 100, 100, 9)))

    assert updated.entity_timestamps["44"][-1] == ts(9)
    assert updated.last_known("44", ts(8.5)).timestamp == ts(7)
    assert updated.last_known("44", ts(10)).timestamp == ts(9)
    assert snapshot.last_known("44", ts(10)).timestamp == ts(7)

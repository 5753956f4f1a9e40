"""
Session engine tests: session selection, replay-driven outputs and live
updates seen through the stateful front of the pipeline.
"""

import asyncio

import pytest

from conftest import make_record, ts
from trackreplay.config import EngineConfig
from trackreplay.data_loading import InMemorySampleSource
from trackreplay.engine import SessionEngine
from trackreplay.models import EntityMetadata, LiveEvent, LiveEventKind, ReplayStatus
from trackreplay.replay import ReplayTimer


@pytest.fixture
def source(square_records):
    gappy = [make_record("1", t * 10 + 10, 5, t) for t in range(4)] + \
        [make_record("44", t * 10 + 10, 50, t) for t in range(2)]
    metadata = {"1": EntityMetadata("1", "Max Verstappen", "#0600EF", "Red Bull")}
    return InMemorySampleSource({233: square_records, 9: gappy}, {233: metadata})


@pytest.fixture
def engine(source):
    engine = SessionEngine(source, EngineConfig(trail_length=3))
    engine.select_session(233)
    return engine


def test_select_session_loads_paused_at_first_frame(engine):
    state = engine.replay_state()

    assert engine.session_id == 233
    assert state.status is ReplayStatus.PAUSED
    assert state.current_frame_index == 0
    assert state.frame_count == 8
    assert engine.current_timestamp() == ts(0)
    assert engine.snapshot.metadata_for("1").team_name == "Red Bull"


def test_unknown_session_raises(source):
    engine = SessionEngine(source)

    with pytest.raises(KeyError):
        engine.select_session(404)


def test_positions_and_trails_follow_replay(engine):
    for _ in range(4):
        engine.step(1)

    positions = {p.sample.entity_id: p for p in engine.current_positions()}
    assert set(positions) == {"1", "44"}
    assert positions["1"].sample.timestamp == ts(4)
    assert positions["1"].in_current_frame
    trail = engine.trails()["1"]
    assert [s.timestamp for s in trail] == [ts(2), ts(3), ts(4)]


def test_seek_rebuilds_trails(engine):
    engine.seek(6)
    assert [s.timestamp for s in engine.trails()["44"]] == [ts(4), ts(5), ts(6)]

    engine.seek(1)
    assert [s.timestamp for s in engine.trails()["44"]] == [ts(0), ts(1)]


def test_missing_entity_keeps_last_known_position(source):
    engine = SessionEngine(source)
    engine.select_session(9)

    engine.seek(3)

    positions = {p.sample.entity_id: p for p in engine.current_positions()}
    assert positions["44"].sample.timestamp == ts(1)
    assert not positions["44"].in_current_frame
    assert positions["1"].in_current_frame


def test_entity_filter_keeps_replay_position(engine):
    engine.seek(5)

    engine.select_entities(["44"])

    assert engine.replay_state().current_frame_index == 5
    assert [p.sample.entity_id for p in engine.current_positions()] == ["44"]
    assert set(engine.trails()) == {"44"}
    assert engine.selected_entities == frozenset({"44"})


def test_entity_filter_notifies_once_at_kept_position(engine):
    engine.seek(5)
    views = []
    engine.on_frame(views.append)

    engine.select_entities(["44"])

    assert [(v.replay.current_frame_index, v.replay.status) for v in views] == [(5, ReplayStatus.PAUSED)]
    assert [p.sample.entity_id for p in views[0].positions] == ["44"]
    assert views[0].timestamp == ts(5)


def test_failed_entity_filter_leaves_engine_untouched(engine, source, monkeypatch):
    engine.seek(2)
    before = engine.snapshot

    def unavailable(session_id):
        raise KeyError(session_id)

    monkeypatch.setattr(source, "fetch_samples", unavailable)
    with pytest.raises(KeyError):
        engine.select_entities(["44"])

    assert engine.selected_entities is None
    assert engine.snapshot is before
    assert engine.replay_state().current_frame_index == 2


def test_failed_session_load_keeps_selection(engine):
    engine.select_entities(["1"])

    with pytest.raises(KeyError):
        engine.select_session(404, ["44"])

    assert engine.session_id == 233
    assert engine.selected_entities == frozenset({"1"})


def test_empty_entity_filter_stops_replay(engine):
    engine.play()

    engine.select_entities([])

    assert engine.replay_state().status is ReplayStatus.IDLE
    assert engine.snapshot.frame_count == 0
    assert engine.current_positions() == []
    assert engine.heatmap() == []


def test_listeners_receive_frame_views(engine):
    views = []
    remove = engine.on_frame(views.append)

    engine.step(1)
    engine.seek(4)
    remove()
    engine.step(1)

    assert [view.replay.current_frame_index for view in views] == [1, 4]
    assert views[0].timestamp == ts(1)


def test_frame_view_serialises(engine):
    engine.heatmap_mode = True
    engine.step(1)

    payload = engine.frame_view().to_dict()

    assert payload["session_id"] == 233
    assert payload["replay"]["status"] == "paused"
    assert payload["timestamp"] == ts(1).isoformat()
    assert payload["trails"]["1"] == [[100.0, 100.0], [200.0, 100.0]]
    assert len(payload["positions"]) == 2
    assert payload["positions"][0]["speed_color"] == "hsl(0.0, 100%, 50%)"
    assert max(cell["normalized_intensity"] for cell in payload["heatmap"]) == 1.0


def test_heatmap_off_by_default(engine):
    assert engine.frame_view().heatmap is None


def test_heatmap_window_and_stats(engine):
    cells = engine.heatmap(0, 100)
    stats = engine.stats(0, 100)

    assert len(cells) == 4
    assert sum(cell.count for cell in cells) == 16
    assert stats["1"].total_distance == pytest.approx(700.0)
    assert stats["44"].avg_speed == pytest.approx(100.0)
    assert engine.heatmap(50, 50) == []


def test_live_insert_keeps_position_and_playback(engine):
    engine.seek(3)
    engine.play()

    engine.apply_live_event(LiveEvent(LiveEventKind.INSERT, record=make_record("1", 100, 100, 8)))

    state = engine.replay_state()
    assert state.frame_count == 9
    assert state.current_frame_index == 3
    assert state.status is ReplayStatus.PLAYING


def test_live_insert_notifies_once_without_rewinding(engine):
    engine.seek(5)
    engine.play()
    views = []
    engine.on_frame(views.append)

    engine.apply_live_event(LiveEvent(LiveEventKind.INSERT, record=make_record("1", 100, 100, 8)))

    assert [(v.replay.current_frame_index, v.replay.status) for v in views] == [(5, ReplayStatus.PLAYING)]
    assert views[0].replay.frame_count == 9
    assert views[0].timestamp == ts(5)


def test_live_insert_before_position_shifts_index(engine):
    engine.seek(5)
    views = []
    engine.on_frame(views.append)

    engine.apply_live_event(LiveEvent(LiveEventKind.INSERT, record=make_record("1", 150, 100, 2.5)))

    assert [v.replay.current_frame_index for v in views] == [6]
    assert engine.current_timestamp() == ts(5)


def test_trajectories_follow_selection_and_window(engine):
    engine.select_entities(["1"])

    trajectories = engine.trajectories(0, 50)

    assert list(trajectories) == ["1"]
    points = trajectories["1"].points
    assert [p.sample.timestamp for p in points] == [ts(0), ts(1), ts(2), ts(3)]
    assert points[1].vector_end == pytest.approx((200.0, 110.0))
    assert set(engine.trajectories(0, 100, entity_ids=["44"])) == {"44"}
    assert engine.trajectories(50, 50) == {}


def test_live_event_into_empty_session(source):
    engine = SessionEngine(source)

    engine.apply_live_event(LiveEvent(LiveEventKind.INSERT, record=make_record("1", 10, 10, 0)))

    assert engine.replay_state().status is ReplayStatus.PAUSED
    assert engine.replay_state().frame_count == 1


def test_timer_plays_to_the_end(engine):
    async def no_wait(delay):
        return None

    engine.timer = ReplayTimer(engine.scheduler, sleep=no_wait)
    seen = []
    engine.on_frame(lambda view: seen.append(view.replay.current_frame_index))

    async def main():
        engine.start_playback()
        while engine.timer.running:
            await asyncio.sleep(0)

    asyncio.run(main())

    state = engine.replay_state()
    assert state.status is ReplayStatus.PAUSED
    assert state.current_frame_index == 7
    assert seen[1:8] == [1, 2, 3, 4, 5, 6, 7]
    assert [s.timestamp for s in engine.trails()["1"]] == [ts(5), ts(6), ts(7)]


def test_close_drops_session(engine):
    engine.close()

    assert engine.session_id is None
    assert engine.replay_state().status is ReplayStatus.IDLE
    assert engine.current_timestamp() is None

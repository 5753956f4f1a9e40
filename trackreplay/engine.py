"""
Replay Engine for Circuit Position Replay

SessionEngine is the stateful front of the pipeline used by a consuming view.
It owns the current SessionSnapshot, the ReplayScheduler and its timer, and
the TrailWindower, and renders a FrameView for the current frame on demand
or whenever the replay moves.

Selecting a session or changing the entity filter stops playback and swaps
in a freshly built snapshot in one assignment; readers never see a mix of
old and new session data.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

import pandas as pd

from . import heatmap
from . import metrics
from . import trajectory
from . import utils
from .config import EngineConfig
from .data_loading import SampleSource
from .live import fold_event
from .models import EnhancedSample, EntityStats, EntityTrajectory, HeatmapCell, LiveEvent, ReplayState, TrackPath
from .replay import ReplayScheduler, ReplayTimer
from .session import SessionSnapshot, build_session_snapshot, empty_snapshot, window_timestamps
from .trail import TrailWindower

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentPosition:
    """Last known position of an entity at the current frame."""

    sample: EnhancedSample
    in_current_frame: bool
    color: str = ""

    def to_dict(self) -> Dict:
        payload = self.sample.to_dict()
        payload["in_current_frame"] = self.in_current_frame
        payload["speed_color"] = self.color
        return payload


@dataclass(frozen=True)
class FrameView:
    """Everything the renderer needs to draw one frame."""

    session_id: Optional[int]
    replay: ReplayState
    timestamp: Optional[pd.Timestamp]
    track: TrackPath
    positions: List[CurrentPosition] = field(default_factory=list)
    trails: Dict[str, List[EnhancedSample]] = field(default_factory=dict)
    heatmap: Optional[List[HeatmapCell]] = None

    def to_dict(self) -> Dict:
        return {
            "session_id": self.session_id,
            "replay": self.replay.to_dict(),
            "timestamp": self.timestamp.isoformat() if self.timestamp is not None else None,
            "track": self.track.to_dict(),
            "positions": [position.to_dict() for position in self.positions],
            "trails": {
                entity_id: [[s.x, s.y] for s in samples]
                for entity_id, samples in self.trails.items()
            },
            "heatmap": None if self.heatmap is None else [cell.to_dict() for cell in self.heatmap],
        }


class SessionEngine:
    """
    Pipeline owner for one consuming view.

    Args:
        source: Data-access collaborator.
        config: Engine configuration. Defaults to EngineConfig().
    """

    def __init__(self, source: SampleSource, config: Optional[EngineConfig] = None):
        self.source = source
        self.config = config or EngineConfig()
        self.scheduler = ReplayScheduler(base_interval=self.config.base_interval_s)
        self.timer = ReplayTimer(self.scheduler)
        self.heatmap_mode = False
        self.heatmap_window = (0.0, 100.0)
        self._snapshot = empty_snapshot()
        self._selected: Optional[frozenset] = None
        self._trails = TrailWindower(self._snapshot.timeline, (), self.config.trail_length)
        self._listeners: List[Callable[[FrameView], None]] = []
        self.scheduler.subscribe(self._on_replay_change)

    # ------------------------------------------------------------------
    # Session and filter selection
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def session_id(self) -> Optional[int]:
        return self._snapshot.session_id

    @property
    def selected_entities(self) -> Optional[frozenset]:
        return self._selected

    def select_session(self, session_id: int, entity_ids: Optional[Iterable[str]] = None) -> SessionSnapshot:
        """
        Load a session, replacing every derived structure at once.

        Raises:
            KeyError: If the source does not know the session. The engine
                      is left untouched in that case.
        """
        records = self.source.fetch_samples(session_id)
        metadata = self.source.fetch_entity_metadata(session_id)
        selected = None if entity_ids is None else frozenset(entity_ids)
        snapshot = build_session_snapshot(session_id, records, self.config, metadata, selected)

        self.timer.stop()
        self._selected = selected
        self._install(snapshot, keep_position=False)
        return snapshot

    def select_entities(self, entity_ids: Optional[Iterable[str]]) -> SessionSnapshot:
        """
        Change the entity filter and rebuild the session for it.

        The replay keeps its place: it resumes, paused, at the last frame not
        later than the previous current timestamp. An empty selection stops
        the replay and leaves an empty session. If the source fails, the
        previous selection and snapshot stay in place.
        """
        session_id = self._snapshot.session_id
        selected = None if entity_ids is None else frozenset(entity_ids)

        if session_id is None:
            self._selected = selected
            return self._snapshot

        if selected is not None and not selected:
            snapshot = empty_snapshot(session_id)
        else:
            records = self.source.fetch_samples(session_id)
            snapshot = build_session_snapshot(session_id, records, self.config, self._snapshot.metadata, selected)

        self.timer.stop()
        self._selected = selected
        self._install(snapshot, keep_position=not snapshot.is_empty)
        return snapshot

    def install_snapshot(self, snapshot: SessionSnapshot) -> None:
        """Adopt an already built snapshot, e.g. one shared from a cache."""
        self.timer.stop()
        self._selected = snapshot.entity_filter
        self._install(snapshot, keep_position=False)

    def apply_live_event(self, event: LiveEvent) -> SessionSnapshot:
        """
        Fold a live feed event into the current session without reloading it.

        Playback continues from the same timestamp; observers are notified
        once, with the replay already positioned on the updated timeline.
        """
        snapshot = fold_event(self._snapshot, event, self.config)
        if snapshot is self._snapshot:
            return snapshot

        current = self.current_timestamp()
        self._snapshot = snapshot
        self._trails = TrailWindower(snapshot.timeline, snapshot.enhanced, self.config.trail_length)
        self.scheduler.reconfigure(snapshot.frame_count, self._index_for(current))
        return snapshot

    def close(self) -> None:
        """Stop playback and drop every derived cache."""
        self.timer.stop()
        self._selected = None
        self._install(empty_snapshot(), keep_position=False)
        logger.info("Engine closed")

    def _index_for(self, timestamp: Optional[pd.Timestamp]) -> int:
        if timestamp is None:
            return 0
        return max(0, self._snapshot.timeline.index_at_or_before(timestamp))

    def _install(self, snapshot: SessionSnapshot, keep_position: bool) -> None:
        current = self.current_timestamp() if keep_position else None
        self._snapshot = snapshot
        self._trails = TrailWindower(snapshot.timeline, snapshot.enhanced, self.config.trail_length)
        if current is None:
            self.scheduler.load(snapshot.frame_count)
        else:
            self.scheduler.reconfigure(snapshot.frame_count, self._index_for(current), keep_playing=False)

    # ------------------------------------------------------------------
    # Replay transport
    # ------------------------------------------------------------------

    def play(self) -> None:
        self.scheduler.play()

    def start_playback(self) -> None:
        """Play and start the timer on the running event loop."""
        self.scheduler.play()
        if self.scheduler.is_playing:
            self.timer.start()

    def pause(self) -> None:
        self.scheduler.pause()

    def step(self, delta: int = 1) -> None:
        self.scheduler.step(delta)

    def seek(self, index: int) -> None:
        self.scheduler.seek(index)

    def set_speed(self, multiplier: float) -> None:
        self.scheduler.set_speed(multiplier)

    def replay_state(self) -> ReplayState:
        return self.scheduler.snapshot()

    def on_frame(self, listener: Callable[[FrameView], None]) -> Callable[[], None]:
        """Register a listener called with a fresh FrameView on every replay change."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _on_replay_change(self, state: ReplayState, sequential: bool) -> None:
        if state.frame_count == 0:
            self._trails.reset()
        else:
            self._trails.advance_to(state.current_frame_index, sequential=sequential)

        if self._listeners:
            view = self.frame_view()
            for listener in list(self._listeners):
                listener(view)

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def current_timestamp(self) -> Optional[pd.Timestamp]:
        if self._snapshot.is_empty:
            return None
        return self._snapshot.timeline.timestamp_at(self.scheduler.current_frame_index)

    def current_positions(self) -> List[CurrentPosition]:
        """Last known position of each entity up to the current frame."""
        timestamp = self.current_timestamp()
        if timestamp is None:
            return []

        frame = self._snapshot.timeline.frame_at(self.scheduler.current_frame_index)
        in_frame = set(frame.entity_ids)
        max_speed = self._snapshot.max_speed
        positions = []
        for entity_id in self._snapshot.entity_ids:
            sample = self._snapshot.last_known(entity_id, timestamp)
            if sample is not None:
                positions.append(CurrentPosition(
                    sample=sample,
                    in_current_frame=entity_id in in_frame,
                    color=utils.speed_color(sample.speed, max_speed),
                ))
        return positions

    def trails(self) -> Dict[str, List[EnhancedSample]]:
        return self._trails.trails()

    def heatmap(self, start_pct: float = 0.0, end_pct: float = 100.0,
                entity_ids: Optional[Iterable[str]] = None) -> List[HeatmapCell]:
        """Heatmap of the selected entities over a percentage window of the timeline."""
        start, end = window_timestamps(self._snapshot.timeline, start_pct, end_pct)
        if start is None:
            return []
        if entity_ids is None:
            entity_ids = self._selected
        return heatmap.build_heatmap(
            self._snapshot.enhanced,
            cell_size=self.config.heatmap_cell_size,
            entity_ids=entity_ids,
            start=start,
            end=end,
        )

    def trajectories(self, start_pct: float = 0.0, end_pct: float = 100.0,
                     entity_ids: Optional[Iterable[str]] = None) -> Dict[str, EntityTrajectory]:
        """Speed-coloured trajectories of the selected entities over a percentage window."""
        start, end = window_timestamps(self._snapshot.timeline, start_pct, end_pct)
        if start is None:
            return {}
        if entity_ids is None:
            entity_ids = self._selected
        return trajectory.build_trajectories(self._snapshot.enhanced, entity_ids, start, end)

    def stats(self, start_pct: float = 0.0, end_pct: float = 100.0) -> Dict[str, EntityStats]:
        start, end = window_timestamps(self._snapshot.timeline, start_pct, end_pct)
        if start is None:
            return {}
        return metrics.entity_stats(metrics.select_samples(self._snapshot.enhanced, None, start, end))

    def frame_view(self) -> FrameView:
        """Render the current frame for the rendering collaborator."""
        cells = None
        if self.heatmap_mode:
            cells = self.heatmap(*self.heatmap_window)

        return FrameView(
            session_id=self._snapshot.session_id,
            replay=self.scheduler.snapshot(),
            timestamp=self.current_timestamp(),
            track=self._snapshot.track,
            positions=self.current_positions(),
            trails=self.trails(),
            heatmap=cells,
        )

"""
Session Builder for Circuit Position Replay

This module orchestrates the analysis pipeline for one session: filtering,
timeline indexing, derived metrics and track reconstruction. The result is a
SessionSnapshot, built completely before anyone can see it and never mutated
afterwards, so a reader always observes a single consistent session.
"""

import bisect
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from . import constants
from . import metrics
from . import track_path
from .config import EngineConfig
from .models import EnhancedSample, EntityMetadata, PositionSample, TrackPath
from .sample_filter import filter_samples
from .timeline import TimelineIndex, build_timeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionSnapshot:
    """Everything derived from one session's samples, as one unit."""

    session_id: Optional[int]
    timeline: TimelineIndex
    enhanced: Tuple[EnhancedSample, ...]
    by_entity: Dict[str, Tuple[EnhancedSample, ...]]
    track: TrackPath
    track_cells: FrozenSet[Tuple[float, float]]
    bounds: Dict[str, float]
    metadata: Dict[str, EntityMetadata] = field(default_factory=dict)
    entity_filter: Optional[FrozenSet[str]] = None
    entity_timestamps: Dict[str, Tuple[pd.Timestamp, ...]] = field(default_factory=dict, repr=False)
    max_speed: float = 0.0

    @property
    def frame_count(self) -> int:
        return self.timeline.frame_count

    @property
    def is_empty(self) -> bool:
        return self.timeline.is_empty

    @property
    def entity_ids(self) -> List[str]:
        return sorted(self.by_entity)

    @property
    def samples(self) -> List[PositionSample]:
        return self.timeline.samples_between()

    def last_known(self, entity_id: str, timestamp: pd.Timestamp) -> Optional[EnhancedSample]:
        """Latest derived sample of an entity at or before timestamp."""
        entity_samples = self.by_entity.get(entity_id, ())
        pos = bisect.bisect_right(self.entity_timestamps.get(entity_id, ()), timestamp)
        return entity_samples[pos - 1] if pos else None

    def metadata_for(self, entity_id: str) -> EntityMetadata:
        return self.metadata.get(entity_id) or EntityMetadata(entity_id=entity_id)


def empty_snapshot(session_id: Optional[int] = None) -> SessionSnapshot:
    return SessionSnapshot(
        session_id=session_id,
        timeline=TimelineIndex(),
        enhanced=(),
        by_entity={},
        track=TrackPath(),
        track_cells=frozenset(),
        bounds=dict(constants.DEFAULT_BOUNDS),
    )


def snap_cells(samples: Iterable[PositionSample], grid_size: float) -> FrozenSet[Tuple[float, float]]:
    return frozenset(
        (track_path.snap_to_grid(s.x, grid_size), track_path.snap_to_grid(s.y, grid_size))
        for s in samples
    )


def reconstruct_for(samples: Sequence[PositionSample], config: EngineConfig) -> TrackPath:
    return track_path.reconstruct_track_path(
        [(s.x, s.y) for s in samples],
        grid_size=config.track_grid_size,
        jump_threshold=config.track_jump_threshold,
        jump_policy=config.track_jump_policy,
        close_tolerance=config.track_close_tolerance,
    )


def assemble_snapshot(session_id: Optional[int], timeline: TimelineIndex,
                      config: EngineConfig,
                      metadata: Optional[Dict[str, EntityMetadata]] = None,
                      entity_filter: Optional[Iterable[str]] = None,
                      by_entity: Optional[Dict[str, Sequence[EnhancedSample]]] = None,
                      track: Optional[TrackPath] = None) -> SessionSnapshot:
    """
    Derive metrics and track geometry for an indexed timeline.

    Pieces already known to be current (per-entity metrics, track path) can
    be passed in and are reused as-is; everything else is computed here.

    Args:
        session_id: Session the timeline belongs to.
        timeline: Indexed frames.
        config: Engine configuration.
        metadata: Entity display metadata.
        entity_filter: Entities the timeline was restricted to, if any.
        by_entity: Precomputed derived samples per entity.
        track: Precomputed track path.

    Returns:
        Complete SessionSnapshot.
    """
    samples = timeline.samples_between()

    if by_entity is None:
        by_entity = metrics.group_by_entity(metrics.compute_derived_metrics(samples))
    by_entity = {entity_id: tuple(values) for entity_id, values in sorted(by_entity.items()) if values}
    enhanced = tuple(sample for entity_id in sorted(by_entity) for sample in by_entity[entity_id])

    if track is None:
        track = reconstruct_for(samples, config)

    return SessionSnapshot(
        session_id=session_id,
        timeline=timeline,
        enhanced=enhanced,
        by_entity=by_entity,
        track=track,
        track_cells=snap_cells(samples, config.track_grid_size),
        bounds=track_path.compute_bounds([(s.x, s.y) for s in samples], padding=constants.BOUNDS_PADDING),
        metadata=dict(metadata or {}),
        entity_filter=None if entity_filter is None else frozenset(entity_filter),
        entity_timestamps={
            entity_id: tuple(sample.timestamp for sample in values)
            for entity_id, values in by_entity.items()
        },
        max_speed=max((sample.speed for sample in enhanced), default=0.0),
    )


def build_session_snapshot(session_id: Optional[int], records: Iterable,
                           config: Optional[EngineConfig] = None,
                           metadata: Optional[Dict[str, EntityMetadata]] = None,
                           entity_ids: Optional[Iterable[str]] = None) -> SessionSnapshot:
    """
    Run the full pipeline for one session.

    1. Filters malformed and sentinel samples
    2. Restricts to the selected entities, if any
    3. Indexes frames by timestamp
    4. Computes derived metrics per entity
    5. Reconstructs the track path

    Args:
        session_id: Session id assigned to samples that carry none.
        records: Raw position records from the data source.
        config: Engine configuration. Defaults to EngineConfig().
        metadata: Entity display metadata.
        entity_ids: Entities to keep. None keeps every entity.

    Returns:
        SessionSnapshot; an empty session yields an empty (but valid) one.
    """
    config = config or EngineConfig()
    samples = filter_samples(records, session_id)

    wanted = None if entity_ids is None else frozenset(entity_ids)
    if wanted is not None:
        samples = [sample for sample in samples if sample.entity_id in wanted]

    timeline = build_timeline(samples)
    if timeline.is_empty:
        logger.info("Session %s has no usable samples", session_id)

    snapshot = assemble_snapshot(session_id, timeline, config, metadata=metadata, entity_filter=wanted)
    logger.info("Built session %s: %d frames, %d entities, %d track points",
                session_id, snapshot.frame_count, len(snapshot.by_entity), len(snapshot.track))
    return snapshot


def build_session_payload(snapshot: SessionSnapshot, start_pct: float = 0.0,
                          end_pct: float = 100.0) -> Dict:
    """
    Build the session payload for the rendering collaborator.

    Args:
        snapshot: Session snapshot.
        start_pct: Statistics window start (percent of timeline).
        end_pct: Statistics window end (percent of timeline).

    Returns:
        Dictionary containing:
        - session_id
        - track: reconstructed track path
        - bounds: padded bounding box of all positions
        - entities: display metadata per entity
        - frame_count and timestamps
        - stats: per-entity statistics over the window
    """
    start, end = window_timestamps(snapshot.timeline, start_pct, end_pct)
    selected = [] if start is None else metrics.select_samples(snapshot.enhanced, None, start, end)
    stats = metrics.entity_stats(selected)

    return {
        "session_id": snapshot.session_id,
        "track": snapshot.track.to_dict(),
        "bounds": snapshot.bounds,
        "entities": [snapshot.metadata_for(entity_id).to_dict() for entity_id in snapshot.entity_ids],
        "frame_count": snapshot.frame_count,
        "timestamps": [ts.isoformat() for ts in snapshot.timeline.timestamps],
        "stats": {entity_id: value.to_dict() for entity_id, value in stats.items()},
    }


def window_timestamps(timeline: TimelineIndex, start_pct: float = 0.0,
                      end_pct: float = 100.0) -> Tuple[Optional[pd.Timestamp], Optional[pd.Timestamp]]:
    """
    Inclusive timestamp range for a percentage window of the timeline.

    Returns:
        (start, end) timestamps, or (None, None) when the window is empty.
    """
    start, end = timeline.window_bounds(start_pct, end_pct)
    if end <= start:
        return None, None
    return timeline.timestamp_at(start), timeline.timestamp_at(end - 1)

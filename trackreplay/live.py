"""
Live Ingestion for Circuit Position Replay

Folds insert/update/delete events from the live feed into an existing
session snapshot. Only the frames and entity metric sequences an event
touches are recomputed; the rest of the history is carried over unchanged.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from . import metrics
from . import track_path
from .config import EngineConfig
from .models import LiveEvent, LiveEventKind, PositionSample
from .sample_filter import coerce_sample
from .session import SessionSnapshot, assemble_snapshot
from .timeline import TimelineIndex

logger = logging.getLogger(__name__)


def find_sample(timeline: TimelineIndex, sample_id: Optional[int] = None,
                entity_id: Optional[str] = None, timestamp=None) -> Optional[PositionSample]:
    """Locate a sample by source row id, falling back to (entity_id, timestamp)."""
    if sample_id is not None:
        found = next((s for s in timeline.samples_between() if s.sample_id == sample_id), None)
        if found is not None:
            return found

    if entity_id is None or timestamp is None:
        return None
    index = timeline.index_of(timestamp)
    if index is None:
        return None
    return next((s for s in timeline.frame_at(index).samples if s.entity_id == entity_id), None)


def _identity_of(event: LiveEvent, session_id: Optional[int]) -> Tuple[Optional[int], Optional[str], object]:
    if event.sample_id is not None:
        return event.sample_id, None, None
    sample = coerce_sample(event.record, session_id)
    if sample is None:
        return None, None, None
    return sample.sample_id, sample.entity_id, sample.timestamp


def _recompute_entities(timeline: TimelineIndex, previous: Dict, entity_ids: Iterable[str]) -> Dict:
    by_entity = dict(previous)
    touched = set(entity_ids)
    own_samples: Dict[str, List[PositionSample]] = {entity_id: [] for entity_id in touched}
    for sample in timeline.samples_between():
        if sample.entity_id in touched:
            own_samples[sample.entity_id].append(sample)

    for entity_id, samples in own_samples.items():
        if samples:
            by_entity[entity_id] = tuple(metrics.compute_derived_metrics(samples))
        else:
            by_entity.pop(entity_id, None)
    return by_entity


def fold_event(snapshot: SessionSnapshot, event: LiveEvent,
               config: Optional[EngineConfig] = None) -> SessionSnapshot:
    """
    Apply one live event and return the updated snapshot.

    INSERT and UPDATE upsert the sample by (entity_id, timestamp); an UPDATE
    whose sample id already exists under another identity moves it. DELETE
    removes by sample id or identity. Malformed records, entities outside the
    snapshot's entity filter and deletes of unknown samples leave the
    snapshot unchanged.

    The track path is reused when an insert lands in an already-occupied grid
    cell and is rebuilt otherwise.

    Args:
        snapshot: Current session snapshot.
        event: Live event.
        config: Engine configuration.

    Returns:
        New SessionSnapshot (or the same one when nothing changed).
    """
    config = config or EngineConfig()
    timeline = snapshot.timeline
    touched: Set[str] = set()
    removed = False

    if event.kind in (LiveEventKind.INSERT, LiveEventKind.UPDATE):
        sample = coerce_sample(event.record, snapshot.session_id)
        if sample is None:
            logger.debug("Ignored malformed live %s event", event.kind.value)
            return snapshot
        if snapshot.entity_filter is not None and sample.entity_id not in snapshot.entity_filter:
            return snapshot

        if sample.sample_id is not None:
            previous = find_sample(timeline, sample_id=sample.sample_id)
            if previous is not None and previous.key != sample.key:
                timeline = timeline.remove(previous.entity_id, previous.timestamp)
                touched.add(previous.entity_id)
                removed = True

        existing = find_sample(timeline, entity_id=sample.entity_id, timestamp=sample.timestamp)
        removed = removed or existing is not None
        timeline = timeline.upsert(sample)
        touched.add(sample.entity_id)
        cell = (track_path.snap_to_grid(sample.x, config.track_grid_size),
                track_path.snap_to_grid(sample.y, config.track_grid_size))
        new_cell = cell not in snapshot.track_cells
        track = None if (removed or new_cell) else snapshot.track

    elif event.kind is LiveEventKind.DELETE:
        sample_id, entity_id, timestamp = _identity_of(event, snapshot.session_id)
        target = find_sample(timeline, sample_id=sample_id, entity_id=entity_id, timestamp=timestamp)
        if target is None:
            return snapshot
        timeline = timeline.remove(target.entity_id, target.timestamp)
        touched.add(target.entity_id)
        track = None

    else:
        raise ValueError(f"Unknown live event kind: {event.kind}")

    by_entity = _recompute_entities(timeline, snapshot.by_entity, touched)
    logger.debug("Folded live %s for %s (%d frames)", event.kind.value, sorted(touched), timeline.frame_count)

    return assemble_snapshot(
        snapshot.session_id,
        timeline,
        config,
        metadata=snapshot.metadata,
        entity_filter=snapshot.entity_filter,
        by_entity=by_entity,
        track=track,
    )
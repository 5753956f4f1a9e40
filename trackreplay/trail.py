"""
Trail Windowing for Circuit Position Replay

Keeps, per entity, the most recent derived samples up to the replay's current
frame so the renderer can draw a short trail behind each moving entity.
"""

import logging
from collections import defaultdict, deque
from typing import Deque, Dict, Iterable, List, Optional

import pandas as pd

from . import constants
from . import utils
from .models import EnhancedSample
from .timeline import TimelineIndex

logger = logging.getLogger(__name__)


class TrailWindower:
    """
    Bounded recent-history window per entity.

    Advancing by exactly one frame extends the trails in place; any other
    index change (seek, backward step, skipped frames) rebuilds them from
    the start of the timeline, so no entity ever holds a sample from a frame
    the replay has not reached.
    """

    def __init__(self, timeline: TimelineIndex, samples: Iterable[EnhancedSample],
                 trail_length: int = constants.TRAIL_LENGTH,
                 entity_ids: Optional[Iterable[str]] = None):
        if trail_length < 1:
            raise ValueError(f"trail_length must be at least 1, got {trail_length}")

        self.timeline = timeline
        self.trail_length = int(trail_length)
        self.entity_ids = None if entity_ids is None else frozenset(entity_ids)
        self._by_timestamp: Dict[pd.Timestamp, List[EnhancedSample]] = defaultdict(list)
        for sample in samples:
            if self.entity_ids is None or sample.entity_id in self.entity_ids:
                self._by_timestamp[sample.timestamp].append(sample)

        self._trails: Dict[str, Deque[EnhancedSample]] = {}
        self._index: Optional[int] = None

    @property
    def current_index(self) -> Optional[int]:
        return self._index

    def _extend(self, frame_index: int) -> None:
        timestamp = self.timeline.timestamp_at(frame_index)
        for sample in self._by_timestamp.get(timestamp, ()):
            trail = self._trails.get(sample.entity_id)
            if trail is None:
                trail = self._trails[sample.entity_id] = deque(maxlen=self.trail_length)
            trail.append(sample)

    def rebuild(self, index: int) -> None:
        """Recompute every trail from scratch for frames 0..index."""
        self._trails = {}
        self._index = None
        if self.timeline.is_empty:
            return

        index = utils.clamp(index, 0, self.timeline.frame_count - 1)
        for frame_index in range(index + 1):
            self._extend(frame_index)
        self._index = index
        logger.debug("Rebuilt trails up to frame %d", index)

    def advance_to(self, index: int, sequential: bool = True) -> None:
        """
        Move the window to a new current frame.

        Args:
            index: New current frame index.
            sequential: False forces a full rebuild even for a +1 move, as
                        required after a seek.
        """
        if self.timeline.is_empty:
            self.reset()
            return
        if index == self._index:
            return
        if sequential and self._index is not None and index == self._index + 1:
            self._extend(index)
            self._index = index
            return
        self.rebuild(index)

    def reset(self) -> None:
        self._trails = {}
        self._index = None

    def trail(self, entity_id: str) -> List[EnhancedSample]:
        return list(self._trails.get(entity_id, ()))

    def trails(self) -> Dict[str, List[EnhancedSample]]:
        return {entity_id: list(samples) for entity_id, samples in self._trails.items()}

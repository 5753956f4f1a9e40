"""
Timeline Indexing for Circuit Position Replay

This module groups filtered position samples into time-ordered frames, the
atomic unit of replay advancement. A TimelineIndex is immutable: rebuilding
for a new session, or folding in a live update, returns a new index and never
mutates one a reader may be holding.
"""

import bisect
import logging
import math
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .models import Frame, PositionSample

logger = logging.getLogger(__name__)


def _order_frame(samples: Iterable[PositionSample]) -> Tuple[PositionSample, ...]:
    return tuple(sorted(samples, key=lambda sample: sample.entity_id))


class TimelineIndex:
    """
    Ordered, de-duplicated sequence of frames for one session.

    Frames are strictly ascending by timestamp and indexed 0..frame_count-1.
    """

    def __init__(self, frames: Sequence[Frame] = ()):
        self._frames: Tuple[Frame, ...] = tuple(frames)
        self._timestamps: List[pd.Timestamp] = [frame.timestamp for frame in self._frames]

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self):
        return iter(self._frames)

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def timestamps(self) -> List[pd.Timestamp]:
        return list(self._timestamps)

    @property
    def is_empty(self) -> bool:
        return not self._frames

    def frame_at(self, index: int) -> Frame:
        """
        Return the frame at a position in the timeline.

        Raises:
            IndexError: If index is outside [0, frame_count - 1].
        """
        if index < 0 or index >= len(self._frames):
            raise IndexError(f"Frame index {index} out of range (frame_count={len(self._frames)})")
        return self._frames[index]

    def timestamp_at(self, index: int) -> pd.Timestamp:
        return self.frame_at(index).timestamp

    def index_of(self, timestamp: pd.Timestamp) -> Optional[int]:
        """Index of the frame with exactly this timestamp, or None."""
        pos = bisect.bisect_left(self._timestamps, timestamp)
        if pos < len(self._timestamps) and self._timestamps[pos] == timestamp:
            return pos
        return None

    def index_at_or_before(self, timestamp: pd.Timestamp) -> int:
        """Index of the last frame not later than timestamp (-1 if none)."""
        return bisect.bisect_right(self._timestamps, timestamp) - 1

    def window_bounds(self, start_pct: float = 0.0, end_pct: float = 100.0) -> Tuple[int, int]:
        """
        Convert a percentage window of the timeline into frame bounds.

        Args:
            start_pct: Window start as a percentage of the distinct timestamps.
            end_pct: Window end as a percentage of the distinct timestamps.

        Returns:
            Tuple (start_index, end_index) with end exclusive. Percentages are
            clamped to [0, 100]; an inverted window yields an empty range.
        """
        count = len(self._frames)
        start_pct = min(max(float(start_pct), 0.0), 100.0)
        end_pct = min(max(float(end_pct), 0.0), 100.0)
        start = int(math.floor(start_pct / 100 * count))
        end = int(math.floor(end_pct / 100 * count))
        return start, max(start, end)

    def samples_between(self, start: int = 0, end: Optional[int] = None) -> List[PositionSample]:
        """All samples of frames start..end-1."""
        return [sample for frame in self._frames[start:end] for sample in frame.samples]

    # ------------------------------------------------------------------
    # Incremental updates (live ingestion)
    # ------------------------------------------------------------------

    def upsert(self, sample: PositionSample) -> "TimelineIndex":
        """
        Return a new index with sample inserted, replacing any sample with the
        same (entity_id, timestamp) identity.
        """
        pos = bisect.bisect_left(self._timestamps, sample.timestamp)
        frames = list(self._frames)

        if pos < len(frames) and frames[pos].timestamp == sample.timestamp:
            kept = [s for s in frames[pos].samples if s.entity_id != sample.entity_id]
            frames[pos] = replace(frames[pos], samples=_order_frame(kept + [sample]))
            return TimelineIndex(frames)

        frames.insert(pos, Frame(index=pos, timestamp=sample.timestamp, samples=(sample,)))
        return TimelineIndex(_renumber(frames, pos + 1))

    def remove(self, entity_id: str, timestamp: pd.Timestamp) -> "TimelineIndex":
        """Return a new index without the identified sample (unchanged if absent)."""
        pos = self.index_of(timestamp)
        if pos is None:
            return self

        frame = self._frames[pos]
        kept = tuple(s for s in frame.samples if s.entity_id != entity_id)
        if len(kept) == len(frame.samples):
            return self

        frames = list(self._frames)
        if kept:
            frames[pos] = replace(frame, samples=kept)
            return TimelineIndex(frames)

        del frames[pos]
        return TimelineIndex(_renumber(frames, pos))


def _renumber(frames: List[Frame], start: int) -> List[Frame]:
    for idx in range(start, len(frames)):
        if frames[idx].index != idx:
            frames[idx] = replace(frames[idx], index=idx)
    return frames


def build_timeline(samples: Iterable[PositionSample]) -> TimelineIndex:
    """
    Group samples by exact timestamp into ascending frames.

    Within a frame, samples are ordered by entity id; if the same entity
    appears twice at one timestamp, the later record in input order wins.

    Args:
        samples: Filtered PositionSample records for one session.

    Returns:
        TimelineIndex with one frame per distinct timestamp.
    """
    grouped: Dict[pd.Timestamp, Dict[str, PositionSample]] = {}

    for sample in samples:
        grouped.setdefault(sample.timestamp, {})[sample.entity_id] = sample

    frames = [
        Frame(index=idx, timestamp=timestamp, samples=_order_frame(grouped[timestamp].values()))
        for idx, timestamp in enumerate(sorted(grouped))
    ]

    logger.debug("Indexed %d frames", len(frames))
    return TimelineIndex(frames)

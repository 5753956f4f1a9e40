"""
Record Types for Circuit Position Replay

This module defines the immutable records passed between pipeline stages:
raw position samples, frames, derived samples, track paths, heatmap cells and
replay state snapshots. Each record knows how to render itself as a
JSON-friendly dictionary for API responses.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

import pandas as pd

from . import constants
from . import utils


@dataclass(frozen=True)
class PositionSample:
    """One observed position of an entity at an instant."""

    entity_id: str
    x: float
    y: float
    z: Optional[float]
    timestamp: pd.Timestamp
    session_id: int
    sample_id: Optional[int] = None

    @property
    def key(self) -> Tuple[str, pd.Timestamp]:
        return (self.entity_id, self.timestamp)

    def to_dict(self) -> Dict:
        return {
            "entity_id": self.entity_id,
            "x": self.x,
            "y": self.y,
            "z": self.z,
            "timestamp": self.timestamp.isoformat(),
            "session_id": self.session_id,
        }


@dataclass(frozen=True)
class EnhancedSample:
    """A position sample augmented with kinematics relative to its predecessor."""

    entity_id: str
    x: float
    y: float
    z: Optional[float]
    timestamp: pd.Timestamp
    session_id: int
    distance: float = 0.0
    speed: float = 0.0
    acceleration: float = 0.0
    sample_id: Optional[int] = None

    @classmethod
    def from_sample(cls, sample: PositionSample, distance: float = 0.0,
                    speed: float = 0.0, acceleration: float = 0.0) -> "EnhancedSample":
        return cls(
            entity_id=sample.entity_id,
            x=sample.x,
            y=sample.y,
            z=sample.z,
            timestamp=sample.timestamp,
            session_id=sample.session_id,
            distance=distance,
            speed=speed,
            acceleration=acceleration,
            sample_id=sample.sample_id,
        )

    def to_dict(self) -> Dict:
        return {
            "entity_id": self.entity_id,
            "x": self.x,
            "y": self.y,
            "z": self.z,
            "timestamp": self.timestamp.isoformat(),
            "distance": utils.round_float(self.distance),
            "speed": utils.round_float(self.speed),
            "acceleration": utils.round_float(self.acceleration),
        }


@dataclass(frozen=True)
class Frame:
    """All samples sharing one timestamp."""

    index: int
    timestamp: pd.Timestamp
    samples: Tuple[PositionSample, ...]

    @property
    def entity_ids(self) -> Tuple[str, ...]:
        return tuple(sample.entity_id for sample in self.samples)


@dataclass(frozen=True)
class TrackPath:
    """Ordered polyline approximating the circuit geometry."""

    points: Tuple[Tuple[float, float], ...] = ()
    closed: bool = False
    grid_size: float = constants.TRACK_GRID_SIZE
    jump_policy: str = constants.TRACK_JUMP_POLICY
    discarded: int = 0

    def __len__(self) -> int:
        return len(self.points)

    def to_dict(self) -> Dict:
        coordinates = [[x, y] for x, y in self.points]
        if self.closed and coordinates:
            coordinates.append(list(coordinates[0]))
        return {
            "coordinates": coordinates,
            "closed": self.closed,
            "point_count": len(self.points),
            "grid_size": self.grid_size,
            "jump_policy": self.jump_policy,
            "discarded": self.discarded,
        }


@dataclass(frozen=True)
class HeatmapCell:
    """One spatial bin of the heatmap."""

    cell_x: int
    cell_y: int
    raw_intensity: float
    count: int
    normalized_intensity: float
    cell_size: float = constants.HEATMAP_CELL_SIZE

    @property
    def x(self) -> float:
        return self.cell_x * self.cell_size

    @property
    def y(self) -> float:
        return self.cell_y * self.cell_size

    @property
    def mean_intensity(self) -> float:
        return self.raw_intensity / self.count if self.count else 0.0

    def to_dict(self) -> Dict:
        fill, opacity = utils.heat_color(self.normalized_intensity)
        return {
            "cell_x": self.cell_x,
            "cell_y": self.cell_y,
            "x": self.x,
            "y": self.y,
            "size": self.cell_size,
            "raw_intensity": utils.round_float(self.raw_intensity),
            "count": self.count,
            "normalized_intensity": utils.round_float(self.normalized_intensity, 4),
            "fill": fill,
            "opacity": opacity,
        }


@dataclass(frozen=True)
class TrajectoryPoint:
    """One speed-coloured point of an entity trajectory."""

    sample: EnhancedSample
    speed_color: str
    vector_end: Optional[Tuple[float, float]] = None

    def to_dict(self) -> Dict:
        payload = self.sample.to_dict()
        payload["speed_color"] = self.speed_color
        payload["vector_end"] = None if self.vector_end is None else list(self.vector_end)
        return payload


@dataclass(frozen=True)
class EntityTrajectory:
    """An entity's path over a time window, with its own speed scale."""

    entity_id: str
    points: Tuple[TrajectoryPoint, ...]
    max_speed: float

    def to_dict(self) -> Dict:
        return {
            "entity_id": self.entity_id,
            "max_speed": utils.round_float(self.max_speed, 2),
            "points": [point.to_dict() for point in self.points],
        }


class ReplayStatus(str, Enum):
    IDLE = "idle"
    PAUSED = "paused"
    PLAYING = "playing"


@dataclass(frozen=True)
class ReplayState:
    """Snapshot of the replay transport."""

    status: ReplayStatus = ReplayStatus.IDLE
    current_frame_index: int = 0
    frame_count: int = 0
    speed_multiplier: float = 1.0

    def to_dict(self) -> Dict:
        return {
            "status": self.status.value,
            "current_frame_index": self.current_frame_index,
            "frame_count": self.frame_count,
            "speed_multiplier": self.speed_multiplier,
        }


@dataclass(frozen=True)
class EntityMetadata:
    """Read-only display information for a tracked entity."""

    entity_id: str
    display_name: str = ""
    color_token: str = constants.DEFAULT_ENTITY_COLOR
    team_name: str = ""

    def to_dict(self) -> Dict:
        return {
            "entity_id": self.entity_id,
            "display_name": self.display_name or f"Entity #{self.entity_id}",
            "color_token": self.color_token or constants.DEFAULT_ENTITY_COLOR,
            "team_name": self.team_name,
        }


@dataclass(frozen=True)
class EntityStats:
    """Summary of one entity's derived samples over a window."""

    entity_id: str
    max_speed: float
    avg_speed: float
    total_distance: float
    sample_count: int

    def to_dict(self) -> Dict:
        return {
            "entity_id": self.entity_id,
            "max_speed": utils.round_float(self.max_speed, 2),
            "avg_speed": utils.round_float(self.avg_speed, 2),
            "total_distance": utils.round_float(self.total_distance, 2),
            "sample_count": self.sample_count,
        }


class LiveEventKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class LiveEvent:
    """
    Incremental change delivered by the live feed.

    INSERT and UPDATE carry a raw ``record`` (mapping or PositionSample);
    DELETE carries the ``sample_id`` of the row to remove, or a record whose
    identity (entity_id, timestamp) should be removed.
    """

    kind: LiveEventKind
    record: Optional[object] = None
    sample_id: Optional[int] = None

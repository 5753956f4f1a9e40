"""
Speed Trajectories for Circuit Position Replay

This module builds each entity's path over a time window for speed analysis:
every point is coloured against that entity's own top speed in the window,
and carries the endpoint of a velocity vector pointing towards the next
position.
"""

from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from . import constants
from . import metrics
from . import utils
from .models import EnhancedSample, EntityTrajectory, TrajectoryPoint


def velocity_vector_end(sample: EnhancedSample, following: EnhancedSample,
                        scale: float = constants.VELOCITY_VECTOR_SCALE) -> Optional[Tuple[float, float]]:
    """
    Endpoint of the velocity vector drawn from sample towards following.

    The vector has the direction of travel and a length of speed * scale.

    Returns:
        (x, y) endpoint, or None when the entity did not move or has no speed.
    """
    dx = following.x - sample.x
    dy = following.y - sample.y
    length = utils.euclidean(0.0, 0.0, dx, dy)
    magnitude = (sample.speed or 0.0) * scale
    if length <= 0 or magnitude <= 0:
        return None
    return sample.x + dx / length * magnitude, sample.y + dy / length * magnitude


def build_trajectories(samples: Iterable[EnhancedSample],
                       entity_ids: Optional[Iterable[str]] = None,
                       start: Optional[pd.Timestamp] = None,
                       end: Optional[pd.Timestamp] = None,
                       vector_scale: float = constants.VELOCITY_VECTOR_SCALE) -> Dict[str, EntityTrajectory]:
    """
    Build speed-coloured trajectories per entity.

    Args:
        samples: Derived samples.
        entity_ids: Entities to include. None includes every entity.
        start: Inclusive window start timestamp, or None.
        end: Inclusive window end timestamp, or None.
        vector_scale: Velocity vector length per unit of speed.

    Returns:
        Dictionary mapping entity id to EntityTrajectory, in timestamp order.
        Entities with fewer than two samples in the window are left out.
    """
    selected = metrics.select_samples(samples, entity_ids, start, end)
    trajectories = {}

    for entity_id, entity_samples in metrics.group_by_entity(selected).items():
        if len(entity_samples) < 2:
            continue

        ordered = sorted(entity_samples, key=lambda sample: sample.timestamp)
        max_speed = max(sample.speed for sample in ordered)
        points: List[TrajectoryPoint] = []
        for idx, sample in enumerate(ordered):
            following = ordered[idx + 1] if idx + 1 < len(ordered) else None
            points.append(TrajectoryPoint(
                sample=sample,
                speed_color=utils.speed_color(sample.speed, max_speed),
                vector_end=None if following is None else velocity_vector_end(sample, following, vector_scale),
            ))

        trajectories[entity_id] = EntityTrajectory(entity_id=entity_id, points=tuple(points), max_speed=max_speed)

    return trajectories

"""
Metrics Computation for Circuit Position Replay

This module derives per-entity kinematics (step distance, speed and
acceleration) from consecutive position samples, and summarises them into
per-entity statistics for a time window.
"""

from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from .models import EnhancedSample, EntityStats, PositionSample


def samples_to_frame(samples: Sequence[PositionSample]) -> pd.DataFrame:
    """
    Build a DataFrame of samples sorted by entity then timestamp.

    Sorting is stable, so samples sharing an entity and timestamp keep their
    input order. The ``order`` column points back into ``samples``.

    Args:
        samples: Position samples in any order.

    Returns:
        DataFrame with columns order, entity_id, x, y, timestamp.
    """
    df = pd.DataFrame({
        "order": np.arange(len(samples)),
        "entity_id": [sample.entity_id for sample in samples],
        "x": np.array([sample.x for sample in samples], dtype=float),
        "y": np.array([sample.y for sample in samples], dtype=float),
        "timestamp": pd.to_datetime([sample.timestamp for sample in samples], utc=True),
    })
    return df.sort_values(["entity_id", "timestamp"], kind="mergesort").reset_index(drop=True)


def compute_derived_metrics(samples: Sequence[PositionSample]) -> List[EnhancedSample]:
    """
    Compute distance, speed and acceleration for every sample.

    For each entity, samples are taken in ascending timestamp order and
    compared with their immediate predecessor:
    - distance: planar Euclidean distance from the previous position
    - speed: distance / deltaT (units per second)
    - acceleration: change in speed / deltaT, from the third sample onwards

    The first sample of an entity has all three metrics at 0. When deltaT is
    zero or negative (duplicate or out-of-order timestamps) the sample's
    metrics are all 0 as well, so no division by a non-positive interval
    ever reaches the output.

    Args:
        samples: Filtered position samples, any order, any mix of entities.

    Returns:
        List of EnhancedSample ordered by entity id then timestamp.
    """
    if not samples:
        return []

    df = samples_to_frame(samples)
    grouped = df.groupby("entity_id", sort=False)

    dt = grouped["timestamp"].diff().dt.total_seconds()
    dx = grouped["x"].diff()
    dy = grouped["y"].diff()
    valid = (dt > 0).to_numpy()
    dt_safe = dt.where(dt > 0, 1.0).to_numpy()

    distance = np.where(valid, np.sqrt(dx.fillna(0) ** 2 + dy.fillna(0) ** 2), 0.0)
    speed = np.where(valid, distance / dt_safe, 0.0)

    df["speed"] = speed
    prev_speed = df.groupby("entity_id", sort=False)["speed"].shift(1).fillna(0.0).to_numpy()
    position = grouped.cumcount().to_numpy()
    acceleration = np.where(valid & (position > 1), (speed - prev_speed) / dt_safe, 0.0)

    return [
        EnhancedSample.from_sample(
            samples[order],
            distance=float(distance[idx]),
            speed=float(speed[idx]),
            acceleration=float(acceleration[idx]),
        )
        for idx, order in enumerate(df["order"].to_numpy())
    ]


def group_by_entity(samples: Iterable[EnhancedSample]) -> Dict[str, List[EnhancedSample]]:
    """Partition derived samples per entity, keeping their order."""
    groups: Dict[str, List[EnhancedSample]] = {}
    for sample in samples:
        groups.setdefault(sample.entity_id, []).append(sample)
    return groups


def select_samples(samples: Iterable[EnhancedSample],
                   entity_ids: Optional[Iterable[str]] = None,
                   start: Optional[pd.Timestamp] = None,
                   end: Optional[pd.Timestamp] = None) -> List[EnhancedSample]:
    """
    Filter derived samples by entity subset and an inclusive time range.

    Args:
        samples: Derived samples.
        entity_ids: Entities to keep. None keeps every entity.
        start: Earliest timestamp to keep, or None for no lower bound.
        end: Latest timestamp to keep, or None for no upper bound.

    Returns:
        Matching samples in input order.
    """
    wanted = None if entity_ids is None else set(entity_ids)
    return [
        sample for sample in samples
        if (wanted is None or sample.entity_id in wanted)
        and (start is None or sample.timestamp >= start)
        and (end is None or sample.timestamp <= end)
    ]


def entity_stats(samples: Iterable[EnhancedSample]) -> Dict[str, EntityStats]:
    """
    Summarise derived samples per entity.

    Max and average speed only consider moving samples (speed > 0); an
    entity that never moves reports 0 for both.

    Args:
        samples: Derived samples, already restricted to the window of interest.

    Returns:
        Dictionary mapping entity id to EntityStats.
    """
    stats = {}

    for entity_id, entity_samples in group_by_entity(samples).items():
        speeds = [s.speed for s in entity_samples if s.speed > 0]
        stats[entity_id] = EntityStats(
            entity_id=entity_id,
            max_speed=max(speeds) if speeds else 0.0,
            avg_speed=float(np.mean(speeds)) if speeds else 0.0,
            total_distance=float(sum(s.distance for s in entity_samples)),
            sample_count=len(entity_samples),
        )

    return stats

"""
Export Functions for Circuit Position Replay

This module provides functions to export derived per-entity samples to CSV
for external analysis.
"""

import csv
import io
from typing import Iterable

from .models import EnhancedSample


def export_entity_csv(samples: Iterable[EnhancedSample], entity_id: str) -> str:
    """
    Export a single entity's derived samples to CSV format.

    Args:
        samples: Derived samples of a session (any mix of entities).
        entity_id: Entity to export.

    Returns:
        CSV string with one row per sample of the entity, in timestamp order.

    Raises:
        ValueError: If the entity has no samples.
    """
    rows = sorted(
        (sample for sample in samples if sample.entity_id == entity_id),
        key=lambda sample: sample.timestamp,
    )
    if not rows:
        raise ValueError(f"Entity {entity_id} not found")

    buffer = io.StringIO()
    writer = csv.writer(buffer)

    # Write header
    writer.writerow([
        "timestamp",
        "entity_id",
        "x",
        "y",
        "z",
        "distance",
        "speed",
        "acceleration",
    ])

    # Write data rows
    for sample in rows:
        writer.writerow([
            sample.timestamp.isoformat(),
            sample.entity_id,
            sample.x,
            sample.y,
            sample.z,
            sample.distance,
            sample.speed,
            sample.acceleration,
        ])

    return buffer.getvalue()

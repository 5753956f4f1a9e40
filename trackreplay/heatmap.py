"""
Heatmap Generation for Circuit Position Replay

This module bins derived samples into a fixed-size spatial grid and
normalizes each cell's mean speed against the fastest cell, producing
intensity values ready for heatmap rendering.
"""

import math
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from . import constants
from . import metrics
from .models import EnhancedSample, HeatmapCell


def cell_of(x: float, y: float, cell_size: float) -> Tuple[int, int]:
    """Grid cell containing (x, y); cells are half-open [k*size, (k+1)*size)."""
    return int(math.floor(x / cell_size)), int(math.floor(y / cell_size))


def build_heatmap(samples: Iterable[EnhancedSample],
                  cell_size: float = constants.HEATMAP_CELL_SIZE,
                  entity_ids: Optional[Iterable[str]] = None,
                  start: Optional[pd.Timestamp] = None,
                  end: Optional[pd.Timestamp] = None) -> List[HeatmapCell]:
    """
    Build mean-speed heatmap cells for a selection of samples.

    Accumulates the sum of speeds and the sample count per cell, then divides
    each cell's mean speed by the largest mean across all cells. When every
    cell has zero mean speed, all intensities are 0.

    Args:
        samples: Derived samples.
        cell_size: Cell edge length in position units. Default 200.
        entity_ids: Entities to include. None includes every entity.
        start: Inclusive window start timestamp, or None.
        end: Inclusive window end timestamp, or None.

    Returns:
        List of HeatmapCell in first-binned order; empty when the selection
        contains no samples.
    """
    if cell_size <= 0:
        raise ValueError(f"cell_size must be positive, got {cell_size}")

    sums: Dict[Tuple[int, int], float] = {}
    counts: Dict[Tuple[int, int], int] = {}

    for sample in metrics.select_samples(samples, entity_ids, start, end):
        key = cell_of(sample.x, sample.y, cell_size)
        sums[key] = sums.get(key, 0.0) + (sample.speed or 0.0)
        counts[key] = counts.get(key, 0) + 1

    if not counts:
        return []

    means = {key: sums[key] / counts[key] for key in counts}
    max_mean = max(means.values())

    cells = []
    for key, count in counts.items():
        normalized = means[key] / max_mean if max_mean > 0 else 0.0
        cells.append(HeatmapCell(
            cell_x=key[0],
            cell_y=key[1],
            raw_intensity=sums[key],
            count=count,
            normalized_intensity=min(max(normalized, 0.0), 1.0),
            cell_size=cell_size,
        ))

    return cells

"""
Track Path Reconstruction for Circuit Position Replay

This module approximates the circuit geometry from the unordered cloud of
positions recorded over a whole session (all entities, all frames). Points
are snapped to a coarse grid to suppress sensor noise, then chained into a
polyline by greedy nearest-neighbour selection.

Greedy chaining does not guarantee a simple loop: when the nearest remaining
candidate is far away the chain "jumps" to another cluster. Two policies are
supported for that case:
- "append": always take the nearest candidate, however far (default)
- "discard": once the nearest candidate is farther than the jump threshold,
  every remaining candidate is treated as a disconnected outlier and dropped
"""

import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from . import constants
from . import utils
from .models import TrackPath

logger = logging.getLogger(__name__)

Point = Tuple[float, float]


def snap_to_grid(value: float, grid_size: float) -> float:
    """Round a coordinate to the nearest multiple of grid_size, halves upward."""
    return math.floor(value / grid_size + 0.5) * grid_size


def discretize_points(points: Iterable[Point], grid_size: float = constants.TRACK_GRID_SIZE) -> List[Point]:
    """
    Deduplicate points that fall into the same grid cell.

    Each occupied cell is represented by the first raw point that landed in
    it, so the candidate count is bounded by the track area rather than by
    the number of samples.

    Args:
        points: (x, y) positions in ingestion order.
        grid_size: Cell size in position units. Must be positive.

    Returns:
        Candidate points, one per occupied cell, in first-seen order.
    """
    if grid_size <= 0:
        raise ValueError(f"grid_size must be positive, got {grid_size}")

    seen = set()
    candidates = []

    for x, y in points:
        key = (snap_to_grid(x, grid_size), snap_to_grid(y, grid_size))
        if key in seen:
            continue
        seen.add(key)
        candidates.append((float(x), float(y)))

    return candidates


def order_nearest_neighbor(candidates: Sequence[Point], jump_threshold: Optional[float] = None,
                           jump_policy: str = constants.TRACK_JUMP_POLICY) -> Tuple[List[int], int]:
    """
    Order candidates into a path by repeated nearest-neighbour selection.

    Starts from the first candidate. At each step the unvisited candidate
    closest to the last placed point is appended; ties go to the earliest
    candidate.

    Args:
        candidates: Deduplicated (x, y) points.
        jump_threshold: Distance above which a step counts as a jump.
        jump_policy: "append" or "discard" (see module docstring).

    Returns:
        Tuple of (ordered candidate indices, number of discarded candidates).
    """
    if jump_policy not in constants.TRACK_JUMP_POLICIES:
        raise ValueError(f"Unknown jump policy: {jump_policy}")

    count = len(candidates)
    if count == 0:
        return [], 0

    coords = np.asarray(candidates, dtype=float)
    visited = np.zeros(count, dtype=bool)
    order = [0]
    visited[0] = True
    jumps = 0

    for _ in range(count - 1):
        last = coords[order[-1]]
        dist = np.hypot(coords[:, 0] - last[0], coords[:, 1] - last[1])
        dist[visited] = np.inf
        nearest = int(np.argmin(dist))
        step = float(dist[nearest])

        if jump_threshold is not None and step > jump_threshold:
            if jump_policy == "discard":
                break
            jumps += 1

        order.append(nearest)
        visited[nearest] = True

    discarded = count - len(order)
    if jumps:
        logger.debug("Track path chained across %d jumps above %.1f", jumps, jump_threshold)
    if discarded:
        logger.debug("Track path discarded %d outlier candidates", discarded)

    return order, discarded


def is_closed_loop(ordered: Sequence[Point], tolerance: Optional[float] = None) -> bool:
    """
    Decide whether an ordered polyline is a circuit.

    A path is closed when it has at least three points, the gap from the last
    point back to the first is within tolerance (no limit when None), and that
    gap is short relative to the path itself. The last condition keeps an
    open stretch, such as a straight line, from being closed.

    Args:
        ordered: Path points in chaining order.
        tolerance: Maximum closing gap, or None.

    Returns:
        True if the path should be drawn as a loop.
    """
    if len(ordered) < 3:
        return False

    coords = np.asarray(ordered, dtype=float)
    length = float(np.hypot(*np.diff(coords, axis=0).T).sum())
    (x0, y0), (x1, y1) = ordered[0], ordered[-1]
    gap = utils.euclidean(x0, y0, x1, y1)

    if tolerance is not None and gap > tolerance:
        return False
    return gap <= constants.TRACK_CLOSURE_GAP_RATIO * length


def reconstruct_track_path(points: Iterable[Point], grid_size: float = constants.TRACK_GRID_SIZE,
                           jump_threshold: Optional[float] = None,
                           jump_policy: str = constants.TRACK_JUMP_POLICY,
                           close_tolerance: Optional[float] = None) -> TrackPath:
    """
    Build the ordered track polyline from a session's point cloud.

    Steps:
    1. Snap to a grid of size grid_size and deduplicate cells
    2. Chain candidates by greedy nearest neighbour
    3. Apply the jump policy for steps longer than jump_threshold
    4. Mark the path closed when it loops back on itself (see is_closed_loop)

    Args:
        points: (x, y) positions from every entity and frame of the session.
        grid_size: Snapping cell size. Default 5.
        jump_threshold: Jump distance, or None to disable jump handling.
        jump_policy: "append" (default) or "discard".
        close_tolerance: Maximum closing gap for a closed loop.

    Returns:
        TrackPath; empty when there are no points.
    """
    candidates = discretize_points(points, grid_size)
    order, discarded = order_nearest_neighbor(candidates, jump_threshold, jump_policy)
    ordered = tuple(candidates[idx] for idx in order)

    closed = is_closed_loop(ordered, close_tolerance if close_tolerance is not None else jump_threshold)

    logger.info("Reconstructed track path: %d points from %d candidates (closed=%s)",
                len(ordered), len(candidates), closed)

    return TrackPath(
        points=ordered,
        closed=closed,
        grid_size=grid_size,
        jump_policy=jump_policy,
        discarded=discarded,
    )


def compute_bounds(points: Iterable[Point], padding: float = 0.0) -> Dict[str, float]:
    """
    Compute the bounding box of a point cloud.

    Args:
        points: (x, y) positions.
        padding: Margin added on every side.

    Returns:
        Dictionary with min_x, max_x, min_y, max_y. Falls back to a
        0..1000 square when there are no points.
    """
    coords = np.asarray(list(points), dtype=float)
    if coords.size == 0:
        return dict(constants.DEFAULT_BOUNDS)

    return {
        "min_x": float(coords[:, 0].min()) - padding,
        "max_x": float(coords[:, 0].max()) + padding,
        "min_y": float(coords[:, 1].min()) - padding,
        "max_y": float(coords[:, 1].max()) + padding,
    }

"""
Sample Filtering for Circuit Position Replay

This module is the ingestion boundary of the pipeline. Raw position rows from
the data source are loosely shaped (nullable coordinates, string numbers,
placeholder zero-zero positions); they are validated here and converted into
immutable PositionSample records. Anything malformed is dropped silently.
"""

import logging
from typing import Iterable, List, Mapping, Optional

import numpy as np

from . import utils
from .models import PositionSample

logger = logging.getLogger(__name__)

# Accepted column aliases, first match wins
ENTITY_KEYS = ("entity_id", "driver_number", "entity")
X_KEYS = ("x", "x_coord")
Y_KEYS = ("y", "y_coord")
Z_KEYS = ("z", "z_coord")
ID_KEYS = ("sample_id", "id")


def _first(record: Mapping, keys) -> object:
    for key in keys:
        if key in record:
            return record[key]
    return None


def is_sentinel(x: float, y: float) -> bool:
    """True for the placeholder origin emitted before a position is known."""
    return x == 0 and y == 0


def coerce_sample(record, session_id: Optional[int] = None) -> Optional[PositionSample]:
    """
    Convert one raw record into a PositionSample.

    Args:
        record: Mapping with entity, coordinate and timestamp fields, or an
                existing PositionSample.
        session_id: Session to assign when the record carries none.

    Returns:
        PositionSample, or None when the record is malformed: missing entity,
        missing/non-finite coordinates, the (0, 0) sentinel, or an unparsable
        timestamp.
    """
    if isinstance(record, PositionSample):
        if not (np.isfinite(record.x) and np.isfinite(record.y)) or is_sentinel(record.x, record.y):
            return None
        return record

    if not isinstance(record, Mapping):
        return None

    entity = _first(record, ENTITY_KEYS)
    if entity is None or str(entity).strip() == "":
        return None

    x = utils.safe_float(_first(record, X_KEYS))
    y = utils.safe_float(_first(record, Y_KEYS))
    if not (np.isfinite(x) and np.isfinite(y)) or is_sentinel(x, y):
        return None

    timestamp = utils.to_timestamp(record.get("timestamp"))
    if timestamp is None:
        return None

    z = utils.safe_float(_first(record, Z_KEYS))
    raw_session = record.get("session_id")
    if raw_session is None:
        raw_session = session_id
    raw_id = _first(record, ID_KEYS)

    try:
        session = int(raw_session) if raw_session is not None else 0
        sample_id = int(raw_id) if raw_id is not None else None
    except (TypeError, ValueError):
        return None

    return PositionSample(
        entity_id=str(entity).strip(),
        x=x,
        y=y,
        z=float(z) if np.isfinite(z) else None,
        timestamp=timestamp,
        session_id=session,
        sample_id=sample_id,
    )


def filter_samples(records: Iterable, session_id: Optional[int] = None) -> List[PositionSample]:
    """
    Keep only samples with both coordinates present and not at the origin.

    Pure function: input order is preserved and nothing is raised for bad
    rows, they are simply left out.

    Args:
        records: Raw records (mappings or PositionSample instances).
        session_id: Session to assign when a record carries none.

    Returns:
        List of validated PositionSample records.
    """
    samples = []
    dropped = 0

    for record in records or ():
        sample = coerce_sample(record, session_id)
        if sample is None:
            dropped += 1
            continue
        samples.append(sample)

    if dropped:
        logger.debug("Dropped %d malformed samples (%d kept)", dropped, len(samples))

    return samples

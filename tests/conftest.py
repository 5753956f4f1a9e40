import pandas as pd
import pytest

from trackreplay.models import PositionSample

BASE_TIME = pd.Timestamp("2024-05-26T14:00:00", tz="UTC")


def ts(seconds: float) -> pd.Timestamp:
    return BASE_TIME + pd.Timedelta(seconds=seconds)


def make_sample(entity_id="1", x=1.0, y=1.0, t=0.0, session_id=233, z=None, sample_id=None) -> PositionSample:
    return PositionSample(
        entity_id=str(entity_id),
        x=float(x),
        y=float(y),
        z=z,
        timestamp=ts(t),
        session_id=session_id,
        sample_id=sample_id,
    )


def make_record(entity_id="1", x=1.0, y=1.0, t=0.0, sample_id=None, session_id=233) -> dict:
    record = {
        "session_id": session_id,
        "entity_id": str(entity_id),
        "x": x,
        "y": y,
        "z": None,
        "timestamp": ts(t).isoformat(),
    }
    if sample_id is not None:
        record["id"] = sample_id
    return record


@pytest.fixture
def square_records():
    """Two entities lapping a 100x100 square, one corner per second."""
    corners = [(100.0, 100.0), (200.0, 100.0), (200.0, 200.0), (100.0, 200.0)]
    records = []
    sample_id = 0
    for t in range(8):
        for offset, entity_id in enumerate(("1", "44")):
            x, y = corners[(t + offset * 2) % 4]
            sample_id += 1
            records.append(make_record(entity_id, x, y, t, sample_id=sample_id))
    return records

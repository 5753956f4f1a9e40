"""
Data Loading for Circuit Position Replay

This module defines the data-access collaborator consumed by the engine and
two implementations: an in-memory source (tests, live buffers) and a CSV
source reading one file per session from a data directory.

Records are returned raw; validation happens in sample_filter.
"""

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Protocol

import pandas as pd

from . import constants
from .models import EntityMetadata

logger = logging.getLogger(__name__)

SESSION_FILE_RE = re.compile(r"^session_(\d+)\.csv$")


class SampleSource(Protocol):
    """Anything that can deliver position rows and entity metadata per session."""

    def list_sessions(self) -> List[int]:
        ...

    def fetch_samples(self, session_id: int) -> List:
        ...

    def fetch_entity_metadata(self, session_id: int) -> Dict[str, EntityMetadata]:
        ...


class InMemorySampleSource:
    """Sample source backed by plain dictionaries."""

    def __init__(self, samples: Optional[Mapping[int, Iterable]] = None,
                 metadata: Optional[Mapping[int, Mapping[str, EntityMetadata]]] = None):
        self._samples = {int(k): list(v) for k, v in (samples or {}).items()}
        self._metadata = {int(k): dict(v) for k, v in (metadata or {}).items()}

    def list_sessions(self) -> List[int]:
        return sorted(self._samples, reverse=True)

    def fetch_samples(self, session_id: int) -> List:
        if session_id not in self._samples:
            raise KeyError(f"Unknown session: {session_id}")
        return list(self._samples[session_id])

    def fetch_entity_metadata(self, session_id: int) -> Dict[str, EntityMetadata]:
        return dict(self._metadata.get(session_id, {}))


def read_records(csv_path: Path) -> List[Dict]:
    """
    Read a CSV file into a list of row dictionaries.

    Empty cells become None so the sample filter sees them as missing.

    Args:
        csv_path: Path to the CSV file.

    Returns:
        List of dictionaries, one per row.
    """
    df = pd.read_csv(csv_path, dtype={"entity_id": str, "driver_number": str})
    if df.empty:
        return []
    return df.astype(object).where(df.notna(), None).to_dict("records")


class CsvSampleSource:
    """
    Sample source reading ``session_<id>.csv`` files from a directory.

    Each session file holds one row per sample with at least entity_id
    (or driver_number), x, y and timestamp columns; z, id and session_id are
    optional. Entity metadata comes from an optional ``entities.csv`` with
    session_id, entity_id, display_name, color_token and team_name columns.
    """

    def __init__(self, data_dir: Path = constants.DATA_DIR):
        self.data_dir = Path(data_dir)

    def _session_file(self, session_id: int) -> Path:
        return self.data_dir / f"session_{int(session_id)}.csv"

    def list_sessions(self) -> List[int]:
        if not self.data_dir.exists():
            return []

        sessions = []
        for file_path in self.data_dir.glob(constants.SESSION_FILE_PATTERN):
            match = SESSION_FILE_RE.match(file_path.name)
            if match:
                sessions.append(int(match.group(1)))

        # Newest session first
        return sorted(sessions, reverse=True)

    def fetch_samples(self, session_id: int) -> List[Dict]:
        path = self._session_file(session_id)
        if not path.exists():
            raise KeyError(f"Unknown session: {session_id}")

        records = read_records(path)
        for record in records:
            if record.get("session_id") is None:
                record["session_id"] = int(session_id)
        logger.info("Loaded %d rows for session %s from %s", len(records), session_id, path.name)
        return records

    def fetch_entity_metadata(self, session_id: int) -> Dict[str, EntityMetadata]:
        path = self.data_dir / constants.ENTITY_FILE_NAME
        if not path.exists():
            return {}

        metadata = {}
        for record in read_records(path):
            row_session = record.get("session_id")
            if row_session is not None and int(row_session) != int(session_id):
                continue
            entity_id = record.get("entity_id")
            if entity_id is None:
                continue
            entity_id = str(entity_id)
            metadata[entity_id] = EntityMetadata(
                entity_id=entity_id,
                display_name=str(record.get("display_name") or ""),
                color_token=str(record.get("color_token") or constants.DEFAULT_ENTITY_COLOR),
                team_name=str(record.get("team_name") or ""),
            )
        return metadata

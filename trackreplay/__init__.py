"""
Circuit Position Replay

Reconstructs circuit geometry from noisy position samples, replays recorded
sessions frame by frame, derives per-entity kinematics and builds mean-speed
heatmaps. This package re-exports the public entry points of its modules.
"""

# Import constants
from .constants import DATA_DIR

# Import configuration
from .config import EngineConfig, load_config, configure_logging

# Import records
from .models import (
    PositionSample,
    EnhancedSample,
    Frame,
    TrackPath,
    HeatmapCell,
    TrajectoryPoint,
    EntityTrajectory,
    ReplayStatus,
    ReplayState,
    EntityMetadata,
    EntityStats,
    LiveEvent,
    LiveEventKind,
)

# Import pipeline stages
from .sample_filter import filter_samples, coerce_sample
from .timeline import TimelineIndex, build_timeline
from .metrics import compute_derived_metrics, entity_stats, select_samples
from .track_path import reconstruct_track_path, compute_bounds
from .trail import TrailWindower
from .heatmap import build_heatmap
from .trajectory import build_trajectories
from .replay import ReplayScheduler, ReplayTimer

# Import data sources
from .data_loading import SampleSource, InMemorySampleSource, CsvSampleSource

# Import session builder and engine
from .session import SessionSnapshot, build_session_snapshot, build_session_payload
from .live import fold_event
from .engine import SessionEngine, FrameView, CurrentPosition

# Import export functions
from .export import export_entity_csv

__all__ = [
    # Constants and configuration
    "DATA_DIR",
    "EngineConfig",
    "load_config",
    "configure_logging",
    # Records
    "PositionSample",
    "EnhancedSample",
    "Frame",
    "TrackPath",
    "HeatmapCell",
    "TrajectoryPoint",
    "EntityTrajectory",
    "ReplayStatus",
    "ReplayState",
    "EntityMetadata",
    "EntityStats",
    "LiveEvent",
    "LiveEventKind",
    # Pipeline stages
    "filter_samples",
    "coerce_sample",
    "TimelineIndex",
    "build_timeline",
    "compute_derived_metrics",
    "entity_stats",
    "select_samples",
    "reconstruct_track_path",
    "compute_bounds",
    "TrailWindower",
    "build_heatmap",
    "build_trajectories",
    "ReplayScheduler",
    "ReplayTimer",
    # Data sources
    "SampleSource",
    "InMemorySampleSource",
    "CsvSampleSource",
    # Session builder and engine
    "SessionSnapshot",
    "build_session_snapshot",
    "build_session_payload",
    "fold_event",
    "SessionEngine",
    "FrameView",
    "CurrentPosition",
    # Export
    "export_entity_csv",
]

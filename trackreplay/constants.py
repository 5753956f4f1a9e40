"""
Constants for Circuit Position Replay

This module defines path constants and engine defaults used throughout the
replay and analytics system.
"""

from pathlib import Path

# Position Data folder is one level up from trackreplay/
DATA_DIR = Path(__file__).parent.parent / "Position Data"
ENTITY_FILE_NAME = "entities.csv"
SESSION_FILE_PATTERN = "session_*.csv"

# Track reconstruction
TRACK_GRID_SIZE = 5.0
TRACK_JUMP_POLICY = "append"
TRACK_JUMP_POLICIES = ("append", "discard")
# Closing gap may be at most this fraction of the open path length
TRACK_CLOSURE_GAP_RATIO = 0.5

# Heatmap and trails
HEATMAP_CELL_SIZE = 200.0
TRAIL_LENGTH = 20

# Velocity vector length per unit of speed
VELOCITY_VECTOR_SCALE = 0.1

# Replay
BASE_INTERVAL_S = 1.0
SPEED_OPTIONS = (0.5, 1.0, 2.0, 5.0, 10.0)

# Rendering fallbacks
DEFAULT_ENTITY_COLOR = "#ffffff"
DEFAULT_BOUNDS = {"min_x": 0.0, "max_x": 1000.0, "min_y": 0.0, "max_y": 1000.0}
BOUNDS_PADDING = 500.0

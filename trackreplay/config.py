"""
Configuration for Circuit Position Replay

This module holds the EngineConfig defaults, loads YAML configuration files
with nested lookups, and sets up the logging shared by the app and scripts.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from . import constants

CONFIG_ENV_VAR = "TRACKREPLAY_CONFIG"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class EngineConfig:
    """
    Tunable parameters of the pipeline, defaulting to the module constants.

    Raises:
        ValueError: If a size, length or interval is not positive, or the
                    track jump policy is unknown.
    """

    data_dir: Path = constants.DATA_DIR
    track_grid_size: float = constants.TRACK_GRID_SIZE
    track_jump_threshold: Optional[float] = None
    track_jump_policy: str = constants.TRACK_JUMP_POLICY
    track_close_tolerance: Optional[float] = None
    heatmap_cell_size: float = constants.HEATMAP_CELL_SIZE
    trail_length: int = constants.TRAIL_LENGTH
    base_interval_s: float = constants.BASE_INTERVAL_S
    speed_options: Tuple[float, ...] = field(default=constants.SPEED_OPTIONS)
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.track_grid_size <= 0:
            raise ValueError("track.grid_size must be positive")
        if self.heatmap_cell_size <= 0:
            raise ValueError("heatmap.cell_size must be positive")
        if self.trail_length < 1:
            raise ValueError("trail.length must be at least 1")
        if self.base_interval_s <= 0:
            raise ValueError("replay.base_interval_s must be positive")
        if self.track_jump_policy not in constants.TRACK_JUMP_POLICIES:
            raise ValueError(f"Unknown track.jump_policy: {self.track_jump_policy}")


def load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a YAML configuration file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed mapping; an empty file yields an empty dictionary.
    """
    with Path(path).open("r", encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def get_nested(config: Dict[str, Any], keys: List[str], default: Any) -> Any:
    """
    Retrieve a nested value from a config dictionary.

    Args:
        config: Parsed configuration.
        keys: Path of keys, e.g. ["track", "grid_size"].
        default: Value returned when any key along the path is missing.

    Returns:
        The nested value, or default.
    """
    current: Any = config
    for key in keys:
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


def config_from_dict(cfg: Dict[str, Any]) -> EngineConfig:
    """Build an EngineConfig from a nested dictionary; missing keys keep defaults."""
    defaults = EngineConfig()
    speeds = get_nested(cfg, ["replay", "speed_options"], None)
    return EngineConfig(
        data_dir=Path(get_nested(cfg, ["data", "dir"], defaults.data_dir)),
        track_grid_size=float(get_nested(cfg, ["track", "grid_size"], defaults.track_grid_size)),
        track_jump_threshold=get_nested(cfg, ["track", "jump_threshold"], None),
        track_jump_policy=str(get_nested(cfg, ["track", "jump_policy"], defaults.track_jump_policy)),
        track_close_tolerance=get_nested(cfg, ["track", "close_tolerance"], None),
        heatmap_cell_size=float(get_nested(cfg, ["heatmap", "cell_size"], defaults.heatmap_cell_size)),
        trail_length=int(get_nested(cfg, ["trail", "length"], defaults.trail_length)),
        base_interval_s=float(get_nested(cfg, ["replay", "base_interval_s"], defaults.base_interval_s)),
        speed_options=tuple(float(s) for s in speeds) if speeds else defaults.speed_options,
        log_level=str(get_nested(cfg, ["logging", "level"], defaults.log_level)),
    )


def load_config(path: Optional[Union[str, Path]] = None) -> EngineConfig:
    """
    Load engine configuration.

    Args:
        path: YAML file to read. When None, $TRACKREPLAY_CONFIG is used.

    Returns:
        EngineConfig from the file, or the defaults when no file is given.
    """
    path = path or os.environ.get(CONFIG_ENV_VAR)
    if not path:
        return EngineConfig()
    return config_from_dict(load_yaml(path))


def configure_logging(level: str = "INFO") -> None:
    """
    Configure the root logger with a single console handler.

    Args:
        level: Level name such as "INFO" or "debug"; unknown names fall back to INFO.
    """
    level_name = str(level).upper()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(stream_handler)

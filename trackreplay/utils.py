"""
Utility Functions for Circuit Position Replay

This module provides helper functions for value coercion, rounding, geometry
and colour mapping used throughout the replay pipeline.
"""

import math
from typing import Optional, Tuple

import numpy as np
import pandas as pd


def safe_float(value) -> float:
    """
    Safely convert a value to float, returning NaN on failure.

    Args:
        value: Value to convert (string, number, None, etc.).

    Returns:
        Float value, or np.nan if conversion fails.
    """
    try:
        return float(value)
    except (TypeError, ValueError):
        return np.nan


def to_timestamp(value) -> Optional[pd.Timestamp]:
    """
    Parse a timestamp into a timezone-aware UTC pandas Timestamp.

    Accepts ISO-8601 strings, datetimes, pandas Timestamps and numbers
    (interpreted as seconds since the epoch). Naive values are assumed UTC.

    Args:
        value: Raw timestamp value.

    Returns:
        UTC Timestamp, or None if the value cannot be parsed.
    """
    if value is None:
        return None
    try:
        if isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool):
            if not math.isfinite(float(value)):
                return None
            ts = pd.to_datetime(float(value), unit="s", utc=True)
        else:
            ts = pd.Timestamp(value)
            ts = ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")
    except (TypeError, ValueError, OverflowError):
        return None
    if pd.isna(ts):
        return None
    return ts


def round_float(value, digits: int = 3) -> Optional[float]:
    """
    Round a float value, handling None, NaN, and Inf.

    Args:
        value: Value to round.
        digits: Number of decimal places. Default 3.

    Returns:
        Rounded float, or None if value is None, NaN, or Inf.
    """
    if value is None or (isinstance(value, float) and (np.isnan(value) or np.isinf(value))):
        return None
    return round(float(value), digits)


def euclidean(x1: float, y1: float, x2: float, y2: float) -> float:
    """Planar distance between (x1, y1) and (x2, y2)."""
    return math.hypot(x2 - x1, y2 - y1)


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def speed_color(speed: float, max_speed: float) -> str:
    """
    Map a speed to an HSL colour from green (slow) to red (fast).

    Args:
        speed: Speed of the sample.
        max_speed: Reference maximum speed for the selection.

    Returns:
        CSS ``hsl()`` colour string.
    """
    if max_speed <= 0 or not math.isfinite(max_speed):
        intensity = 0.0
    else:
        intensity = min(max(speed, 0.0) / max_speed, 1.0)
    hue = (1 - intensity) * 120
    return f"hsl({round(hue, 1)}, 100%, 50%)"


def heat_color(intensity: float) -> Tuple[str, float]:
    """
    Map a normalized heatmap intensity to a fill colour and opacity.

    Args:
        intensity: Value in [0, 1].

    Returns:
        Tuple of (CSS ``hsl()`` colour, alpha in [0, 0.7]).
    """
    intensity = min(max(intensity, 0.0), 1.0)
    hue = (1 - intensity) * 240
    return f"hsl({round(hue, 1)}, 100%, 50%)", round(intensity * 0.7, 3)

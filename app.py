"""
FastAPI Web Application for Circuit Position Replay

This module provides a REST API over the replay engine: available sessions,
the per-session payload (track path, bounds, entities, statistics), rendered
frames for any replay position, heatmaps and CSV export.
"""

import logging
from collections import OrderedDict
from typing import Dict, FrozenSet, Optional, Tuple
from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import PlainTextResponse
import trackreplay


# ============================================================================
# APPLICATION SETUP
# ============================================================================

engine_config = trackreplay.load_config()
trackreplay.configure_logging(engine_config.log_level)
logger = logging.getLogger("trackreplay.app")

source: trackreplay.SampleSource = trackreplay.CsvSampleSource(engine_config.data_dir)

app = FastAPI()


# ============================================================================
# SESSION LOADING & CACHING
# ============================================================================

# Maximum number of entity-filtered views kept alongside the full sessions
FILTERED_CACHE_SIZE = 32

# Cache for full sessions (session_id -> snapshot)
session_cache: Dict[int, trackreplay.SessionSnapshot] = {}

# Least-recently-used filtered views ((session_id, entity ids) -> snapshot)
filtered_cache: "OrderedDict[Tuple[int, FrozenSet[str]], trackreplay.SessionSnapshot]" = OrderedDict()


def parse_entities(entities: Optional[str]) -> Optional[FrozenSet[str]]:
    """
    Parse a comma-separated entity filter.

    Args:
        entities: e.g. "1,44". None or blank means every entity.

    Returns:
        Frozen set of entity ids, or None for no filter.
    """
    if entities is None:
        return None
    selected = frozenset(part.strip() for part in entities.split(",") if part.strip())
    return selected or None


def load_full_session(session_id: int) -> trackreplay.SessionSnapshot:
    """
    Load and process position data for a session, every entity included.

    Runs the pipeline (filter, index, metrics, track path) once per session;
    later requests are served from the cache.

    Raises:
        HTTPException: If the session is unknown (status 404).
    """
    # Check cache first
    if session_id in session_cache:
        return session_cache[session_id]

    logger.info("Loading session %s", session_id)
    try:
        records = source.fetch_samples(session_id)
    except KeyError as exc:
        logger.warning("Requested unknown session %s", session_id)
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found") from exc

    metadata = source.fetch_entity_metadata(session_id)
    snapshot = trackreplay.build_session_snapshot(session_id, records, engine_config, metadata)

    # Cache the session
    session_cache[session_id] = snapshot
    return snapshot


def load_session(session_id: int, entities: Optional[str] = None) -> trackreplay.SessionSnapshot:
    """
    Load a session, optionally restricted to some entities.

    Filtered views are derived from the cached full session and kept in a
    small least-recently-used cache.

    Args:
        session_id: Session to load.
        entities: Optional comma-separated entity filter.

    Returns:
        SessionSnapshot for the session and filter.

    Raises:
        HTTPException: If the session or a requested entity is unknown
                       (status 404).
    """
    full = load_full_session(session_id)
    selected = parse_entities(entities)
    if selected is None:
        return full

    missing = sorted(selected.difference(full.entity_ids))
    if missing:
        raise HTTPException(
            status_code=404,
            detail=f"Entities {', '.join(missing)} not found in session {session_id}"
        )

    key = (session_id, selected)
    if key in filtered_cache:
        filtered_cache.move_to_end(key)
        return filtered_cache[key]

    snapshot = trackreplay.build_session_snapshot(
        session_id, full.samples, engine_config, full.metadata, selected
    )
    filtered_cache[key] = snapshot
    if len(filtered_cache) > FILTERED_CACHE_SIZE:
        filtered_cache.popitem(last=False)
    return snapshot


def check_window(start: float, end: float) -> None:
    if start > end:
        raise HTTPException(status_code=400, detail="start must not exceed end")


def engine_for(snapshot: trackreplay.SessionSnapshot) -> trackreplay.SessionEngine:
    """Create a request-scoped engine positioned on a cached snapshot."""
    engine = trackreplay.SessionEngine(source, engine_config)
    engine.install_snapshot(snapshot)
    return engine


# ============================================================================
# API ROUTES - SESSION MANAGEMENT
# ============================================================================

@app.get("/api/sessions")
def get_sessions():
    """
    Get list of available sessions, newest first.

    Returns:
        List of session ids.
    """
    return source.list_sessions()


@app.get("/api/replay/speeds")
def get_speed_options():
    """
    Get the replay speed multipliers offered by transport controls.

    Returns:
        List of speed multipliers.
    """
    return list(engine_config.speed_options)


# ============================================================================
# API ROUTES - DATA RETRIEVAL
# ============================================================================

@app.get("/api/session")
def get_session(session: int = Query(..., description="Session id to load"),
                entities: Optional[str] = Query(None, description="Comma-separated entity ids"),
                start: float = Query(0.0, ge=0, le=100, description="Stats window start (%)"),
                end: float = Query(100.0, ge=0, le=100, description="Stats window end (%)")):
    """
    Get the session payload: track path, bounds, entities, timestamps and
    per-entity statistics over the selected window.

    Returns:
        Dictionary from build_session_payload().
    """
    check_window(start, end)
    snapshot = load_session(session, entities)
    return trackreplay.build_session_payload(snapshot, start, end)


@app.get("/api/frame/{index}")
def get_frame(index: int,
              session: int = Query(..., description="Session id to load"),
              entities: Optional[str] = Query(None, description="Comma-separated entity ids"),
              heatmap: bool = Query(False, description="Include heatmap cells")):
    """
    Get the rendered frame at a replay position.

    The index is clamped to the session's frames, as a seek would be.

    Returns:
        Dictionary from FrameView.to_dict().
    """
    snapshot = load_session(session, entities)
    engine = engine_for(snapshot)
    engine.heatmap_mode = heatmap
    engine.seek(index)
    return engine.frame_view().to_dict()


@app.get("/api/heatmap")
def get_heatmap(session: int = Query(..., description="Session id to load"),
                entities: Optional[str] = Query(None, description="Comma-separated entity ids"),
                start: float = Query(0.0, ge=0, le=100, description="Window start (%)"),
                end: float = Query(100.0, ge=0, le=100, description="Window end (%)")):
    """
    Get mean-speed heatmap cells for a time window.

    Returns:
        List of heatmap cell dictionaries; empty when nothing is selected.
    """
    check_window(start, end)
    snapshot = load_session(session, entities)
    engine = engine_for(snapshot)
    return [cell.to_dict() for cell in engine.heatmap(start, end)]


@app.get("/api/trajectories")
def get_trajectories(session: int = Query(..., description="Session id to load"),
                     entities: Optional[str] = Query(None, description="Comma-separated entity ids"),
                     start: float = Query(0.0, ge=0, le=100, description="Window start (%)"),
                     end: float = Query(100.0, ge=0, le=100, description="Window end (%)")):
    """
    Get speed-coloured trajectories for each selected entity over a window.

    Colours are relative to each entity's own top speed in the window.

    Returns:
        Dictionary mapping entity id to EntityTrajectory.to_dict().
    """
    check_window(start, end)
    snapshot = load_session(session, entities)
    engine = engine_for(snapshot)
    return {entity_id: trajectory.to_dict() for entity_id, trajectory in engine.trajectories(start, end).items()}


# ============================================================================
# API ROUTES - EXPORT
# ============================================================================

@app.get("/api/export/entity/{entity_id}")
def export_entity(entity_id: str, session: int = Query(..., description="Session id to export")):
    """
    Export one entity's derived samples as CSV.

    Returns:
        PlainTextResponse: CSV file with Content-Disposition header
        for download. Filename: session_{session}_entity_{entity_id}.csv

    Raises:
        HTTPException: If the entity has no samples (status 404).
    """
    snapshot = load_session(session)
    try:
        csv_body = trackreplay.export_entity_csv(snapshot.enhanced, entity_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    headers = {"Content-Disposition": f"attachment; filename=session_{session}_entity_{entity_id}.csv"}
    return PlainTextResponse(
        csv_body,
        media_type="text/csv",
        headers=headers
    )


# ============================================================================
# RUN INSTRUCTIONS
# ============================================================================
# Run with: uvicorn app:app --reload

"""
FastAPI backend for the Workshop Tracker dashboard.

Serves per-order timeline breakdowns and the completed-jobs archive, read
from the workshop's SQLite log store. Supports CORS for local development.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

# Ensure we import from the local src directory, not elsewhere
tracker_root = Path(__file__).parent.parent
if str(tracker_root) not in sys.path:
    sys.path.insert(0, str(tracker_root))

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from src.core.aggregator import Aggregator
from src.core.durations import parse_timestamp
from src.core.errors import OrderNotFound
from src.core.timeline import visible_intervals

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = tracker_root / "data" / "workshop.db"
DEFAULT_PORT = 4301


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Load ``config.json``, returning an empty config when it is missing or unreadable.

    Recognised keys: ``db_path`` and ``backend.port``.
    """
    try:
        with open(config_path, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        logger.info(f"No config at {config_path}, using defaults")
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not load {config_path}: {e}, using defaults")
    return {}


config = load_config(tracker_root / "config.json")
db_path = Path(config.get("db_path") or DEFAULT_DB_PATH)
logger.info(f"Using log store: {db_path}")

# Initialize FastAPI app
app = FastAPI(
    title="Workshop Tracker API",
    description="Production-stage timelines and archive durations for the jewelry workshop",
    version="1.0.0",
)

# Configure CORS - allow all localhost origins in development
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"http://(localhost|127\.0\.0\.1):\d+",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

aggregator = Aggregator(db_path=db_path)

# In-memory archive cache: (rows, cached_at)
archive_cache: Dict[str, tuple[Dict[str, Any], datetime]] = {}
CACHE_TTL_SECONDS = 60


@app.get("/")  # type: ignore[misc]
async def root() -> Dict[str, Any]:
    """
    Root endpoint with API information.

    Returns
    -------
    dict
        API information and status
    """
    return {
        "name": "Workshop Tracker API",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "/api/orders/{order_id}/timeline": "Stage/wait breakdown for one order",
            "/api/archive": "Completed jobs with per-stage durations",
            "/api/analytics": "Completions, QC redos and quality rate",
            "/health": "Health check",
        },
    }


@app.get("/health")  # type: ignore[misc]
async def health() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/api/orders/{order_id}/timeline")  # type: ignore[misc]
async def get_timeline(
    order_id: str,
    now: Optional[str] = Query(
        None, description="Evaluation instant (ISO-8601); defaults to the current time"
    ),
    min_wait_seconds: int = Query(
        0, ge=0, description="Hide waits not longer than this in visible_intervals"
    ),
) -> Dict[str, Any]:
    """
    Get the reconstructed timeline for one order.

    Unfinished orders are measured up to ``now``, so repeated calls show
    their waiting time growing.

    Parameters
    ----------
    order_id : str
        Order identifier
    now : Optional[str]
        Evaluation instant; the current UTC time when omitted
    min_wait_seconds : int
        Display threshold for wait intervals (default 0)

    Returns
    -------
    dict
        Serialized timeline plus ``visible_intervals``
    """
    if now is None:
        evaluated_at = datetime.now(timezone.utc)
    else:
        evaluated_at = parse_timestamp(now)
        if evaluated_at is None:
            raise HTTPException(status_code=400, detail=f"Invalid 'now' timestamp: {now}")

    try:
        timeline = aggregator.build_timeline(order_id, evaluated_at)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error building timeline for {order_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=500, detail=f"Error building timeline: {str(e)}"
        )

    result = timeline.to_dict()
    result["visible_intervals"] = [
        interval.to_dict()
        for interval in visible_intervals(timeline, min_wait_seconds)
    ]
    return result


@app.get("/api/archive")  # type: ignore[misc]
async def get_archive(
    use_cache: bool = Query(True, description="Use cached archive if available"),
) -> Dict[str, Any]:
    """
    Get completed jobs with per-stage durations.

    Returns
    -------
    dict
        ``{"jobs": [...], "count": n}``; each job carries its raw
        ``stage_durations`` map and ``formatted`` display columns
    """
    try:
        if use_cache and "archive" in archive_cache:
            cached, cache_time = archive_cache["archive"]
            age = (datetime.now(timezone.utc) - cache_time).total_seconds()
            if age < CACHE_TTL_SECONDS:
                logger.info(f"Returning cached archive (age: {age:.1f}s)")
                return cached

        rows = aggregator.build_archive()
        result = {"jobs": rows, "count": len(rows)}
        archive_cache["archive"] = (result, datetime.now(timezone.utc))
        return result

    except Exception as e:
        logger.error(f"Error building archive: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error building archive: {str(e)}")


@app.get("/api/analytics")  # type: ignore[misc]
async def get_analytics() -> Dict[str, Any]:
    """
    Get shop-wide quality metrics.

    Returns
    -------
    dict
        Completion and redo counts, quality rate, per-reason redo counts
        and the most recent redos
    """
    try:
        return aggregator.build_analytics()
    except Exception as e:
        logger.error(f"Error building analytics: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error building analytics: {str(e)}")


if __name__ == "__main__":
    import uvicorn

    port = config.get("backend", {}).get("port", DEFAULT_PORT)
    logger.info(f"Starting Workshop Tracker API on http://0.0.0.0:{port}")
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")  # nosec B104

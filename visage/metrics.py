# visage/metrics.py
"""
Prometheus metrics and /metrics endpoint for the FastAPI app.
"""

from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# Images accepted into a session, by provenance
CAPTURES = Counter(
    "visage_captures_total",
    "Total number of images captured into a session",
    ["source"],  # uploaded, captured
)

# Classification calls by final outcome
ANALYSES_COMPLETED = Counter(
    "visage_analyses_completed_total",
    "Total number of face shape analyses by outcome",
    ["outcome"],  # analyzed, error, MissingCredential, NetworkOrServerError, MalformedResponse
)

ANALYSIS_SECONDS = Histogram(
    "visage_analysis_seconds",
    "Time spent waiting for the face shape classification call",
)

# Inspiration image calls by final outcome
ENRICHMENTS_COMPLETED = Counter(
    "visage_enrichments_completed_total",
    "Total number of inspiration image requests by outcome",
    ["outcome"],  # attached, skipped, NoImageProduced, NetworkOrServerError, ...
)

# Responses that arrived after the session moved on
STALE_DISCARDED = Counter(
    "visage_stale_responses_discarded_total",
    "Total number of superseded responses dropped on arrival",
    ["step"],  # capture, analysis, enrichment, camera
)

CAMERAS_OPEN = Gauge(
    "visage_cameras_open",
    "Number of camera devices currently held open",
)

ACTIVE_SESSIONS = Gauge(
    "visage_active_sessions",
    "Number of sessions held in memory",
)

SESSIONS_EVICTED = Counter(
    "visage_sessions_evicted_total",
    "Total number of sessions closed by the store rather than the browser",
    ["reason"],  # idle, capacity
)


@router.get("/metrics")
def metrics() -> Response:
    """
    Expose Prometheus metrics in text format.
    """
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)

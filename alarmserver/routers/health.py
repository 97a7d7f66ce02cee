# alarmserver/routers/health.py
"""
System health check endpoint.
Returns status of backend + DB + active alarms and connected cameras.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from alarmserver.database import get_db

router = APIRouter()


@router.get("/health", summary="System health check")
def health_check(request: Request, db: Session = Depends(get_db)):
    """
    Returns:
    - Backend status
    - Database connectivity
    - Currently active alarm states and connected devices
    """
    pipeline = request.app.state.pipeline
    result = {
        "status": "ok",
        "timestamp": datetime.utcnow().isoformat(),
        "backend": "ok",
        "database": "unknown",
        "active_alarms": pipeline.timers.pending_keys(),
        "connected_devices": [pipeline.names.cached(d) for d in pipeline.connections.connected()],
    }

    try:
        db.execute(text("SELECT 1"))
        result["database"] = "ok"
    except Exception as e:
        result["database"] = f"error: {str(e)}"
        result["status"] = "degraded"

    return result

import time
from datetime import datetime, timezone

from fastapi import APIRouter

from database import check_database_health

router = APIRouter()
STARTED_AT = time.monotonic()


@router.get("/")
def root():
    return {"success": True, "message": "Esplendidez 2026 Backend API", "health": "/api/health"}


@router.get("/health")
def health_check():
    return {
        "success": True,
        "message": "Esplendidez 2026 Backend Server is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "database": check_database_health(),
    }

"""
CivicFeed Health Check Routes
"""
from fastapi import APIRouter, Depends, Request
from datetime import datetime, timezone
from sqlalchemy import text
from sqlalchemy.orm import Session
from typing import Any, Dict
import sys
import psutil

from ..database import get_db

router = APIRouter(prefix="/api/health", tags=["health"])

START_TIME = datetime.now(timezone.utc)


def get_uptime() -> str:
    """Get process uptime as human-readable string"""
    delta = datetime.now(timezone.utc) - START_TIME
    hours, remainder = divmod(delta.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    if delta.days > 0:
        return f"{delta.days}d {hours}h {minutes}m"
    elif hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    else:
        return f"{minutes}m {seconds}s"


def check_database(db: Session) -> Dict[str, Any]:
    """Round-trip a trivial query"""
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy"}
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
        }


def check_system() -> Dict[str, Any]:
    """Process memory and host load"""
    try:
        process = psutil.Process()
        memory = psutil.virtual_memory()

        return {
            "status": "healthy" if memory.percent < 90 else "warning",
            "process_memory_mb": round(process.memory_info().rss / (1024 * 1024), 2),
            "memory_percent": memory.percent,
            "python_version": sys.version.split()[0],
        }
    except Exception as e:
        return {
            "status": "unknown",
            "error": str(e),
        }


def check_encoding(request: Request) -> Dict[str, Any]:
    worker = getattr(request.app.state, "encoding_worker", None)
    if worker is None:
        return {"status": "disabled"}
    return {
        "status": "healthy" if worker.running else "stopped",
        "queue": worker.queue.get_stats().to_dict(),
    }


@router.get("")
def health(request: Request, db: Session = Depends(get_db)):
    """
    Liveness plus component checks.
    Use for load balancers and monitoring dashboards.
    """
    database = check_database(db)
    system = check_system()
    encoding = check_encoding(request)

    return {
        "ok": database["status"] == "healthy",
        "status": "healthy" if database["status"] == "healthy" else "unhealthy",
        "uptime": get_uptime(),
        "checks": {
            "database": database,
            "system": system,
            "encoding": encoding,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

# backend/marketpos/routes/system.py
"""System health endpoint."""

import time
from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db

system_bp = Blueprint("system", __name__)


@system_bp.get("/api/health")
def health():
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "OK",
            "message": "Server is running",
            "database": {"status": "healthy", "latency_ms": round(elapsed_ms, 2)},
        }
    except Exception:
        current_app.logger.exception("Database health check failed")
        return {
            "status": "DEGRADED",
            "message": "Server is running",
            "database": {"status": "unhealthy", "error": "Database error"},
        }, 503

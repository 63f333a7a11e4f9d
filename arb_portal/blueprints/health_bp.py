"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — database check plus ARB workflow counters
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from arb_portal.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── ARB workflow ─────────────────────────────────────────────────
    if overall:
        from arb_portal.services.arb_lifecycle import count_requests_by_status
        checks["arb"] = {"status": "ok", "requests_by_status": count_requests_by_status()}

    # ── App info ─────────────────────────────────────────────────────
    checks["app"] = {
        "name": "HOA Architectural Review Portal",
        "debug": current_app.debug,
        "testing": current_app.testing,
        "review_window_days": current_app.config["ARB_REVIEW_WINDOW_DAYS"],
        "lazy_deadline_check": current_app.config["ARB_LAZY_DEADLINE_CHECK"],
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code

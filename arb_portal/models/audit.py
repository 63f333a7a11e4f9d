"""
HOA Architectural Review Portal
Audit domain model.

Models:
    - ArbAuditLog: immutable, append-only trail for every vote, status
      transition and auto-approval on an ARB request.
"""

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import event

from arb_portal.models import db

logger = logging.getLogger(__name__)


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {
    "request_created",
    "status_transition",
    "cycle_incremented",
    "vote_cast",
    "vote_changed",
    "stage_deadlocked",
    "deadlock_resolved",
    "auto_approved",
}


class ImmutableAuditError(RuntimeError):
    """Raised when anything tries to UPDATE or DELETE an audit row."""


class ArbAuditLog(db.Model):
    """
    Immutable audit trail for the ARB workflow.

    One row per event.  ``metadata_json`` carries the structured payload
    (vote tallies, previous vote, statutory basis …).  The only supported
    write is an INSERT through ``write_arb_audit``; ORM updates and deletes
    are rejected at flush time.
    """

    __tablename__ = "arb_audit_log"
    __table_args__ = (
        db.Index("idx_arb_audit_request", "request_id"),
        db.Index("idx_arb_audit_action", "action"),
        db.Index("idx_arb_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.String(36),
        db.ForeignKey("arb_requests.id", ondelete="RESTRICT"),
        nullable=False,
    )

    action = db.Column(db.String(40), nullable=False, comment="status_transition | vote_cast | …")
    from_status = db.Column(db.String(20), nullable=True)
    to_status = db.Column(db.String(20), nullable=True)
    actor_id = db.Column(
        db.String(255), nullable=False, default="system",
        comment="Voter / owner identifier or 'system'",
    )
    reason = db.Column(db.Text, nullable=True)
    cycle = db.Column(db.Integer, nullable=True)
    metadata_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def meta(self) -> dict:
        try:
            return json.loads(self.metadata_json) if self.metadata_json else {}
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "action": self.action,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "reason": self.reason,
            "cycle": self.cycle,
            "metadata": self.meta,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<ArbAuditLog {self.id}: {self.action} on {self.request_id}>"


@event.listens_for(ArbAuditLog, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise ImmutableAuditError(f"Audit entry {target.id} is append-only")


@event.listens_for(ArbAuditLog, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise ImmutableAuditError(f"Audit entry {target.id} is append-only")


# ── Convenience writer ───────────────────────────────────────────────────────

def write_arb_audit(
    *,
    request_id: str,
    action: str,
    actor_id: str = "system",
    from_status: str | None = None,
    to_status: str | None = None,
    reason: str | None = None,
    cycle: int | None = None,
    metadata: dict | None = None,
) -> ArbAuditLog | None:
    """
    Append a single audit row to the current unit of work.

    The row is added without flushing so it commits atomically with the
    workflow change that produced it.  A failure while building the row is
    logged and swallowed: the workflow state is the source of truth and the
    audit trail must never block it.
    """
    try:
        log = ArbAuditLog(
            request_id=request_id,
            action=action,
            actor_id=actor_id or "system",
            from_status=from_status,
            to_status=to_status,
            reason=reason,
            cycle=cycle,
            metadata_json=json.dumps(metadata or {}, default=str),
        )
        db.session.add(log)
    except Exception:
        logger.exception(
            "Failed to write ARB audit entry",
            extra={"arb_request_id": request_id, "event_type": action},
        )
        return None
    return log


def list_arb_audit(request_id: str) -> list[ArbAuditLog]:
    """Chronological audit trail for one request (oldest first)."""
    return (
        ArbAuditLog.query
        .filter_by(request_id=request_id)
        .order_by(ArbAuditLog.timestamp.asc(), ArbAuditLog.id.asc())
        .all()
    )

"""
ARB Status Machine — lifecycle transitions for ArbRequest

Manages request status transitions with:
  - Graph validation (ARB_TRANSITIONS)
  - Actor-role checks (who may drive which edge)
  - Compare-and-swap UPDATE so two writers can never both move the same
    request out of the same status
  - Audit trail via write_arb_audit

Actor roles:
  owner   DRAFT / *_RETURNED → SUBMITTED
  arc     SUBMITTED → ARC_REVIEW, ARC vote outcomes
  board   Board vote outcomes
  chair   manual outcomes at either stage (deadlock resolution)
  system  auto-start of ARC review, deadline auto-approval,
          ARC_APPROVED → BOARD_REVIEW advancement

Usage:
    from arb_portal.services.arb_status_machine import transition_status

    transition_status(req, "ARC_REVIEW", actor_id="system", actor_role="system")
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import update

from arb_portal.core.exceptions import InvalidTransition, StorageConflict
from arb_portal.models import db
from arb_portal.models.arb import (
    ARB_STATUSES,
    ARB_TRANSITIONS,
    ARC_APPROVED,
    ARC_DENIED,
    ARC_RETURNED,
    ARC_REVIEW,
    BOARD_APPROVED,
    BOARD_DENIED,
    BOARD_RETURNED,
    BOARD_REVIEW,
    DRAFT,
    OWNER_EDITABLE_STATUSES,
    REVIEW_STAGES,
    SUBMITTED,
    TERMINAL_STATUSES,
    ArbRequest,
)
from arb_portal.models.audit import write_arb_audit

logger = logging.getLogger(__name__)

ACTOR_OWNER = "owner"
ACTOR_ARC = "arc"
ACTOR_BOARD = "board"
ACTOR_CHAIR = "chair"
ACTOR_SYSTEM = "system"

_ARC_OUTCOMES = {(ARC_REVIEW, ARC_APPROVED), (ARC_REVIEW, ARC_DENIED), (ARC_REVIEW, ARC_RETURNED)}
_BOARD_OUTCOMES = {(BOARD_REVIEW, BOARD_APPROVED), (BOARD_REVIEW, BOARD_DENIED), (BOARD_REVIEW, BOARD_RETURNED)}

ACTOR_EDGES = {
    ACTOR_OWNER: {(DRAFT, SUBMITTED), (ARC_RETURNED, SUBMITTED), (BOARD_RETURNED, SUBMITTED)},
    ACTOR_ARC: {(SUBMITTED, ARC_REVIEW)} | _ARC_OUTCOMES,
    ACTOR_BOARD: set(_BOARD_OUTCOMES),
    ACTOR_CHAIR: _ARC_OUTCOMES | _BOARD_OUTCOMES,
    ACTOR_SYSTEM: {
        (SUBMITTED, ARC_REVIEW),
        (ARC_REVIEW, ARC_APPROVED),
        (BOARD_REVIEW, BOARD_APPROVED),
        (ARC_APPROVED, BOARD_REVIEW),
    },
}

STATUS_LABELS = {
    DRAFT: "Draft",
    SUBMITTED: "Submitted",
    ARC_REVIEW: "Under ARC Review",
    ARC_APPROVED: "ARC Approved",
    ARC_DENIED: "Denied by ARC",
    ARC_RETURNED: "Returned by ARC",
    BOARD_REVIEW: "Under Board Review",
    BOARD_APPROVED: "Approved",
    BOARD_DENIED: "Denied by Board",
    BOARD_RETURNED: "Returned by Board",
}


# ── Queries ──────────────────────────────────────────────────────────────────

def allowed_next_statuses(status: str) -> tuple[str, ...]:
    return ARB_TRANSITIONS.get(status, ())


def is_terminal_status(status: str) -> bool:
    return status in TERMINAL_STATUSES


def is_review_stage(status: str) -> bool:
    return status in REVIEW_STAGES


def can_owner_edit(status: str) -> bool:
    """Owner may edit application details only before (re)submission."""
    return status in OWNER_EDITABLE_STATUSES


def status_label(status: str) -> str:
    return STATUS_LABELS.get(status, status)


def validate_transition(from_status: str, to_status: str, actor_role: str | None = None) -> dict:
    """
    Validate a proposed status change.

    Returns:
        {"valid": bool, "from": str, "to": str, "reason": str|None}
    """
    if to_status not in ARB_STATUSES:
        return {"valid": False, "from": from_status, "to": to_status,
                "reason": f"Unknown status: {to_status}"}

    if to_status not in ARB_TRANSITIONS.get(from_status, ()):
        return {"valid": False, "from": from_status, "to": to_status,
                "reason": f"{from_status} cannot move to {to_status}"}

    if actor_role is not None and (from_status, to_status) not in ACTOR_EDGES.get(actor_role, set()):
        return {"valid": False, "from": from_status, "to": to_status,
                "reason": f"Actor role '{actor_role}' may not move {from_status} to {to_status}"}

    return {"valid": True, "from": from_status, "to": to_status, "reason": None}


# ── Mutation ─────────────────────────────────────────────────────────────────

def transition_status(
    req: ArbRequest,
    to_status: str,
    *,
    actor_id: str,
    actor_role: str | None = None,
    reason: str | None = None,
    metadata: dict | None = None,
    values: dict | None = None,
    now: datetime | None = None,
) -> ArbRequest:
    """
    Move ``req`` to ``to_status`` inside the caller's unit of work.

    The UPDATE is guarded by ``status = <current status>``; if another writer
    moved the request first, nothing is written and ``StorageConflict`` is
    raised.  ``values`` lets callers set extra columns (submitted_at,
    auto_approved_reason, …) atomically with the status change.  The caller
    commits.

    Raises:
        InvalidTransition: edge not on the graph or not allowed for the actor.
        StorageConflict: compare-and-swap lost.
    """
    from_status = req.status
    check = validate_transition(from_status, to_status, actor_role)
    if not check["valid"]:
        logger.info(
            "Rejected ARB transition %s → %s: %s", from_status, to_status, check["reason"],
            extra={"arb_request_id": req.id, "event_type": "invalid_transition"},
        )
        raise InvalidTransition(from_status, to_status, check["reason"])

    now = now or datetime.now(timezone.utc)
    row = {"status": to_status, "stage": to_status, "updated_at": now}
    if to_status in TERMINAL_STATUSES:
        row["resolved_at"] = now
    if values:
        row.update(values)

    result = db.session.execute(
        update(ArbRequest)
        .where(ArbRequest.id == req.id, ArbRequest.status == from_status)
        .values(**row)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning(
            "Lost status compare-and-swap %s → %s", from_status, to_status,
            extra={"arb_request_id": req.id, "event_type": "storage_conflict"},
        )
        raise StorageConflict(
            f"Request {req.id} changed status concurrently (expected {from_status})",
            details={"expected_status": from_status},
        )
    db.session.refresh(req)

    write_arb_audit(
        request_id=req.id,
        action="status_transition",
        actor_id=actor_id,
        from_status=from_status,
        to_status=to_status,
        reason=reason,
        cycle=req.cycle,
        metadata=metadata,
    )
    logger.info(
        "ARB request %s: %s → %s by %s", req.id, from_status, to_status, actor_id,
        extra={"arb_request_id": req.id, "stage": to_status, "cycle": req.cycle,
               "event_type": "status_transition"},
    )
    return req

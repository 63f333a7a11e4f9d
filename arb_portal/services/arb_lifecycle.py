"""
ARB Request Lifecycle — create, submit, resubmit and read requests

Manages the owner-facing side of the workflow:
  - create_request / update_request while the request is owner-editable
  - submit (first submission and resubmission after a RETURNED outcome)
  - begin_arc_review when auto-start is switched off
  - increment_cycle, called exactly once per resubmission
  - dashboard queries and the audit history

Voting lives in arb_voting; deadline handling in arb_deadlines.
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import func, select, update

from arb_portal.core.exceptions import (
    InvalidTransition,
    NotEligible,
    NotFoundError,
    StorageConflict,
    ValidationError,
)
from arb_portal.models import db
from arb_portal.models.arb import (
    APPLICATION_TYPES,
    ARB_STATUSES,
    ARC_REVIEW,
    OWNER_EDITABLE_STATUSES,
    RETURNED_STATUSES,
    SUBMITTED,
    SYSTEM_ACTOR,
    ArbRequest,
    normalize_party_id,
)
from arb_portal.models.audit import list_arb_audit, write_arb_audit
from arb_portal.services import arb_notifications as notify
from arb_portal.services.arb_deadlines import compute_deadline
from arb_portal.services.arb_eligibility import INELIGIBLE_MISSING_ROLE, RoleProvider, get_role_provider
from arb_portal.services.arb_status_machine import (
    ACTOR_ARC,
    ACTOR_OWNER,
    ACTOR_SYSTEM,
    allowed_next_statuses,
    can_owner_edit,
    status_label,
    transition_status,
)
from arb_portal.services.arb_vote_logic import deadline_urgency
from arb_portal.services.arb_vote_store import votes_by_cycle

logger = logging.getLogger(__name__)

NOT_OWNER = "not_owner"
_EDITABLE_FIELDS = ("applicant_name", "phone", "property_address", "application_type", "description")


def _load_request(request_id: str) -> ArbRequest:
    req = db.session.get(ArbRequest, request_id)
    if req is None:
        raise NotFoundError(resource="ArbRequest", resource_id=request_id)
    return req


def _normalize_application_type(value) -> str | None:
    if value is None or value == "":
        return None
    parts = value if isinstance(value, (list, tuple)) else str(value).split(",")
    types = [p.strip() for p in parts if p and p.strip()]
    unknown = [t for t in types if t not in APPLICATION_TYPES]
    if unknown:
        raise ValidationError(
            f"Unknown application type: {', '.join(unknown)}",
            details={"application_type": f"must be from {', '.join(APPLICATION_TYPES)}"},
        )
    return ", ".join(types) or None


def _require_owner(req: ArbRequest, actor_id: str) -> None:
    if normalize_party_id(actor_id) != normalize_party_id(req.owner_id):
        raise NotEligible(f"Only the owner may change request {req.id}", reason=NOT_OWNER)


# ── Create / edit ────────────────────────────────────────────────────────────

def create_request(
    owner_id: str,
    description: str,
    *,
    applicant_name: str | None = None,
    phone: str | None = None,
    property_address: str | None = None,
    application_type=None,
) -> ArbRequest:
    """Create a DRAFT request for ``owner_id``."""
    owner_id = normalize_party_id(owner_id)
    if not owner_id:
        raise ValidationError("owner_id is required", details={"owner_id": "required"})
    if not (description or "").strip():
        raise ValidationError("description is required", details={"description": "required"})

    req = ArbRequest(
        owner_id=owner_id,
        description=description.strip(),
        applicant_name=applicant_name,
        phone=phone,
        property_address=property_address,
        application_type=_normalize_application_type(application_type),
    )
    try:
        db.session.add(req)
        db.session.flush()
        write_arb_audit(
            request_id=req.id,
            action="request_created",
            actor_id=owner_id,
            to_status=req.status,
            cycle=req.cycle,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("ARB request created", extra={"arb_request_id": req.id, "event_type": "request_created"})
    return req


def update_request(request_id: str, actor_id: str, **fields) -> ArbRequest:
    """Owner edits application details while the request is DRAFT or RETURNED."""
    req = _load_request(request_id)
    _require_owner(req, actor_id)
    if not can_owner_edit(req.status):
        raise InvalidTransition(req.status, req.status, f"Request cannot be edited while {req.status}")

    changes = {}
    for key in _EDITABLE_FIELDS:
        if key not in fields:
            continue
        value = fields[key]
        if key == "application_type":
            value = _normalize_application_type(value)
        elif key == "description":
            if not (value or "").strip():
                raise ValidationError("description is required", details={"description": "required"})
            value = value.strip()
        changes[key] = value

    for key, value in changes.items():
        setattr(req, key, value)
    req.updated_at = datetime.now(timezone.utc)
    db.session.commit()
    return req


# ── Submission ───────────────────────────────────────────────────────────────

def increment_cycle(request_id: str, actor_id: str = SYSTEM_ACTOR) -> int:
    """
    Start a new review cycle for a RETURNED request.

    Runs in the caller's unit of work; the caller commits.  Guarded by a
    compare-and-swap on (status, cycle) so it can only ever fire once per
    return.
    """
    req = _load_request(request_id)
    if req.status not in RETURNED_STATUSES:
        raise InvalidTransition(
            req.status, SUBMITTED, f"A new cycle starts only after a return, not from {req.status}",
        )
    old_cycle = req.cycle
    result = db.session.execute(
        update(ArbRequest)
        .where(ArbRequest.id == req.id, ArbRequest.status == req.status, ArbRequest.cycle == old_cycle)
        .values(cycle=old_cycle + 1, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StorageConflict(f"Request {req.id} changed concurrently while starting a new cycle")
    db.session.refresh(req)

    write_arb_audit(
        request_id=req.id,
        action="cycle_incremented",
        actor_id=actor_id,
        from_status=req.status,
        to_status=req.status,
        cycle=req.cycle,
        metadata={"previous_cycle": old_cycle},
    )
    logger.info(
        "ARB request cycle %d → %d", old_cycle, req.cycle,
        extra={"arb_request_id": req.id, "cycle": req.cycle, "event_type": "cycle_incremented"},
    )
    return req.cycle


def submit(
    request_id: str,
    actor_id: str,
    *,
    dispatcher: notify.NotificationDispatcher | None = None,
    now: datetime | None = None,
) -> ArbRequest:
    """
    Owner submits a DRAFT request or resubmits a RETURNED one.

    Resubmission starts a new cycle first.  Every submission stamps
    submitted_at, recomputes deadline_at and clears the previous cycle's
    auto_approved_reason / resolved_at.  With ARB_AUTO_START_ARC_REVIEW the
    request goes straight on to ARC_REVIEW.
    """
    now = now or datetime.now(timezone.utc)
    events = []
    try:
        req = _load_request(request_id)
        _require_owner(req, actor_id)
        if req.status not in OWNER_EDITABLE_STATUSES:
            raise InvalidTransition(req.status, SUBMITTED)

        resubmission = req.status in RETURNED_STATUSES
        if resubmission:
            increment_cycle(req.id, actor_id=normalize_party_id(actor_id))

        transition_status(
            req, SUBMITTED,
            actor_id=normalize_party_id(actor_id),
            actor_role=ACTOR_OWNER,
            reason="Resubmitted by owner" if resubmission else "Submitted by owner",
            values={
                "submitted_at": now,
                "deadline_at": compute_deadline(now),
                "auto_approved_reason": None,
                "resolved_at": None,
            },
            now=now,
        )

        if current_app.config.get("ARB_AUTO_START_ARC_REVIEW", True):
            transition_status(
                req, ARC_REVIEW,
                actor_id=SYSTEM_ACTOR, actor_role=ACTOR_SYSTEM,
                reason="ARC review opened on submission", now=now,
            )
            events.append((notify.EVENT_REVIEW_STARTED, {
                "request_id": req.id, "owner_id": req.owner_id, "stage": ARC_REVIEW, "cycle": req.cycle,
            }))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    notify.dispatch_events(events, dispatcher)
    return req


def begin_arc_review(
    request_id: str,
    actor_id: str,
    *,
    role_provider: RoleProvider | None = None,
    dispatcher: notify.NotificationDispatcher | None = None,
    now: datetime | None = None,
) -> ArbRequest:
    """An ARC member opens review of a SUBMITTED request (auto-start disabled)."""
    actor_id = normalize_party_id(actor_id)
    provider = role_provider or get_role_provider()
    try:
        req = _load_request(request_id)
        reviewer = provider.get_reviewer(actor_id)
        if reviewer is None or not reviewer.active or not reviewer.can_review(ARC_REVIEW):
            raise NotEligible(f"{actor_id} is not an active ARC member", reason=INELIGIBLE_MISSING_ROLE)
        transition_status(
            req, ARC_REVIEW,
            actor_id=actor_id, actor_role=ACTOR_ARC, reason="ARC review opened", now=now,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    notify.dispatch_events([(notify.EVENT_REVIEW_STARTED, {
        "request_id": req.id, "owner_id": req.owner_id, "stage": ARC_REVIEW, "cycle": req.cycle,
    })], dispatcher)
    return req


# ── Queries ──────────────────────────────────────────────────────────────────

def get_request(request_id: str) -> ArbRequest:
    return _load_request(request_id)


def describe_request(req: ArbRequest, now: datetime | None = None) -> dict:
    """Request detail with its vote history and deadline status."""
    data = req.to_dict()
    data["status_label"] = status_label(req.status)
    data["allowed_next_statuses"] = list(allowed_next_statuses(req.status))
    data["owner_can_edit"] = can_owner_edit(req.status)
    data["votes_by_cycle"] = {
        str(cycle): [v.to_dict() for v in votes] for cycle, votes in votes_by_cycle(req.id).items()
    }
    data["deadline"] = (
        deadline_urgency(req.deadline_at, now)
        if req.deadline_at is not None and not req.is_resolved else None
    )
    return data


def list_requests(status=None, owner_id=None, stage=None, limit=50, offset=0):
    """Requests newest first; returns (items, total)."""
    stmt = select(ArbRequest)
    if status:
        stmt = stmt.where(ArbRequest.status == status)
    if stage:
        stmt = stmt.where(ArbRequest.stage == stage)
    if owner_id:
        stmt = stmt.where(ArbRequest.owner_id == normalize_party_id(owner_id))
    total = db.session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    items = db.session.execute(
        stmt.order_by(ArbRequest.created_at.desc()).offset(offset).limit(limit)
    ).scalars().all()
    return items, total


def count_requests_by_status() -> dict[str, int]:
    counts = {status: 0 for status in ARB_STATUSES}
    rows = db.session.execute(
        select(ArbRequest.status, func.count(ArbRequest.id)).group_by(ArbRequest.status)
    ).all()
    for status, n in rows:
        counts[status] = n
    return counts


def get_audit_history(request_id: str) -> list[dict]:
    _load_request(request_id)
    return [entry.to_dict() for entry in list_arb_audit(request_id)]

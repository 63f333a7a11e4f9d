"""
ARB Deadline Monitor — statutory auto-approval without a scheduler

Nothing here runs on a timer.  ``apply_expired_deadlines`` is called lazily
before ARB API requests (see arb_bp), from ``POST /deadlines/apply`` and from
the ``flask arb-apply-deadlines`` CLI command.  Every entry point accepts an
explicit ``now`` so callers and tests control the clock.

Rules:
  - deadline_at = submitted_at + ARB_REVIEW_WINDOW_DAYS, recomputed on every
    (re)submission and never moved by the ARC → Board step
  - an unresolved request in ARC_REVIEW / BOARD_REVIEW whose deadline has
    passed and whose auto_approved_reason is NULL is approved at its stage
    with actor ``system``; an ARC auto-approval opens BOARD_REVIEW
  - auto_approved_reason stays set for the rest of the cycle, so a request
    fires at most once per cycle and re-running is a no-op
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import select

from arb_portal.core.exceptions import ArbWorkflowError
from arb_portal.models import db
from arb_portal.models.arb import (
    DEADLINE_EXPIRED,
    OUTCOME_APPROVED,
    REVIEW_STAGES,
    SYSTEM_ACTOR,
    ArbRequest,
)
from arb_portal.models.audit import write_arb_audit
from arb_portal.services import arb_notifications as notify
from arb_portal.services.arb_status_machine import ACTOR_SYSTEM
from arb_portal.services.arb_vote_logic import days_remaining
from arb_portal.services.arb_voting import apply_stage_outcome
from arb_portal.utils.helpers import as_utc

logger = logging.getLogger(__name__)


def compute_deadline(submitted_at: datetime, window_days: int | None = None) -> datetime:
    if window_days is None:
        window_days = current_app.config["ARB_REVIEW_WINDOW_DAYS"]
    return as_utc(submitted_at) + timedelta(days=window_days)


def _open_reviews():
    return select(ArbRequest).where(
        ArbRequest.status.in_(REVIEW_STAGES),
        ArbRequest.resolved_at.is_(None),
        ArbRequest.auto_approved_reason.is_(None),
        ArbRequest.deadline_at.is_not(None),
    )


def find_expired_requests(now: datetime | None = None) -> list[str]:
    now = as_utc(now or datetime.now(timezone.utc))
    stmt = _open_reviews().where(ArbRequest.deadline_at <= now).order_by(ArbRequest.deadline_at.asc())
    return [req.id for req in db.session.execute(stmt).scalars()]


def _auto_approve(req: ArbRequest, now: datetime) -> list[tuple[str, dict]]:
    stage = req.status
    statute = current_app.config["ARB_STATUTE_REFERENCE"]
    reason = f"Auto-approved: review deadline expired per {statute}"
    metadata = {
        "auto_approval": True,
        "deadline_expired": True,
        "deadline_at": as_utc(req.deadline_at).isoformat(),
        "statute": statute,
    }

    write_arb_audit(
        request_id=req.id,
        action="auto_approved",
        actor_id=SYSTEM_ACTOR,
        from_status=stage,
        reason=reason,
        cycle=req.cycle,
        metadata=metadata,
    )
    events = apply_stage_outcome(
        req, stage, OUTCOME_APPROVED,
        actor_id=SYSTEM_ACTOR,
        actor_role=ACTOR_SYSTEM,
        reason=reason,
        metadata=metadata,
        values={"auto_approved_reason": DEADLINE_EXPIRED},
        now=now,
    )
    return [
        (notify.EVENT_AUTO_APPROVED, payload) if event == notify.EVENT_STAGE_RESOLVED else (event, payload)
        for event, payload in events
    ]


def apply_expired_deadlines(
    now: datetime | None = None,
    *,
    dispatcher: notify.NotificationDispatcher | None = None,
) -> list[str]:
    """
    Auto-approve every open review whose deadline has passed.

    Each request commits on its own; a request another writer moved first is
    skipped.  Returns the ids that were auto-approved by this call.
    """
    now = as_utc(now or datetime.now(timezone.utc))
    approved = []

    for request_id in find_expired_requests(now):
        try:
            req = db.session.get(ArbRequest, request_id)
            if req is None or req.auto_approved_reason or req.status not in REVIEW_STAGES:
                continue
            events = _auto_approve(req, now)
            db.session.commit()
        except ArbWorkflowError as exc:
            db.session.rollback()
            logger.info(
                "Skipped deadline auto-approval: %s", exc,
                extra={"arb_request_id": request_id, "event_type": "auto_approved"},
            )
            continue
        except Exception:
            db.session.rollback()
            raise

        approved.append(request_id)
        logger.info(
            "Auto-approved ARB request after deadline",
            extra={"arb_request_id": request_id, "event_type": "auto_approved"},
        )
        notify.dispatch_events(events, dispatcher)

    return approved


def requests_nearing_deadline(days_out: int, now: datetime | None = None) -> list[ArbRequest]:
    """Open reviews whose deadline falls within the next ``days_out`` days.  Read-only."""
    now = as_utc(now or datetime.now(timezone.utc))
    stmt = (
        _open_reviews()
        .where(ArbRequest.deadline_at > now, ArbRequest.deadline_at <= now + timedelta(days=days_out))
        .order_by(ArbRequest.deadline_at.asc())
    )
    return list(db.session.execute(stmt).scalars())


def send_deadline_warnings(
    now: datetime | None = None,
    *,
    dispatcher: notify.NotificationDispatcher | None = None,
) -> dict:
    """
    Warn reviewers about requests entering each warning horizon.

    A request is in the N-day horizon while its deadline is more than N-1
    and at most N days away; the dispatcher debounces repeats for 24 hours.

    Returns:
        {"sent_7_day": int, "sent_3_day": int, …} per configured horizon.
    """
    now = as_utc(now or datetime.now(timezone.utc))
    summary = {}
    for horizon in current_app.config["ARB_DEADLINE_WARNING_DAYS"]:
        lower = now + timedelta(days=horizon - 1)
        events = [
            (notify.EVENT_DEADLINE_WARNING, {
                "request_id": req.id,
                "owner_id": req.owner_id,
                "stage": req.status,
                "cycle": req.cycle,
                "horizon_days": horizon,
                "days_remaining": days_remaining(req.deadline_at, now),
                "deadline_at": as_utc(req.deadline_at).isoformat(),
                "occurred_at": now,
            })
            for req in requests_nearing_deadline(horizon, now)
            if as_utc(req.deadline_at) > lower
        ]
        summary[f"sent_{horizon}_day"] = notify.dispatch_events(events, dispatcher)
    return summary

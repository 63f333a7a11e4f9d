"""
ARB Workflow Blueprint — architectural request review (ARC → Board).

All routes live under /api/v1/arb.  Authentication is handled upstream; the
acting member is taken from the JSON body (``actor_id`` / ``voter_id``) or
the ``X-Actor-Id`` header.

Endpoints:
    POST   /requests                              create a DRAFT request
    GET    /requests                              ?status=&stage=&owner_id=
    GET    /requests/<id>                         detail + vote history
    PATCH  /requests/<id>                         owner edits while editable
    POST   /requests/<id>/submit                  submit / resubmit
    POST   /requests/<id>/begin-review            open ARC review manually
    POST   /requests/<id>/votes                   cast or revise a vote
    GET    /requests/<id>/votes                   ?stage=&cycle=
    GET    /requests/<id>/eligible-voters         ?stage=&cycle=
    GET    /requests/<id>/vote-summary            tally, hint, progress
    POST   /requests/<id>/deadlock-resolution     Board decision on a deadlock
    GET    /requests/<id>/audit                   audit trail, oldest first
    GET    /dashboard                             request counts by status
    POST   /deadlines/apply                       run the deadline monitor
    GET    /deadlines/nearing                     ?days=7
    POST   /deadlines/warnings                    send 7/3-day warnings

Layer contract:
    - Blueprint: parse input, call the service, shape the JSON response.
    - Workflow rules and all writes live in the arb_* services.
    - Service exceptions map to responses in the handlers below.
    - A vote that arrives after the stage was resolved (including by a
      simultaneous deciding vote) gets 409 ERR_WRONG_STAGE or
      ERR_ALREADY_RESOLVED; nothing is recorded for it.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from arb_portal.blueprints import pagination_args
from arb_portal.core.exceptions import ArbWorkflowError, NotFoundError, ValidationError
from arb_portal.models import db
from arb_portal.models.arb import REVIEW_STAGES, ArbRequest
from arb_portal.services import arb_deadlines, arb_eligibility, arb_lifecycle, arb_voting
from arb_portal.services.arb_vote_logic import (
    deadline_urgency,
    format_vote_progress,
    is_approval_possible,
    is_denial_possible,
    is_return_possible,
    projected_outcome,
)
from arb_portal.services.arb_vote_store import list_votes
from arb_portal.utils.errors import E, api_error
from arb_portal.utils.helpers import get_or_404, parse_datetime, parse_int

logger = logging.getLogger(__name__)

arb_bp = Blueprint("arb", __name__, url_prefix="/api/v1/arb")

_DEADLINE_PATHS = ("/api/v1/arb/deadlines/",)


# ── Error handling ─────────────────────────────────────────────────────────────


@arb_bp.errorhandler(ArbWorkflowError)
def _handle_workflow_error(exc):
    return api_error(exc.code, exc.message, status=exc.status, details=exc.details)


@arb_bp.errorhandler(NotFoundError)
def _handle_not_found(exc):
    return api_error(E.NOT_FOUND, str(exc))


@arb_bp.errorhandler(ValidationError)
def _handle_validation(exc):
    return api_error(E.VALIDATION_CONSTRAINT, str(exc), status=422, details=exc.details)


# ── Lazy deadline monitor ──────────────────────────────────────────────────────


@arb_bp.before_request
def _apply_deadlines_lazily():
    """Auto-approve expired reviews before serving any ARB request."""
    if not current_app.config.get("ARB_LAZY_DEADLINE_CHECK", True):
        return None
    if request.path.startswith(_DEADLINE_PATHS):
        return None
    try:
        arb_deadlines.apply_expired_deadlines()
    except Exception:
        db.session.rollback()
        logger.exception("Lazy deadline check failed", extra={"event_type": "auto_approved"})
    return None


# ── Helpers ────────────────────────────────────────────────────────────────────


def _body():
    return request.get_json(silent=True) or {}


def _actor(data, key="actor_id"):
    return (data.get(key) or request.headers.get("X-Actor-Id") or "").strip()


def _stage_arg(req, value):
    """Explicit ?stage=, else the request's current review stage."""
    stage = (value or "").strip().upper() or (req.status if req.status in REVIEW_STAGES else "")
    if stage not in REVIEW_STAGES:
        return None, api_error(
            E.VALIDATION_INVALID, f"stage must be one of {', '.join(REVIEW_STAGES)}",
        )
    return stage, None


# ── Requests ───────────────────────────────────────────────────────────────────


@arb_bp.route("/requests", methods=["POST"])
def create_request():
    data = _body()
    owner_id = _actor(data, "owner_id")
    if not owner_id:
        return api_error(E.VALIDATION_REQUIRED, "owner_id is required")
    if not (data.get("description") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "description is required")

    req = arb_lifecycle.create_request(
        owner_id,
        data["description"],
        applicant_name=data.get("applicant_name"),
        phone=data.get("phone"),
        property_address=data.get("property_address"),
        application_type=data.get("application_type"),
    )
    return jsonify(req.to_dict()), 201


@arb_bp.route("/requests", methods=["GET"])
def list_requests():
    limit, offset = pagination_args()
    items, total = arb_lifecycle.list_requests(
        status=request.args.get("status"),
        stage=request.args.get("stage"),
        owner_id=request.args.get("owner_id"),
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": [r.to_dict() for r in items], "total": total}), 200


@arb_bp.route("/requests/<request_id>", methods=["GET"])
def get_request(request_id):
    req, err = get_or_404(ArbRequest, request_id, "ArbRequest")
    if err:
        return err
    return jsonify(arb_lifecycle.describe_request(req)), 200


@arb_bp.route("/requests/<request_id>", methods=["PATCH"])
def update_request(request_id):
    data = _body()
    actor_id = _actor(data)
    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")
    fields = {k: v for k, v in data.items() if k != "actor_id"}
    req = arb_lifecycle.update_request(request_id, actor_id, **fields)
    return jsonify(req.to_dict()), 200


@arb_bp.route("/requests/<request_id>/submit", methods=["POST"])
def submit_request(request_id):
    actor_id = _actor(_body())
    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")
    req = arb_lifecycle.submit(request_id, actor_id)
    return jsonify(req.to_dict()), 200


@arb_bp.route("/requests/<request_id>/begin-review", methods=["POST"])
def begin_review(request_id):
    actor_id = _actor(_body())
    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")
    req = arb_lifecycle.begin_arc_review(request_id, actor_id)
    return jsonify(req.to_dict()), 200


# ── Votes ──────────────────────────────────────────────────────────────────────


@arb_bp.route("/requests/<request_id>/votes", methods=["POST"])
def cast_vote(request_id):
    data = _body()
    voter_id = _actor(data, "voter_id")
    stage = (data.get("stage") or "").strip().upper()
    vote = (data.get("vote") or "").strip().upper()

    if not voter_id:
        return api_error(E.VALIDATION_REQUIRED, "voter_id is required")
    if not stage:
        return api_error(E.VALIDATION_REQUIRED, "stage is required")
    if not vote:
        return api_error(E.VALIDATION_REQUIRED, "vote is required")

    cycle = data.get("cycle")
    if cycle is not None:
        cycle = parse_int(cycle)
        if cycle is None:
            return api_error(E.VALIDATION_INVALID, "cycle must be an integer")

    result = arb_voting.cast_vote(
        request_id, voter_id, stage, vote, comment=data.get("comment"), cycle=cycle,
    )
    return jsonify(result), 201 if result["previous_vote"] is None else 200


@arb_bp.route("/requests/<request_id>/votes", methods=["GET"])
def list_request_votes(request_id):
    req, err = get_or_404(ArbRequest, request_id, "ArbRequest")
    if err:
        return err
    stage = (request.args.get("stage") or "").strip().upper() or None
    cycle = parse_int(request.args.get("cycle"))
    votes = list_votes(req.id, stage=stage, cycle=cycle)
    return jsonify({"items": [v.to_dict() for v in votes], "total": len(votes)}), 200


@arb_bp.route("/requests/<request_id>/eligible-voters", methods=["GET"])
def eligible_voters_listing(request_id):
    req, err = get_or_404(ArbRequest, request_id, "ArbRequest")
    if err:
        return err
    stage, err = _stage_arg(req, request.args.get("stage"))
    if err:
        return err
    cycle = parse_int(request.args.get("cycle"), req.cycle)

    listing = arb_eligibility.get_eligible_voters(req.id, stage, cycle)
    return jsonify({"request_id": req.id, "stage": stage, "cycle": cycle, **listing}), 200


@arb_bp.route("/requests/<request_id>/vote-summary", methods=["GET"])
def vote_summary(request_id):
    req, err = get_or_404(ArbRequest, request_id, "ArbRequest")
    if err:
        return err
    stage, err = _stage_arg(req, request.args.get("stage"))
    if err:
        return err
    cycle = parse_int(request.args.get("cycle"), req.cycle)

    res = arb_voting.resolve_outcome(req.id, stage, cycle)
    counts = (res.approve_count, res.deny_count, res.return_count, res.abstain_count, res.total_eligible)
    summary = {
        "request_id": req.id,
        "stage": stage,
        "cycle": cycle,
        "resolution": res.to_dict(),
        "projected_outcome": projected_outcome(*counts),
        "progress": format_vote_progress(res.votes_cast, res.total_eligible, res.majority_needed),
        "possible": {
            "approval": is_approval_possible(*counts),
            "denial": is_denial_possible(*counts),
            "return": is_return_possible(*counts),
        },
        "deadline": (
            deadline_urgency(req.deadline_at)
            if req.deadline_at is not None and not req.is_resolved else None
        ),
    }
    return jsonify(summary), 200


@arb_bp.route("/requests/<request_id>/deadlock-resolution", methods=["POST"])
def resolve_deadlock(request_id):
    data = _body()
    actor_id = _actor(data)
    decision = (data.get("decision") or "").strip()
    if not actor_id:
        return api_error(E.VALIDATION_REQUIRED, "actor_id is required")
    if not decision:
        return api_error(E.VALIDATION_REQUIRED, "decision is required")
    result = arb_voting.resolve_deadlock(request_id, actor_id, decision, data.get("reason"))
    return jsonify(result), 200


@arb_bp.route("/requests/<request_id>/audit", methods=["GET"])
def audit_history(request_id):
    entries = arb_lifecycle.get_audit_history(request_id)
    return jsonify({"items": entries, "total": len(entries)}), 200


@arb_bp.route("/dashboard", methods=["GET"])
def dashboard():
    counts = arb_lifecycle.count_requests_by_status()
    return jsonify({"counts_by_status": counts, "total": sum(counts.values())}), 200


# ── Deadlines ──────────────────────────────────────────────────────────────────


def _now_arg(data):
    raw = data.get("now")
    if raw is None:
        return None, None
    now = parse_datetime(raw)
    if now is None:
        return None, api_error(E.VALIDATION_INVALID, "now must be an ISO-8601 timestamp")
    return now, None


@arb_bp.route("/deadlines/apply", methods=["POST"])
def apply_deadlines():
    now, err = _now_arg(_body())
    if err:
        return err
    approved = arb_deadlines.apply_expired_deadlines(now)
    return jsonify({"auto_approved": approved, "count": len(approved)}), 200


@arb_bp.route("/deadlines/nearing", methods=["GET"])
def nearing_deadlines():
    days = parse_int(request.args.get("days"), 7)
    if days < 1:
        return api_error(E.VALIDATION_INVALID, "days must be a positive integer")
    now, err = _now_arg(request.args)
    if err:
        return err
    items = arb_deadlines.requests_nearing_deadline(days, now)
    return jsonify({
        "days": days,
        "items": [dict(r.to_dict(), deadline=deadline_urgency(r.deadline_at, now)) for r in items],
        "total": len(items),
    }), 200


@arb_bp.route("/deadlines/warnings", methods=["POST"])
def deadline_warnings():
    now, err = _now_arg(_body())
    if err:
        return err
    return jsonify(arb_deadlines.send_deadline_warnings(now)), 200

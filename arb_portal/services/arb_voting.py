"""
ARB Voting Service — cast votes and apply stage outcomes

Flow for one vote:
  1. Preconditions, in order: request exists → not resolved → request is in
     the voted stage and cycle → voter eligible → vote value valid.  Any
     failure raises before anything is written.
  2. Upsert the vote by (request, voter, stage, cycle) and audit it.
  3. Recompute the stage tally from eligible voters only.
  4. A counted majority moves the request through the status machine; an
     ARC approval opens BOARD_REVIEW in the same transaction.
  5. Commit, then notify (failures there are logged only).

Concurrency: the request row is locked (SELECT ... FOR UPDATE) for the whole
cast, so two casts on one request tally one after the other and votes that
only reach a majority together still resolve the stage.  The status change is
also a compare-and-swap and the vote identity is UNIQUE; losing either race
rolls back and replays the whole cycle once.  A voter whose deciding vote
arrives after another one resolved the stage re-reads the committed status
and is rejected with WrongStage (AlreadyResolved once the request is final).
Nothing is written for that vote, and the API answers 409.

Usage:
    from arb_portal.services.arb_voting import cast_vote

    result = cast_vote(request_id, "arc1@example.com", "ARC_REVIEW", "APPROVE")
    result["resolution"]["outcome"]  # -> "PENDING" | "APPROVED" | …
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from arb_portal.core.exceptions import (
    AlreadyResolved,
    Deadlocked,
    NotEligible,
    NotFoundError,
    StorageConflict,
    ValidationError,
    WrongStage,
)
from arb_portal.models import db
from arb_portal.models.arb import (
    ARC_APPROVED,
    ARC_REVIEW,
    BOARD_REVIEW,
    OUTCOME_APPROVED,
    OUTCOME_DEADLOCKED,
    OUTCOME_DENIED,
    OUTCOME_RETURNED,
    REVIEW_STAGES,
    STAGE_OUTCOME_STATUS,
    SYSTEM_ACTOR,
    TERMINAL_STATUSES,
    VOTE_CHOICES,
    ArbRequest,
    normalize_party_id,
)
from arb_portal.models.audit import write_arb_audit
from arb_portal.services import arb_notifications as notify
from arb_portal.services.arb_eligibility import (
    INELIGIBLE_INACTIVE,
    INELIGIBLE_MISSING_ROLE,
    RECUSAL_OWNER,
    RoleProvider,
    check_voter_eligibility,
    eligible_voters,
    get_role_provider,
)
from arb_portal.services.arb_status_machine import (
    ACTOR_ARC,
    ACTOR_BOARD,
    ACTOR_CHAIR,
    ACTOR_SYSTEM,
    transition_status,
)
from arb_portal.services.arb_vote_logic import VoteResolution, calculate_vote_outcome
from arb_portal.services.arb_vote_store import get_vote, list_votes, upsert_vote

logger = logging.getLogger(__name__)

_STAGE_ACTOR_ROLE = {ARC_REVIEW: ACTOR_ARC, BOARD_REVIEW: ACTOR_BOARD}

# Manual decisions accept either the vote or the outcome spelling
_DECISIONS = {
    "APPROVE": OUTCOME_APPROVED, OUTCOME_APPROVED: OUTCOME_APPROVED,
    "DENY": OUTCOME_DENIED, OUTCOME_DENIED: OUTCOME_DENIED,
    "RETURN": OUTCOME_RETURNED, OUTCOME_RETURNED: OUTCOME_RETURNED,
}


def _event_payload(req: ArbRequest, stage: str, **extra) -> dict:
    payload = {
        "request_id": req.id,
        "owner_id": req.owner_id,
        "stage": stage,
        "cycle": req.cycle,
    }
    payload.update(extra)
    return payload


def _load_request(request_id: str, *, for_update: bool = False) -> ArbRequest:
    if for_update:
        # Row lock serialises writers on one request until commit; SQLite ignores it
        req = db.session.execute(
            select(ArbRequest)
            .where(ArbRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
    else:
        req = db.session.get(ArbRequest, request_id)
    if req is None:
        raise NotFoundError(resource="ArbRequest", resource_id=request_id)
    return req


def _tally(req: ArbRequest, stage: str, cycle: int, provider: RoleProvider) -> VoteResolution:
    """Stage tally counting only votes from currently eligible, non-recused voters."""
    eligible = {v.voter_id for v in eligible_voters(req.id, stage, cycle, role_provider=provider)
                if not v.recused}
    votes = [v for v in list_votes(req.id, stage, cycle) if v.voter_id in eligible]
    return calculate_vote_outcome(votes, len(eligible))


def resolve_outcome(
    request_id: str,
    stage: str,
    cycle: int | None = None,
    *,
    role_provider: RoleProvider | None = None,
) -> VoteResolution:
    """Current tally and outcome for (request, stage, cycle).  Read-only."""
    if stage not in REVIEW_STAGES:
        raise ValidationError(f"stage must be one of {', '.join(REVIEW_STAGES)}", details={"stage": stage})
    req = _load_request(request_id)
    cycle = req.cycle if cycle is None else cycle
    return _tally(req, stage, cycle, role_provider or get_role_provider())


def apply_stage_outcome(
    req: ArbRequest,
    stage: str,
    outcome: str,
    *,
    actor_id: str,
    actor_role: str,
    reason: str,
    metadata: dict | None = None,
    values: dict | None = None,
    now: datetime | None = None,
) -> list[tuple[str, dict]]:
    """
    Move ``req`` to the status for ``outcome`` at ``stage`` and, for an ARC
    approval, straight on into BOARD_REVIEW.  Runs inside the caller's unit
    of work; returns the notification events to fire after commit.
    """
    to_status = STAGE_OUTCOME_STATUS[stage][outcome]
    transition_status(
        req, to_status,
        actor_id=actor_id, actor_role=actor_role, reason=reason,
        metadata=metadata, values=values, now=now,
    )
    events = [(notify.EVENT_STAGE_RESOLVED, _event_payload(req, stage, outcome=outcome, reason=reason))]

    if to_status == ARC_APPROVED:
        transition_status(
            req, BOARD_REVIEW,
            actor_id=SYSTEM_ACTOR, actor_role=ACTOR_SYSTEM,
            reason="ARC approval advances the request to Board review",
            now=now,
        )
        events.append((notify.EVENT_REVIEW_STARTED, _event_payload(req, BOARD_REVIEW)))
    return events


# ── Cast ─────────────────────────────────────────────────────────────────────

def _cast_once(request_id, voter_id, stage, vote, comment, cycle, provider, now):
    req = _load_request(request_id, for_update=True)
    if req.is_resolved or req.status in TERMINAL_STATUSES:
        raise AlreadyResolved(
            f"Request {req.id} is already resolved ({req.status})",
            details={"status": req.status},
        )
    if req.status != stage:
        raise WrongStage(
            f"Request {req.id} is in {req.status}, not {stage}",
            details={"status": req.status, "stage": stage},
        )
    cycle = req.cycle if cycle is None else cycle
    if cycle != req.cycle:
        raise WrongStage(
            f"Request {req.id} is in cycle {req.cycle}, not {cycle}",
            details={"cycle": req.cycle, "requested_cycle": cycle},
        )

    check_voter_eligibility(req.id, voter_id, stage, cycle, role_provider=provider)

    if vote not in VOTE_CHOICES:
        raise ValidationError(
            f"vote must be one of {', '.join(VOTE_CHOICES)}", details={"vote": vote},
        )

    if get_vote(req.id, voter_id, stage, cycle) is not None:
        if _tally(req, stage, cycle, provider).outcome == OUTCOME_DEADLOCKED:
            raise Deadlocked(
                f"{stage} on request {req.id} is deadlocked; votes can no longer be revised",
                details={"stage": stage, "cycle": cycle},
            )

    row, previous = upsert_vote(
        request_id=req.id, voter_id=voter_id, stage=stage, cycle=cycle,
        vote=vote, comment=comment, now=now,
    )
    write_arb_audit(
        request_id=req.id,
        action="vote_changed" if previous else "vote_cast",
        actor_id=voter_id,
        from_status=req.status,
        to_status=req.status,
        cycle=cycle,
        metadata={"stage": stage, "vote": vote, "previous_vote": previous, "comment": comment},
    )

    resolution = _tally(req, stage, cycle, provider)
    events = [(notify.EVENT_VOTE_CAST, _event_payload(
        req, stage, voter_id=voter_id, tally=resolution.to_dict(), occurred_at=now,
    ))]

    if resolution.outcome == OUTCOME_DEADLOCKED:
        write_arb_audit(
            request_id=req.id,
            action="stage_deadlocked",
            actor_id=SYSTEM_ACTOR,
            from_status=req.status,
            to_status=req.status,
            reason="Every eligible reviewer abstained",
            cycle=cycle,
            metadata=resolution.to_dict(),
        )
        events.append((notify.EVENT_STAGE_DEADLOCKED, _event_payload(req, stage)))
        logger.warning(
            "ARB stage deadlocked", extra={"arb_request_id": req.id, "stage": stage, "cycle": cycle},
        )
    elif resolution.is_resolved:
        events += apply_stage_outcome(
            req, stage, resolution.outcome,
            actor_id=voter_id,
            actor_role=_STAGE_ACTOR_ROLE[stage],
            reason=(
                f"Majority {resolution.outcome.lower()}: {resolution.approve_count} approve, "
                f"{resolution.deny_count} deny, {resolution.return_count} return, "
                f"{resolution.abstain_count} abstain"
            ),
            metadata=resolution.to_dict(),
            now=now,
        )

    result = {
        "vote": row.to_dict(),
        "previous_vote": previous,
        "resolution": resolution.to_dict(),
        "request": req.to_dict(),
    }
    return result, events


def cast_vote(
    request_id: str,
    voter_id: str,
    stage: str,
    vote: str,
    comment: str | None = None,
    cycle: int | None = None,
    *,
    role_provider: RoleProvider | None = None,
    dispatcher: notify.NotificationDispatcher | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Record ``voter_id``'s vote and apply any outcome it produces.

    A cast that loses the race for the deciding vote re-reads the stage and
    raises WrongStage or AlreadyResolved without writing anything.

    Returns:
        {"vote", "previous_vote", "resolution", "request"}

    Raises:
        NotFoundError, AlreadyResolved, WrongStage, NotEligible,
        ValidationError, Deadlocked, StorageConflict
    """
    voter_id = normalize_party_id(voter_id)
    vote = (vote or "").strip().upper()
    provider = role_provider or get_role_provider()
    now = now or datetime.now(timezone.utc)

    for attempt in (1, 2):
        try:
            result, events = _cast_once(request_id, voter_id, stage, vote, comment, cycle, provider, now)
            db.session.commit()
            break
        except (StorageConflict, IntegrityError) as exc:
            db.session.rollback()
            if attempt == 2:
                logger.error(
                    "Vote cast lost the race twice", extra={
                        "arb_request_id": request_id, "voter_id": voter_id, "stage": stage,
                        "event_type": "storage_conflict",
                    },
                )
                raise StorageConflict(
                    f"Concurrent update on request {request_id}; retry the vote",
                ) from exc
            logger.info(
                "Retrying vote cast after concurrent write",
                extra={"arb_request_id": request_id, "voter_id": voter_id, "stage": stage},
            )
        except Exception:
            db.session.rollback()
            raise

    logger.info(
        "Vote %s recorded", vote,
        extra={"arb_request_id": request_id, "voter_id": voter_id, "stage": stage,
               "cycle": result["vote"]["cycle"], "event_type": "vote_cast"},
    )
    notify.dispatch_events(events, dispatcher)
    return result


# ── Manual deadlock resolution ───────────────────────────────────────────────

def resolve_deadlock(
    request_id: str,
    actor_id: str,
    decision: str,
    reason: str | None = None,
    *,
    role_provider: RoleProvider | None = None,
    dispatcher: notify.NotificationDispatcher | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Record a Board member's decision for a DEADLOCKED stage.

    Raises:
        NotFoundError, AlreadyResolved, WrongStage, NotEligible,
        ValidationError (bad decision or stage not deadlocked), StorageConflict
    """
    actor_id = normalize_party_id(actor_id)
    outcome = _DECISIONS.get((decision or "").strip().upper())
    provider = role_provider or get_role_provider()
    now = now or datetime.now(timezone.utc)

    try:
        req = _load_request(request_id, for_update=True)
        if req.is_resolved or req.status in TERMINAL_STATUSES:
            raise AlreadyResolved(f"Request {req.id} is already resolved ({req.status})")
        if req.status not in REVIEW_STAGES:
            raise WrongStage(f"Request {req.id} is not under review ({req.status})")
        stage = req.status

        reviewer = provider.get_reviewer(actor_id)
        if reviewer is None or not reviewer.can_review(BOARD_REVIEW):
            raise NotEligible(f"{actor_id} is not a Board member", reason=INELIGIBLE_MISSING_ROLE)
        if not reviewer.active:
            raise NotEligible(f"{actor_id} is not an active member", reason=INELIGIBLE_INACTIVE)
        if actor_id == normalize_party_id(req.owner_id):
            raise NotEligible(f"{actor_id} owns this request", reason=RECUSAL_OWNER)

        if outcome is None:
            raise ValidationError(
                "decision must be one of APPROVED, DENIED, RETURNED", details={"decision": decision},
            )
        tally = _tally(req, stage, req.cycle, provider)
        if tally.outcome != OUTCOME_DEADLOCKED:
            raise ValidationError(
                f"{stage} is not deadlocked (outcome {tally.outcome})",
                details={"outcome": tally.outcome},
            )

        text = reason or f"Deadlock resolved by Board decision: {outcome.lower()}"
        write_arb_audit(
            request_id=req.id,
            action="deadlock_resolved",
            actor_id=actor_id,
            from_status=stage,
            to_status=STAGE_OUTCOME_STATUS[stage][outcome],
            reason=text,
            cycle=req.cycle,
            metadata={"decision": outcome, "tally": tally.to_dict()},
        )
        events = apply_stage_outcome(
            req, stage, outcome,
            actor_id=actor_id, actor_role=ACTOR_CHAIR, reason=text,
            metadata={"deadlock_resolution": True}, now=now,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Deadlock on %s resolved as %s by %s", stage, outcome, actor_id,
        extra={"arb_request_id": req.id, "stage": stage, "cycle": req.cycle,
               "event_type": "deadlock_resolved"},
    )
    notify.dispatch_events(events, dispatcher)
    return req.to_dict()

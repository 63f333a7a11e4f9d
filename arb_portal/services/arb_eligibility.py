"""
ARB Eligibility Resolver

Works out who may vote on a request at a stage within a cycle.

Rules:
  1. Start from active reviewers holding a role valid for the stage
     (ARC: arc / arc_board, Board: board / arc_board).
  2. The request owner is always recused.
  3. BOARD_REVIEW only: a dual-role reviewer who cast a non-ABSTAIN vote at
     ARC_REVIEW in the same cycle is recused.  Abstaining at ARC keeps them
     eligible at Board.
  4. Recusal is per request and per cycle; it is recomputed from the vote
     history every time, never stored.

Reviewer data comes from a ``RoleProvider``; the default reads the ``users``
table, tests and other deployments can register their own on
``app.extensions["arb_role_provider"]``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field

from flask import current_app
from sqlalchemy import select

from arb_portal.core.exceptions import NotEligible, NotFoundError, ValidationError
from arb_portal.models import db
from arb_portal.models.arb import (
    ABSTAIN,
    ARC_REVIEW,
    BOARD_REVIEW,
    REVIEW_STAGES,
    ArbRequest,
    ArbVote,
    normalize_party_id,
)
from arb_portal.models.auth import ROLE_ARC, ROLE_ARC_BOARD, ROLE_BOARD, User

logger = logging.getLogger(__name__)

STAGE_ROLES = {
    ARC_REVIEW: frozenset({ROLE_ARC, ROLE_ARC_BOARD}),
    BOARD_REVIEW: frozenset({ROLE_BOARD, ROLE_ARC_BOARD}),
}

RECUSAL_OWNER = "owner"
RECUSAL_ARC_CARRYOVER = "arc_carryover"
INELIGIBLE_MISSING_ROLE = "missing_role"
INELIGIBLE_INACTIVE = "inactive"

_RECUSAL_MESSAGES = {
    RECUSAL_OWNER: "Owner of this request",
    RECUSAL_ARC_CARRYOVER: "Already voted on this request at the ARC stage in this cycle",
}


# ── Data Classes ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Reviewer:
    """A committee member as the role source sees them."""
    voter_id: str
    name: str
    roles: frozenset = field(default_factory=frozenset)
    active: bool = True

    def can_review(self, stage: str) -> bool:
        return bool(self.roles & STAGE_ROLES.get(stage, frozenset()))

    @property
    def is_dual_role(self) -> bool:
        return self.can_review(ARC_REVIEW) and self.can_review(BOARD_REVIEW)


@dataclass
class EligibleVoter:
    voter_id: str
    name: str
    role: str
    recused: bool = False
    recusal_reason: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


# ── Role providers ───────────────────────────────────────────────────────────

class RoleProvider(ABC):
    """Abstract source of committee membership."""

    @abstractmethod
    def list_reviewers(self) -> list[Reviewer]:
        """Every member holding at least one reviewing role, active or not."""
        ...

    @abstractmethod
    def get_reviewer(self, voter_id: str) -> Reviewer | None:
        """Single member lookup; None when the identifier is unknown."""
        ...


class UserRoleProvider(RoleProvider):
    """Reads reviewer roles from the ``users`` table."""

    _REVIEW_ROLES = (ROLE_ARC, ROLE_BOARD, ROLE_ARC_BOARD)

    @staticmethod
    def _to_reviewer(user: User) -> Reviewer:
        return Reviewer(
            voter_id=normalize_party_id(user.email),
            name=user.display_name,
            roles=frozenset({user.role}) if user.role else frozenset(),
            active=user.is_active,
        )

    def list_reviewers(self) -> list[Reviewer]:
        users = db.session.execute(
            select(User).where(User.role.in_(self._REVIEW_ROLES)).order_by(User.full_name, User.email)
        ).scalars()
        return [self._to_reviewer(u) for u in users]

    def get_reviewer(self, voter_id: str) -> Reviewer | None:
        user = db.session.execute(
            select(User).where(User.email == normalize_party_id(voter_id))
        ).scalar_one_or_none()
        return self._to_reviewer(user) if user else None


def get_role_provider() -> RoleProvider:
    return current_app.extensions.get("arb_role_provider") or UserRoleProvider()


# ── Resolution ───────────────────────────────────────────────────────────────

def _load_request(request_id: str) -> ArbRequest:
    req = db.session.get(ArbRequest, request_id)
    if req is None:
        raise NotFoundError(resource="ArbRequest", resource_id=request_id)
    return req


def _check_stage(stage: str) -> None:
    if stage not in REVIEW_STAGES:
        raise ValidationError(
            f"stage must be one of {', '.join(REVIEW_STAGES)}", details={"stage": stage},
        )


def _arc_participants(request_id: str, cycle: int) -> set[str]:
    """Voters with a non-ABSTAIN ARC vote on this request in ``cycle``."""
    rows = db.session.execute(
        select(ArbVote.voter_id).where(
            ArbVote.request_id == request_id,
            ArbVote.stage == ARC_REVIEW,
            ArbVote.cycle == cycle,
            ArbVote.vote != ABSTAIN,
        )
    ).scalars()
    return set(rows)


def _recusal(req: ArbRequest, reviewer: Reviewer, stage: str, arc_participants: set[str]) -> str | None:
    if reviewer.voter_id == normalize_party_id(req.owner_id):
        return RECUSAL_OWNER
    if stage == BOARD_REVIEW and reviewer.is_dual_role and reviewer.voter_id in arc_participants:
        return RECUSAL_ARC_CARRYOVER
    return None


def _stage_role(reviewer: Reviewer, stage: str) -> str:
    matching = sorted(reviewer.roles & STAGE_ROLES[stage])
    return matching[0] if matching else ""


def eligible_voters(
    request_id: str,
    stage: str,
    cycle: int | None = None,
    *,
    role_provider: RoleProvider | None = None,
) -> list[EligibleVoter]:
    """
    List every potential voter for (request, stage, cycle), recused ones
    included with their reason.  ``cycle`` defaults to the request's current
    cycle.
    """
    _check_stage(stage)
    req = _load_request(request_id)
    cycle = req.cycle if cycle is None else cycle
    provider = role_provider or get_role_provider()
    arc_participants = _arc_participants(req.id, cycle) if stage == BOARD_REVIEW else set()

    voters = []
    for reviewer in provider.list_reviewers():
        if not reviewer.active or not reviewer.can_review(stage):
            continue
        reason = _recusal(req, reviewer, stage, arc_participants)
        voters.append(EligibleVoter(
            voter_id=reviewer.voter_id,
            name=reviewer.name,
            role=_stage_role(reviewer, stage),
            recused=reason is not None,
            recusal_reason=_RECUSAL_MESSAGES.get(reason) if reason else None,
        ))
    return voters


def eligible_voter_count(
    request_id: str,
    stage: str,
    cycle: int | None = None,
    *,
    role_provider: RoleProvider | None = None,
) -> int:
    voters = eligible_voters(request_id, stage, cycle, role_provider=role_provider)
    return sum(1 for v in voters if not v.recused)


def check_voter_eligibility(
    request_id: str,
    voter_id: str,
    stage: str,
    cycle: int | None = None,
    *,
    role_provider: RoleProvider | None = None,
) -> Reviewer:
    """
    Confirm ``voter_id`` may vote; returns their Reviewer record.

    Raises:
        NotEligible: with ``reason`` one of missing_role, inactive, owner,
            arc_carryover.
    """
    _check_stage(stage)
    req = _load_request(request_id)
    cycle = req.cycle if cycle is None else cycle
    provider = role_provider or get_role_provider()
    voter_id = normalize_party_id(voter_id)

    reviewer = provider.get_reviewer(voter_id)
    if reviewer is None or not reviewer.can_review(stage):
        raise NotEligible(
            f"{voter_id} does not hold a role that may vote at {stage}",
            reason=INELIGIBLE_MISSING_ROLE,
        )
    if not reviewer.active:
        raise NotEligible(f"{voter_id} is not an active member", reason=INELIGIBLE_INACTIVE)

    arc_participants = _arc_participants(req.id, cycle) if stage == BOARD_REVIEW else set()
    reason = _recusal(req, reviewer, stage, arc_participants)
    if reason is not None:
        logger.info(
            "Recused voter %s at %s: %s", voter_id, stage, reason,
            extra={"arb_request_id": req.id, "voter_id": voter_id, "stage": stage, "cycle": cycle},
        )
        raise NotEligible(f"{voter_id} is recused: {_RECUSAL_MESSAGES[reason]}", reason=reason)
    return reviewer


def get_eligible_voters(
    request_id: str,
    stage: str,
    cycle: int | None = None,
    *,
    role_provider: RoleProvider | None = None,
) -> dict:
    """Eligibility listing as served by the API: every voter plus the counted total."""
    voters = eligible_voters(request_id, stage, cycle, role_provider=role_provider)
    return {
        "voters": [v.to_dict() for v in voters],
        "eligible_count": sum(1 for v in voters if not v.recused),
    }

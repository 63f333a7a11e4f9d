"""
HOA Architectural Review Portal
ARB request domain model — multi-stage ARC → Board voting workflow.

Models:
    - ArbRequest: one architectural-modification application
    - ArbVote:    one reviewer's position per (request, voter, stage, cycle)

Lifecycle:
    DRAFT → SUBMITTED → ARC_REVIEW → ARC_APPROVED → BOARD_REVIEW → BOARD_APPROVED
                            │                            │
                            ├─→ ARC_RETURNED → SUBMITTED ├─→ BOARD_RETURNED → SUBMITTED
                            └─→ ARC_DENIED               └─→ BOARD_DENIED
"""

import uuid
from datetime import datetime, timezone

from arb_portal.models import db


# ── Helpers ──────────────────────────────────────────────────────────────────

def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


def normalize_party_id(value) -> str:
    """Owner / voter identifiers are compared case-insensitively (emails)."""
    return str(value or "").strip().lower()


# ── Constants ────────────────────────────────────────────────────────────────

DRAFT = "DRAFT"
SUBMITTED = "SUBMITTED"
ARC_REVIEW = "ARC_REVIEW"
ARC_APPROVED = "ARC_APPROVED"
ARC_DENIED = "ARC_DENIED"
ARC_RETURNED = "ARC_RETURNED"
BOARD_REVIEW = "BOARD_REVIEW"
BOARD_APPROVED = "BOARD_APPROVED"
BOARD_DENIED = "BOARD_DENIED"
BOARD_RETURNED = "BOARD_RETURNED"

ARB_STATUSES = (
    DRAFT, SUBMITTED,
    ARC_REVIEW, ARC_APPROVED, ARC_DENIED, ARC_RETURNED,
    BOARD_REVIEW, BOARD_APPROVED, BOARD_DENIED, BOARD_RETURNED,
)

# Legal edges; anything else is an InvalidTransition
ARB_TRANSITIONS = {
    DRAFT: (SUBMITTED,),
    SUBMITTED: (ARC_REVIEW,),
    ARC_REVIEW: (ARC_APPROVED, ARC_DENIED, ARC_RETURNED),
    ARC_RETURNED: (SUBMITTED,),
    ARC_DENIED: (),
    ARC_APPROVED: (BOARD_REVIEW,),
    BOARD_REVIEW: (BOARD_APPROVED, BOARD_DENIED, BOARD_RETURNED),
    BOARD_RETURNED: (SUBMITTED,),
    BOARD_DENIED: (),
    BOARD_APPROVED: (),
}

TERMINAL_STATUSES = frozenset({ARC_DENIED, BOARD_DENIED, BOARD_APPROVED})
RETURNED_STATUSES = frozenset({ARC_RETURNED, BOARD_RETURNED})
OWNER_EDITABLE_STATUSES = frozenset({DRAFT, ARC_RETURNED, BOARD_RETURNED})

REVIEW_STAGES = (ARC_REVIEW, BOARD_REVIEW)

# Vote choices
APPROVE = "APPROVE"
DENY = "DENY"
RETURN = "RETURN"
ABSTAIN = "ABSTAIN"
VOTE_CHOICES = (APPROVE, DENY, RETURN, ABSTAIN)

# Stage outcomes
OUTCOME_PENDING = "PENDING"
OUTCOME_APPROVED = "APPROVED"
OUTCOME_DENIED = "DENIED"
OUTCOME_RETURNED = "RETURNED"
OUTCOME_DEADLOCKED = "DEADLOCKED"

# (stage, outcome) → status the state machine moves to
STAGE_OUTCOME_STATUS = {
    ARC_REVIEW: {
        OUTCOME_APPROVED: ARC_APPROVED,
        OUTCOME_DENIED: ARC_DENIED,
        OUTCOME_RETURNED: ARC_RETURNED,
    },
    BOARD_REVIEW: {
        OUTCOME_APPROVED: BOARD_APPROVED,
        OUTCOME_DENIED: BOARD_DENIED,
        OUTCOME_RETURNED: BOARD_RETURNED,
    },
}

DEADLINE_EXPIRED = "deadline_expired"
SYSTEM_ACTOR = "system"

APPLICATION_TYPES = (
    "Exterior Paint",
    "Landscape Installation",
    "Swimming Pool",
    "Recreational Equipment",
    "Fencing",
    "Other",
)


class ArbRequest(db.Model):
    """
    Architectural-modification application.

    ``stage`` mirrors ``status`` so stage-scoped queries stay index-friendly.
    ``deadline_at`` is always ``submitted_at + review window`` and is
    recomputed on every (re)submission.  Once ``resolved_at`` is set the
    request accepts no further votes.

    Status changes go through ``arb_status_machine.transition_status`` which
    performs a compare-and-swap UPDATE on ``status``; never assign
    ``status`` directly.
    """

    __tablename__ = "arb_requests"
    __table_args__ = (
        db.Index("ix_arb_requests_owner", "owner_id"),
        db.Index("ix_arb_requests_status", "status"),
        db.Index("ix_arb_requests_stage_deadline", "stage", "deadline_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    owner_id = db.Column(db.String(255), nullable=False, comment="Owner email / user identifier")

    # Applicant details
    applicant_name = db.Column(db.String(200), nullable=True)
    phone = db.Column(db.String(40), nullable=True)
    property_address = db.Column(db.String(300), nullable=True)
    application_type = db.Column(db.String(200), nullable=True, comment="Comma-separated APPLICATION_TYPES")
    description = db.Column(db.Text, nullable=False)

    # Workflow state
    status = db.Column(db.String(20), nullable=False, default=DRAFT)
    stage = db.Column(db.String(20), nullable=False, default=DRAFT)
    cycle = db.Column(db.Integer, nullable=False, default=1)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deadline_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    auto_approved_reason = db.Column(
        db.String(50), nullable=True,
        comment="Set only by the deadline monitor (deadline_expired)",
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    @property
    def application_types(self) -> list[str]:
        if not self.application_type:
            return []
        return [s.strip() for s in self.application_type.split(",") if s.strip()]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "applicant_name": self.applicant_name,
            "phone": self.phone,
            "property_address": self.property_address,
            "application_type": self.application_type,
            "description": self.description,
            "status": self.status,
            "stage": self.stage,
            "cycle": self.cycle,
            "submitted_at": _iso(self.submitted_at),
            "deadline_at": _iso(self.deadline_at),
            "resolved_at": _iso(self.resolved_at),
            "auto_approved_reason": self.auto_approved_reason,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ArbRequest {self.id} {self.status} cycle={self.cycle}>"


class ArbVote(db.Model):
    """
    One reviewer's vote at a review stage within a cycle.

    Identity is (request_id, voter_id, stage, cycle), enforced by a UNIQUE
    constraint.  A revised vote updates the row in place and stamps
    ``updated_at``; rows are never deleted, so earlier cycles stay queryable.
    """

    __tablename__ = "arb_votes"
    __table_args__ = (
        db.UniqueConstraint("request_id", "voter_id", "stage", "cycle", name="uq_arb_vote_identity"),
        db.Index("ix_arb_votes_request_stage_cycle", "request_id", "stage", "cycle"),
        db.Index("ix_arb_votes_voter", "voter_id"),
        db.CheckConstraint("stage IN ('ARC_REVIEW', 'BOARD_REVIEW')", name="ck_arb_vote_stage"),
        db.CheckConstraint("vote IN ('APPROVE', 'DENY', 'RETURN', 'ABSTAIN')", name="ck_arb_vote_choice"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    request_id = db.Column(
        db.String(36), db.ForeignKey("arb_requests.id", ondelete="CASCADE"), nullable=False,
    )
    voter_id = db.Column(db.String(255), nullable=False)
    stage = db.Column(db.String(20), nullable=False)
    cycle = db.Column(db.Integer, nullable=False, default=1)
    vote = db.Column(db.String(10), nullable=False)
    comment = db.Column(db.Text, nullable=True)
    voted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "voter_id": self.voter_id,
            "stage": self.stage,
            "cycle": self.cycle,
            "vote": self.vote,
            "comment": self.comment,
            "voted_at": _iso(self.voted_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ArbVote {self.voter_id} {self.stage}#{self.cycle}: {self.vote}>"

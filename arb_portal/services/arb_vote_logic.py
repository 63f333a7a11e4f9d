"""
ARB Vote Logic — pure resolution rules

No database access: every function here works on plain counts or vote
values so the majority rules can be tested in isolation.

Rules:
  - Abstentions shrink the pool: active_voters = total_eligible - abstain
  - majority_needed = floor(active_voters / 2) + 1
  - Every eligible voter abstaining is DEADLOCKED
  - A stage resolves only on an actual counted majority; "no longer
    mathematically possible" never resolves anything

Usage:
    from arb_portal.services.arb_vote_logic import calculate_vote_outcome

    res = calculate_vote_outcome(["APPROVE", "APPROVE"], total_eligible=3)
    res.outcome  # -> "APPROVED"
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum

from arb_portal.models.arb import (
    ABSTAIN,
    APPROVE,
    DENY,
    OUTCOME_APPROVED,
    OUTCOME_DEADLOCKED,
    OUTCOME_DENIED,
    OUTCOME_PENDING,
    OUTCOME_RETURNED,
    RETURN,
)


class DeadlineUrgency(str, Enum):
    EXPIRED = "expired"
    CRITICAL = "critical"
    WARNING = "warning"
    NORMAL = "normal"


CRITICAL_DAYS = 3
WARNING_DAYS = 7


@dataclass(frozen=True)
class VoteResolution:
    """Tally and outcome for one (request, stage, cycle)."""
    outcome: str
    approve_count: int
    deny_count: int
    return_count: int
    abstain_count: int
    total_eligible: int
    active_voters: int
    majority_needed: int
    all_votes_cast: bool

    @property
    def votes_cast(self) -> int:
        return self.approve_count + self.deny_count + self.return_count + self.abstain_count

    @property
    def is_resolved(self) -> bool:
        return self.outcome not in (OUTCOME_PENDING, OUTCOME_DEADLOCKED)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["votes_cast"] = self.votes_cast
        return data


def _vote_value(vote) -> str:
    return getattr(vote, "vote", vote)


def majority_needed(active_voters: int) -> int:
    return active_voters // 2 + 1


def calculate_vote_outcome(votes: Iterable, total_eligible: int) -> VoteResolution:
    """
    Resolve a stage from the votes cast by eligible voters.

    Args:
        votes: vote strings, or objects with a ``.vote`` attribute.
        total_eligible: number of non-recused voters for the stage.

    Examples:
        3 eligible, 2 approve              → APPROVED
        3 eligible, 1 approve, 1 abstain   → PENDING  (1 of 2, needs 2)
        3 eligible, 2 approve, 1 abstain   → APPROVED (2 of 2)
        5 eligible, 5 abstain              → DEADLOCKED
    """
    values = [_vote_value(v) for v in votes]
    approve = values.count(APPROVE)
    deny = values.count(DENY)
    ret = values.count(RETURN)
    abstain = values.count(ABSTAIN)

    active = total_eligible - abstain
    needed = majority_needed(active)

    if active <= 0:
        outcome = OUTCOME_DEADLOCKED
    elif approve >= needed:
        outcome = OUTCOME_APPROVED
    elif deny >= needed:
        outcome = OUTCOME_DENIED
    elif ret >= needed:
        outcome = OUTCOME_RETURNED
    else:
        outcome = OUTCOME_PENDING

    return VoteResolution(
        outcome=outcome,
        approve_count=approve,
        deny_count=deny,
        return_count=ret,
        abstain_count=abstain,
        total_eligible=total_eligible,
        active_voters=active,
        majority_needed=needed,
        all_votes_cast=len(values) >= total_eligible,
    )


# ── "Still possible" checks (UI hints only) ──────────────────────────────────

def _remaining(approve, deny, ret, abstain, total_eligible):
    active = total_eligible - abstain
    return active, active - (approve + deny + ret)


def is_approval_possible(approve, deny, ret, abstain, total_eligible) -> bool:
    active, remaining = _remaining(approve, deny, ret, abstain, total_eligible)
    return active > 0 and approve + remaining >= majority_needed(active)


def is_denial_possible(approve, deny, ret, abstain, total_eligible) -> bool:
    active, remaining = _remaining(approve, deny, ret, abstain, total_eligible)
    return active > 0 and deny + remaining >= majority_needed(active)


def is_return_possible(approve, deny, ret, abstain, total_eligible) -> bool:
    active, remaining = _remaining(approve, deny, ret, abstain, total_eligible)
    return active > 0 and ret + remaining >= majority_needed(active)


def projected_outcome(approve, deny, ret, abstain, total_eligible) -> str:
    """
    Non-binding hint for the review UI.

    Never used to drive a transition: a stage with a single remaining
    possible outcome still waits for the counted majority.
    """
    active = total_eligible - abstain
    if active <= 0:
        return "Deadlocked"
    needed = majority_needed(active)
    if approve >= needed:
        return "Approval reached"
    if deny >= needed:
        return "Denial reached"
    if ret >= needed:
        return "Return reached"

    possible = {
        "Approval": is_approval_possible(approve, deny, ret, abstain, total_eligible),
        "Denial": is_denial_possible(approve, deny, ret, abstain, total_eligible),
        "Return": is_return_possible(approve, deny, ret, abstain, total_eligible),
    }
    still_open = [label for label, ok in possible.items() if ok]
    if len(still_open) == 1:
        return f"{still_open[0]} likely (only option remaining)"

    counts = {"Approval": approve, "Denial": deny, "Return": ret}
    top = max(counts.values())
    if top == 0:
        return "Awaiting votes"
    leaders = [label for label, n in counts.items() if n == top]
    if len(leaders) > 1:
        return "Too close to call"
    return f"{leaders[0]} leading"


def format_vote_progress(votes_cast: int, total_eligible: int, needed: int) -> str:
    """e.g. ``"2 of 3 votes cast (2 needed for majority)"``"""
    return f"{votes_cast} of {total_eligible} votes cast ({needed} needed for majority)"


def days_remaining(deadline_at: datetime, now: datetime | None = None) -> int:
    """Whole days left until ``deadline_at``, rounded up; negative once past."""
    now = now or datetime.now(timezone.utc)
    if deadline_at.tzinfo is None:
        deadline_at = deadline_at.replace(tzinfo=timezone.utc)
    return math.ceil((deadline_at - now).total_seconds() / 86400)


def deadline_urgency(deadline_at: datetime, now: datetime | None = None) -> dict:
    """Return ``{"deadline_at", "days_remaining", "urgency"}`` for display."""
    now = now or datetime.now(timezone.utc)
    if deadline_at.tzinfo is None:
        deadline_at = deadline_at.replace(tzinfo=timezone.utc)
    days = days_remaining(deadline_at, now)
    if deadline_at <= now:
        urgency = DeadlineUrgency.EXPIRED
    elif days <= CRITICAL_DAYS:
        urgency = DeadlineUrgency.CRITICAL
    elif days <= WARNING_DAYS:
        urgency = DeadlineUrgency.WARNING
    else:
        urgency = DeadlineUrgency.NORMAL
    return {
        "deadline_at": deadline_at.isoformat(),
        "days_remaining": days,
        "urgency": urgency.value,
    }

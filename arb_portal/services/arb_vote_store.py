"""
ARB Vote Store — persistence for ArbVote rows.

One row per (request, voter, stage, cycle).  ``upsert_vote`` either inserts
the row or revises it in place; the UNIQUE constraint turns a concurrent
double insert into an IntegrityError that the voting service retries.
"""

from datetime import datetime, timezone

from sqlalchemy import select

from arb_portal.models import db
from arb_portal.models.arb import ArbVote, normalize_party_id


def get_vote(request_id: str, voter_id: str, stage: str, cycle: int) -> ArbVote | None:
    return db.session.execute(
        select(ArbVote).where(
            ArbVote.request_id == request_id,
            ArbVote.voter_id == normalize_party_id(voter_id),
            ArbVote.stage == stage,
            ArbVote.cycle == cycle,
        )
    ).scalar_one_or_none()


def list_votes(request_id: str, stage: str | None = None, cycle: int | None = None) -> list[ArbVote]:
    """Votes for a request, optionally narrowed to one stage and/or cycle."""
    stmt = select(ArbVote).where(ArbVote.request_id == request_id)
    if stage:
        stmt = stmt.where(ArbVote.stage == stage)
    if cycle is not None:
        stmt = stmt.where(ArbVote.cycle == cycle)
    stmt = stmt.order_by(ArbVote.cycle.asc(), ArbVote.stage.asc(), ArbVote.voted_at.asc())
    return list(db.session.execute(stmt).scalars())


def votes_by_cycle(request_id: str) -> dict[int, list[ArbVote]]:
    """Full voting history grouped by cycle, oldest cycle first."""
    history: dict[int, list[ArbVote]] = {}
    for vote in list_votes(request_id):
        history.setdefault(vote.cycle, []).append(vote)
    return history


def upsert_vote(
    *,
    request_id: str,
    voter_id: str,
    stage: str,
    cycle: int,
    vote: str,
    comment: str | None = None,
    now: datetime | None = None,
) -> tuple[ArbVote, str | None]:
    """
    Insert or revise the vote identified by (request, voter, stage, cycle).

    Flushes so a duplicate insert surfaces here as IntegrityError.

    Returns:
        (vote_row, previous_vote) — previous_vote is None for a first cast.
    """
    now = now or datetime.now(timezone.utc)
    existing = get_vote(request_id, voter_id, stage, cycle)
    if existing is not None:
        previous = existing.vote
        existing.vote = vote
        existing.comment = comment
        existing.updated_at = now
        db.session.flush()
        return existing, previous

    row = ArbVote(
        request_id=request_id,
        voter_id=normalize_party_id(voter_id),
        stage=stage,
        cycle=cycle,
        vote=vote,
        comment=comment,
        voted_at=now,
    )
    db.session.add(row)
    db.session.flush()
    return row, None

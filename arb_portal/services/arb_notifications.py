"""
ARB Notification Dispatch

Workflow services collect ``(event, payload)`` pairs while they work and hand
them to ``dispatch_events`` only after their transaction has committed.  A
failing dispatcher is logged and never affects the committed workflow.

Events:
    review_started    stage reviewers
    vote_cast         stage reviewers other than the voter (debounced)
    stage_resolved    request owner
    stage_deadlocked  Board reviewers, who can record a manual decision
    auto_approved     request owner
    deadline_warning  stage reviewers (debounced per warning horizon)

Payload keys: request_id, owner_id, stage, cycle, and event-specific extras
(voter_id, outcome, tally, days_remaining, deadline_at, occurred_at).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

from flask import current_app

from arb_portal.models import db
from arb_portal.models.arb import ARC_REVIEW, BOARD_REVIEW, normalize_party_id
from arb_portal.models.notification import NotificationDebounce
from arb_portal.services.notification import NotificationService
from arb_portal.utils.helpers import as_utc

logger = logging.getLogger(__name__)

EVENT_REVIEW_STARTED = "review_started"
EVENT_VOTE_CAST = "vote_cast"
EVENT_STAGE_RESOLVED = "stage_resolved"
EVENT_STAGE_DEADLOCKED = "stage_deadlocked"
EVENT_AUTO_APPROVED = "auto_approved"
EVENT_DEADLINE_WARNING = "deadline_warning"

ARB_EVENTS = (
    EVENT_REVIEW_STARTED,
    EVENT_VOTE_CAST,
    EVENT_STAGE_RESOLVED,
    EVENT_STAGE_DEADLOCKED,
    EVENT_AUTO_APPROVED,
    EVENT_DEADLINE_WARNING,
)

_STAGE_LABEL = {ARC_REVIEW: "ARC", BOARD_REVIEW: "Board"}


# ── Dispatcher Abstract Base ─────────────────────────────────────────────────

class NotificationDispatcher(ABC):
    """Abstract sink for ARB workflow events."""

    @abstractmethod
    def dispatch(self, event: str, payload: dict) -> bool:
        """
        Deliver one workflow event.

        Returns:
            True if anything was sent, False if suppressed (debounce, no
            recipients).
        """
        ...


# ── In-app implementation ────────────────────────────────────────────────────

class InAppNotificationDispatcher(NotificationDispatcher):
    """Records Notification rows through NotificationService."""

    def dispatch(self, event: str, payload: dict) -> bool:
        handler = getattr(self, f"_on_{event}", None)
        if handler is None:
            logger.warning("Unknown ARB notification event %s", event, extra={"event_type": event})
            return False
        return handler(payload)

    # ── Debounce ──────────────────────────────────────────────────────────

    @staticmethod
    def _debounced(key: str, minutes: int, now: datetime) -> bool:
        """True when ``key`` fired less than ``minutes`` ago; otherwise stamps it."""
        row = db.session.get(NotificationDebounce, key)
        if row is not None and now - as_utc(row.last_sent_at) < timedelta(minutes=minutes):
            return True
        if row is None:
            db.session.add(NotificationDebounce(key=key, last_sent_at=now))
        else:
            row.last_sent_at = now
        return False

    # ── Recipients ────────────────────────────────────────────────────────

    @staticmethod
    def _reviewers(payload: dict, stage: str, exclude: str | None = None) -> list[str]:
        from arb_portal.services.arb_eligibility import eligible_voters

        voters = eligible_voters(payload["request_id"], stage, payload.get("cycle"))
        skip = normalize_party_id(exclude) if exclude else None
        return [v.voter_id for v in voters if not v.recused and v.voter_id != skip]

    @staticmethod
    def _send(payload: dict, recipients: list[str], *, title: str, message: str,
              severity: str = "info", category: str = "arb") -> bool:
        if not recipients:
            db.session.commit()
            return False
        NotificationService.broadcast(
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type="arb_request",
            entity_id=payload["request_id"],
            recipients=sorted(set(recipients)),
        )
        return True

    # ── Event handlers ────────────────────────────────────────────────────

    def _on_review_started(self, payload: dict) -> bool:
        stage = payload["stage"]
        label = _STAGE_LABEL.get(stage, stage)
        return self._send(
            payload, self._reviewers(payload, stage),
            title=f"{label} review started: {payload['request_id']}",
            message=f"An architectural request is awaiting your {label} vote.",
        )

    def _on_vote_cast(self, payload: dict) -> bool:
        stage = payload["stage"]
        now = payload.get("occurred_at") or datetime.now(timezone.utc)
        key = f"vote_cast:{payload['request_id']}:{stage}:{payload.get('cycle')}"
        if self._debounced(key, current_app.config["ARB_VOTE_CAST_DEBOUNCE_MINUTES"], now):
            return False
        tally = payload.get("tally") or {}
        label = _STAGE_LABEL.get(stage, stage)
        return self._send(
            payload, self._reviewers(payload, stage, exclude=payload.get("voter_id")),
            title=f"Vote cast on {payload['request_id']} "
                  f"({tally.get('votes_cast', 0)}/{tally.get('total_eligible', 0)})",
            message=f"{label} vote progress: {tally.get('majority_needed', 0)} needed for majority.",
        )

    def _on_stage_resolved(self, payload: dict) -> bool:
        stage = payload["stage"]
        outcome = payload.get("outcome", "")
        label = _STAGE_LABEL.get(stage, stage)
        severity = {"APPROVED": "success", "DENIED": "error"}.get(outcome, "warning")
        return self._send(
            payload, [payload["owner_id"]],
            title=f"{label} decision on {payload['request_id']}: {outcome.lower()}",
            message=payload.get("reason") or f"The {label} has reached a decision on your request.",
            severity=severity,
        )

    def _on_stage_deadlocked(self, payload: dict) -> bool:
        label = _STAGE_LABEL.get(payload["stage"], payload["stage"])
        return self._send(
            payload, self._reviewers(payload, BOARD_REVIEW),
            title=f"{label} vote deadlocked: {payload['request_id']}",
            message="Every eligible reviewer abstained. A Board decision is required before the deadline.",
            severity="warning",
        )

    def _on_auto_approved(self, payload: dict) -> bool:
        label = _STAGE_LABEL.get(payload["stage"], payload["stage"])
        return self._send(
            payload, [payload["owner_id"]],
            title=f"Auto-approved: {payload['request_id']}",
            message=payload.get("reason") or f"The {label} did not decide before the review deadline.",
            severity="success",
        )

    def _on_deadline_warning(self, payload: dict) -> bool:
        days = payload["horizon_days"]
        now = payload.get("occurred_at") or datetime.now(timezone.utc)
        key = f"deadline_warning_{days}day:{payload['request_id']}"
        if self._debounced(key, current_app.config["ARB_DEADLINE_WARNING_DEBOUNCE_MINUTES"], now):
            return False
        return self._send(
            payload, self._reviewers(payload, payload["stage"]),
            title=f"Deadline warning: {payload['request_id']} ({days} days remaining)",
            message=(
                f"Per {current_app.config['ARB_STATUTE_REFERENCE']}, the request is approved "
                f"automatically if no decision is reached by {payload.get('deadline_at')}."
            ),
            severity="warning",
            category="deadline",
        )


def get_notification_dispatcher() -> NotificationDispatcher:
    return current_app.extensions.get("arb_notification_dispatcher") or InAppNotificationDispatcher()


def dispatch_events(events: list[tuple[str, dict]], dispatcher: NotificationDispatcher | None = None) -> int:
    """
    Fire-and-forget delivery of already-committed workflow events.

    Returns the number of events that produced a notification.
    """
    dispatcher = dispatcher or get_notification_dispatcher()
    sent = 0
    for event, payload in events:
        try:
            if dispatcher.dispatch(event, payload):
                sent += 1
        except Exception:
            db.session.rollback()
            logger.exception(
                "ARB notification dispatch failed",
                extra={"arb_request_id": payload.get("request_id"), "event_type": event},
            )
    return sent

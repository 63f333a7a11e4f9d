"""
ARB notifications — in-app dispatcher, debounce and failure isolation.
"""

from datetime import datetime, timedelta, timezone

from arb_portal.models import db
from arb_portal.models.arb import ArbRequest
from arb_portal.models.notification import Notification, NotificationDebounce
from arb_portal.services.arb_notifications import (
    InAppNotificationDispatcher,
    NotificationDispatcher,
    dispatch_events,
)
from arb_portal.services.arb_voting import cast_vote

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


class _Exploding(NotificationDispatcher):
    def dispatch(self, event, payload):
        raise RuntimeError("mail relay down")


def _inbox(recipient):
    return Notification.query.filter_by(recipient=recipient).order_by(Notification.id).all()


def _payload(req, **extra):
    payload = {"request_id": req.id, "owner_id": req.owner_id, "stage": "ARC_REVIEW", "cycle": req.cycle}
    payload.update(extra)
    return payload


class TestInAppDispatcher:

    def test_review_started_reaches_stage_reviewers(self, submitted_request):
        # submit() already announced ARC review
        assert len(_inbox("arc1@hoa.test")) == 1
        assert _inbox("board1@hoa.test") == []
        assert _inbox("owner@hoa.test") == []

    def test_vote_cast_skips_the_voter(self, submitted_request):
        cast_vote(submitted_request.id, "arc1@hoa.test", "ARC_REVIEW", "APPROVE", now=NOW)
        assert len(_inbox("arc1@hoa.test")) == 1
        assert len(_inbox("arc2@hoa.test")) == 2
        assert _inbox("arc2@hoa.test")[-1].title.startswith("Vote cast on")

    def test_vote_cast_debounced(self, submitted_request):
        cast_vote(submitted_request.id, "arc1@hoa.test", "ARC_REVIEW", "RETURN", now=NOW)
        cast_vote(submitted_request.id, "arc3@hoa.test", "ARC_REVIEW", "APPROVE", now=NOW + timedelta(minutes=5))
        assert len(_inbox("arc2@hoa.test")) == 2

        cast_vote(submitted_request.id, "arc3@hoa.test", "ARC_REVIEW", "DENY", now=NOW + timedelta(hours=1))
        assert len(_inbox("arc2@hoa.test")) == 3
        key = f"vote_cast:{submitted_request.id}:ARC_REVIEW:1"
        assert db.session.get(NotificationDebounce, key) is not None

    def test_owner_told_of_outcome(self, submitted_request):
        cast_vote(submitted_request.id, "arc1@hoa.test", "ARC_REVIEW", "DENY", now=NOW)
        cast_vote(submitted_request.id, "arc2@hoa.test", "ARC_REVIEW", "DENY", now=NOW)
        inbox = _inbox("owner@hoa.test")
        assert len(inbox) == 1
        assert inbox[0].severity == "error"
        assert inbox[0].entity_id == submitted_request.id

    def test_deadlock_alerts_board(self, submitted_request, reviewers):
        for voter in reviewers["arc"]:
            cast_vote(submitted_request.id, voter, "ARC_REVIEW", "ABSTAIN", now=NOW)
        titles = [n.title for n in _inbox("board1@hoa.test")]
        assert any("deadlocked" in t for t in titles)

    def test_unknown_event_ignored(self, submitted_request):
        assert InAppNotificationDispatcher().dispatch("mystery", _payload(submitted_request)) is False

    def test_no_recipients_returns_false(self, make_request):
        req = make_request()
        assert InAppNotificationDispatcher().dispatch("review_started", _payload(req)) is False


class TestDispatchEvents:

    def test_counts_sent_events(self, submitted_request):
        events = [("stage_resolved", _payload(submitted_request, outcome="RETURNED"))]
        assert dispatch_events(events) == 1

    def test_failing_dispatcher_does_not_break_workflow(self, submitted_request):
        cast_vote(submitted_request.id, "arc1@hoa.test", "ARC_REVIEW", "APPROVE", dispatcher=_Exploding())
        result = cast_vote(
            submitted_request.id, "arc2@hoa.test", "ARC_REVIEW", "APPROVE", dispatcher=_Exploding(),
        )
        assert result["request"]["status"] == "BOARD_REVIEW"
        db.session.expire_all()
        assert db.session.get(ArbRequest, submitted_request.id).status == "BOARD_REVIEW"

    def test_failure_counted_as_not_sent(self, submitted_request):
        assert dispatch_events([("review_started", _payload(submitted_request))], _Exploding()) == 0

    def test_registered_dispatcher_used_by_default(self, app, submitted_request, monkeypatch):
        seen = []

        class _Recorder(NotificationDispatcher):
            def dispatch(self, event, payload):
                seen.append(event)
                return False

        monkeypatch.setitem(app.extensions, "arb_notification_dispatcher", _Recorder())
        cast_vote(submitted_request.id, "arc1@hoa.test", "ARC_REVIEW", "APPROVE")
        assert seen == ["vote_cast"]


class TestNotificationApi:

    def test_inbox_and_read(self, client, submitted_request):
        res = client.get("/api/v1/notifications?recipient=arc1@hoa.test")
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 1
        assert body["unread_count"] == 1

        nid = body["items"][0]["id"]
        res = client.post(f"/api/v1/notifications/{nid}/read")
        assert res.status_code == 200
        assert res.get_json()["is_read"] is True

        res = client.get("/api/v1/notifications/unread-count?recipient=arc1@hoa.test")
        assert res.get_json()["unread_count"] == 0

    def test_read_all(self, client, submitted_request):
        res = client.post("/api/v1/notifications/read-all", json={"recipient": "ARC2@hoa.test"})
        assert res.status_code == 200
        assert res.get_json()["marked_read"] == 1

    def test_unknown_notification(self, client):
        res = client.post("/api/v1/notifications/999/read")
        assert res.status_code == 404

"""
ARB request lifecycle — create, owner edits, submission, resubmission and
review cycles.
"""

from datetime import datetime, timedelta, timezone

import pytest

from arb_portal.core.exceptions import InvalidTransition, NotEligible, ValidationError
from arb_portal.models.audit import list_arb_audit
from arb_portal.services import arb_lifecycle
from arb_portal.services.arb_vote_store import list_votes, votes_by_cycle
from arb_portal.services.arb_voting import cast_vote

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
OWNER = "owner@hoa.test"


def _return_at_arc(req_id):
    cast_vote(req_id, "arc1@hoa.test", "ARC_REVIEW", "RETURN", comment="Missing survey")
    cast_vote(req_id, "arc2@hoa.test", "ARC_REVIEW", "RETURN")


class TestCreate:

    def test_create_draft(self, make_request):
        req = make_request(application_type=["Fencing", "Exterior Paint"])
        assert req.status == "DRAFT"
        assert req.cycle == 1
        assert req.owner_id == OWNER
        assert req.application_types == ["Fencing", "Exterior Paint"]
        assert req.submitted_at is None

    def test_owner_id_normalized(self):
        req = arb_lifecycle.create_request("  Owner@HOA.test ", "Paint the door")
        assert req.owner_id == OWNER

    def test_description_required(self):
        with pytest.raises(ValidationError):
            arb_lifecycle.create_request(OWNER, "   ")

    def test_unknown_application_type(self):
        with pytest.raises(ValidationError) as exc:
            arb_lifecycle.create_request(OWNER, "Build a moat", application_type="Moat")
        assert "application_type" in exc.value.details


class TestUpdate:

    def test_owner_edits_draft(self, make_request):
        req = make_request()
        arb_lifecycle.update_request(req.id, OWNER, phone="555-0100", description="Replace front fence")
        assert req.phone == "555-0100"
        assert req.description == "Replace front fence"

    def test_non_owner_rejected(self, make_request):
        req = make_request()
        with pytest.raises(NotEligible) as exc:
            arb_lifecycle.update_request(req.id, "neighbor@hoa.test", phone="1")
        assert exc.value.reason == "not_owner"

    def test_no_edits_under_review(self, submitted_request):
        with pytest.raises(InvalidTransition):
            arb_lifecycle.update_request(submitted_request.id, OWNER, phone="1")

    def test_invalid_field_leaves_request_untouched(self, make_request):
        req = make_request()
        with pytest.raises(ValidationError):
            arb_lifecycle.update_request(req.id, OWNER, phone="555", application_type="Moat")
        assert req.phone is None

    def test_edit_after_return(self, submitted_request):
        _return_at_arc(submitted_request.id)
        req = arb_lifecycle.update_request(submitted_request.id, OWNER, property_address="14 Heron Way")
        assert req.property_address == "14 Heron Way"


class TestSubmit:

    def test_submit_opens_arc_review(self, submitted_request):
        assert submitted_request.status == "ARC_REVIEW"
        assert submitted_request.stage == "ARC_REVIEW"
        assert submitted_request.submitted_at is not None

    def test_submit_without_auto_start(self, app, reviewers, make_request, monkeypatch):
        monkeypatch.setitem(app.config, "ARB_AUTO_START_ARC_REVIEW", False)
        req = make_request(submit=True)
        assert req.status == "SUBMITTED"

        with pytest.raises(NotEligible):
            arb_lifecycle.begin_arc_review(req.id, "board1@hoa.test")
        req = arb_lifecycle.begin_arc_review(req.id, "arc1@hoa.test")
        assert req.status == "ARC_REVIEW"

    def test_only_owner_submits(self, make_request):
        req = make_request()
        with pytest.raises(NotEligible):
            arb_lifecycle.submit(req.id, "arc1@hoa.test")

    def test_cannot_submit_twice(self, submitted_request):
        with pytest.raises(InvalidTransition):
            arb_lifecycle.submit(submitted_request.id, OWNER)


class TestCycles:

    def test_resubmission_starts_new_cycle(self, submitted_request):
        _return_at_arc(submitted_request.id)
        t1 = T0 + timedelta(days=12)
        req = arb_lifecycle.submit(submitted_request.id, OWNER, now=t1)

        assert req.cycle == 2
        assert req.status == "ARC_REVIEW"
        assert req.auto_approved_reason is None
        assert req.resolved_at is None
        actions = [e.action for e in list_arb_audit(req.id)]
        assert actions.count("cycle_incremented") == 1

    def test_previous_cycle_votes_kept(self, submitted_request):
        _return_at_arc(submitted_request.id)
        arb_lifecycle.submit(submitted_request.id, OWNER, now=T0 + timedelta(days=5))
        cast_vote(submitted_request.id, "arc1@hoa.test", "ARC_REVIEW", "APPROVE")

        history = votes_by_cycle(submitted_request.id)
        assert sorted(history) == [1, 2]
        assert len(history[1]) == 2
        assert [v.vote for v in history[2]] == ["APPROVE"]
        assert len(list_votes(submitted_request.id, "ARC_REVIEW", 2)) == 1

    def test_old_cycle_votes_do_not_count(self, submitted_request):
        _return_at_arc(submitted_request.id)
        arb_lifecycle.submit(submitted_request.id, OWNER, now=T0 + timedelta(days=5))
        result = cast_vote(submitted_request.id, "arc1@hoa.test", "ARC_REVIEW", "RETURN")
        assert result["resolution"]["outcome"] == "PENDING"
        assert result["resolution"]["return_count"] == 1

    def test_increment_cycle_requires_return(self, submitted_request):
        with pytest.raises(InvalidTransition):
            arb_lifecycle.increment_cycle(submitted_request.id)

    def test_board_return_resubmits_to_arc(self, submitted_request, reviewers):
        cast_vote(submitted_request.id, "arc1@hoa.test", "ARC_REVIEW", "APPROVE")
        cast_vote(submitted_request.id, "arc2@hoa.test", "ARC_REVIEW", "APPROVE")
        cast_vote(submitted_request.id, "board1@hoa.test", "BOARD_REVIEW", "RETURN")
        cast_vote(submitted_request.id, "board2@hoa.test", "BOARD_REVIEW", "RETURN")

        req = arb_lifecycle.submit(submitted_request.id, OWNER, now=T0 + timedelta(days=20))
        assert req.cycle == 2
        assert req.status == "ARC_REVIEW"


class TestQueries:

    def test_describe_request(self, submitted_request):
        cast_vote(submitted_request.id, "arc1@hoa.test", "ARC_REVIEW", "APPROVE")
        data = arb_lifecycle.describe_request(submitted_request, now=T0 + timedelta(days=25))

        assert data["status_label"] == "Under ARC Review"
        assert data["allowed_next_statuses"] == ["ARC_APPROVED", "ARC_DENIED", "ARC_RETURNED"]
        assert data["owner_can_edit"] is False
        assert [v["voter_id"] for v in data["votes_by_cycle"]["1"]] == ["arc1@hoa.test"]
        assert data["deadline"]["days_remaining"] == 5
        assert data["deadline"]["urgency"] == "warning"

    def test_list_and_count(self, submitted_request, make_request):
        make_request(owner="other@hoa.test")
        items, total = arb_lifecycle.list_requests(status="ARC_REVIEW")
        assert total == 1
        assert items[0].id == submitted_request.id

        _, total = arb_lifecycle.list_requests(owner_id="OTHER@hoa.test")
        assert total == 1

        counts = arb_lifecycle.count_requests_by_status()
        assert counts["ARC_REVIEW"] == 1
        assert counts["DRAFT"] == 1
        assert counts["BOARD_APPROVED"] == 0

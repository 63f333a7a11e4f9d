"""
ARB status machine — lifecycle graph, actor permissions and the
compare-and-swap status update.
"""

import pytest
from sqlalchemy import update

from arb_portal.core.exceptions import InvalidTransition, StorageConflict
from arb_portal.models import db
from arb_portal.models.arb import ArbRequest
from arb_portal.models.audit import list_arb_audit
from arb_portal.services.arb_status_machine import (
    allowed_next_statuses,
    can_owner_edit,
    is_review_stage,
    is_terminal_status,
    status_label,
    transition_status,
    validate_transition,
)


class TestGraph:

    @pytest.mark.parametrize("from_status,to_status", [
        ("DRAFT", "SUBMITTED"),
        ("SUBMITTED", "ARC_REVIEW"),
        ("ARC_REVIEW", "ARC_APPROVED"),
        ("ARC_REVIEW", "ARC_DENIED"),
        ("ARC_REVIEW", "ARC_RETURNED"),
        ("ARC_APPROVED", "BOARD_REVIEW"),
        ("BOARD_REVIEW", "BOARD_APPROVED"),
        ("BOARD_REVIEW", "BOARD_RETURNED"),
        ("ARC_RETURNED", "SUBMITTED"),
        ("BOARD_RETURNED", "SUBMITTED"),
    ])
    def test_legal_edges(self, from_status, to_status):
        assert validate_transition(from_status, to_status)["valid"] is True

    @pytest.mark.parametrize("from_status,to_status", [
        ("DRAFT", "ARC_REVIEW"),
        ("ARC_REVIEW", "BOARD_REVIEW"),
        ("ARC_DENIED", "SUBMITTED"),
        ("BOARD_APPROVED", "BOARD_REVIEW"),
        ("BOARD_DENIED", "SUBMITTED"),
        ("SUBMITTED", "DRAFT"),
    ])
    def test_illegal_edges(self, from_status, to_status):
        result = validate_transition(from_status, to_status)
        assert result["valid"] is False
        assert "cannot move" in result["reason"]

    def test_unknown_status(self):
        result = validate_transition("DRAFT", "ARCHIVED")
        assert result["valid"] is False
        assert "Unknown status" in result["reason"]

    def test_terminal_statuses_have_no_exits(self):
        for status in ("ARC_DENIED", "BOARD_DENIED", "BOARD_APPROVED"):
            assert is_terminal_status(status)
            assert allowed_next_statuses(status) == ()

    def test_owner_edit_window(self):
        assert can_owner_edit("DRAFT")
        assert can_owner_edit("ARC_RETURNED")
        assert can_owner_edit("BOARD_RETURNED")
        assert not can_owner_edit("ARC_REVIEW")
        assert not can_owner_edit("SUBMITTED")

    def test_helpers(self):
        assert is_review_stage("BOARD_REVIEW")
        assert not is_review_stage("ARC_APPROVED")
        assert status_label("BOARD_APPROVED") == "Approved"
        assert status_label("MYSTERY") == "MYSTERY"


class TestActorPermissions:

    def test_owner_cannot_approve(self):
        result = validate_transition("ARC_REVIEW", "ARC_APPROVED", actor_role="owner")
        assert result["valid"] is False
        assert "owner" in result["reason"]

    def test_arc_cannot_decide_board_stage(self):
        assert validate_transition("BOARD_REVIEW", "BOARD_APPROVED", "arc")["valid"] is False
        assert validate_transition("BOARD_REVIEW", "BOARD_APPROVED", "board")["valid"] is True

    def test_system_only_approves(self):
        assert validate_transition("ARC_REVIEW", "ARC_APPROVED", "system")["valid"] is True
        assert validate_transition("ARC_REVIEW", "ARC_DENIED", "system")["valid"] is False
        assert validate_transition("ARC_APPROVED", "BOARD_REVIEW", "system")["valid"] is True

    def test_chair_decides_either_stage(self):
        assert validate_transition("ARC_REVIEW", "ARC_RETURNED", "chair")["valid"] is True
        assert validate_transition("BOARD_REVIEW", "BOARD_DENIED", "chair")["valid"] is True


class TestTransitionStatus:

    def test_transition_writes_status_stage_and_audit(self, make_request):
        req = make_request()
        transition_status(req, "SUBMITTED", actor_id="owner@hoa.test", actor_role="owner", reason="go")
        db.session.commit()

        assert req.status == "SUBMITTED"
        assert req.stage == "SUBMITTED"
        entries = [e for e in list_arb_audit(req.id) if e.action == "status_transition"]
        assert len(entries) == 1
        assert entries[0].from_status == "DRAFT"
        assert entries[0].to_status == "SUBMITTED"
        assert entries[0].reason == "go"

    def test_invalid_edge_raises_without_writing(self, make_request):
        req = make_request()
        with pytest.raises(InvalidTransition) as exc:
            transition_status(req, "BOARD_APPROVED", actor_id="x")
        assert exc.value.details == {"from_status": "DRAFT", "to_status": "BOARD_APPROVED"}
        db.session.rollback()
        assert db.session.get(ArbRequest, req.id).status == "DRAFT"

    def test_lost_compare_and_swap(self, make_request):
        req = make_request()
        # Another writer moves the row underneath the loaded object
        db.session.execute(
            update(ArbRequest).where(ArbRequest.id == req.id).values(status="SUBMITTED")
            .execution_options(synchronize_session=False)
        )
        assert req.status == "DRAFT"
        with pytest.raises(StorageConflict):
            transition_status(req, "SUBMITTED", actor_id="owner@hoa.test")
        db.session.rollback()

    def test_terminal_status_sets_resolved_at(self, submitted_request):
        req = submitted_request
        transition_status(req, "ARC_DENIED", actor_id="arc1@hoa.test", actor_role="arc")
        db.session.commit()
        assert req.resolved_at is not None
        assert req.is_resolved

"""
ARB HTTP API — end-to-end flows through /api/v1/arb and the error contract.
"""

from datetime import datetime, timedelta, timezone

BASE = "/api/v1/arb"
OWNER = "owner@hoa.test"


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════


def _create(client, owner=OWNER, **extra):
    payload = {
        "owner_id": owner,
        "description": "Install a backyard pool",
        "application_type": ["Swimming Pool", "Landscape Installation"],
        "property_address": "7 Egret Ct",
        **extra,
    }
    r = client.post(f"{BASE}/requests", json=payload)
    assert r.status_code == 201, r.get_json()
    return r.get_json()


def _submit(client, request_id, actor=OWNER):
    return client.post(f"{BASE}/requests/{request_id}/submit", json={"actor_id": actor})


def _vote(client, request_id, voter, stage, vote, **extra):
    return client.post(f"{BASE}/requests/{request_id}/votes", json={
        "voter_id": voter, "stage": stage, "vote": vote, **extra,
    })


def _submitted(client):
    req = _create(client)
    r = _submit(client, req["id"])
    assert r.status_code == 200, r.get_json()
    return r.get_json()


# ═══════════════════════════════════════════════════════════════════════════
# Requests
# ═══════════════════════════════════════════════════════════════════════════


class TestRequests:

    def test_create_and_get(self, client, reviewers):
        req = _create(client)
        assert req["status"] == "DRAFT"
        assert req["application_type"] == "Swimming Pool, Landscape Installation"

        r = client.get(f"{BASE}/requests/{req['id']}")
        assert r.status_code == 200
        body = r.get_json()
        assert body["status_label"] == "Draft"
        assert body["owner_can_edit"] is True
        assert body["deadline"] is None

    def test_create_requires_fields(self, client):
        r = client.post(f"{BASE}/requests", json={"description": "x"})
        assert r.status_code == 400
        assert r.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_create_rejects_unknown_type(self, client):
        r = client.post(f"{BASE}/requests", json={
            "owner_id": OWNER, "description": "Moat", "application_type": "Moat",
        })
        assert r.status_code == 422
        assert r.get_json()["code"] == "ERR_VALIDATION_CONSTRAINT"

    def test_owner_from_header(self, client):
        r = client.post(f"{BASE}/requests", json={"description": "Paint shutters"},
                        headers={"X-Actor-Id": "Header@HOA.test"})
        assert r.status_code == 201
        assert r.get_json()["owner_id"] == "header@hoa.test"

    def test_patch_by_owner(self, client):
        req = _create(client)
        r = client.patch(f"{BASE}/requests/{req['id']}", json={"actor_id": OWNER, "phone": "555-0199"})
        assert r.status_code == 200
        assert r.get_json()["phone"] == "555-0199"

    def test_patch_by_stranger_forbidden(self, client):
        req = _create(client)
        r = client.patch(f"{BASE}/requests/{req['id']}", json={"actor_id": "x@hoa.test", "phone": "1"})
        assert r.status_code == 403
        assert r.get_json()["details"]["reason"] == "not_owner"

    def test_unknown_request(self, client):
        r = client.get(f"{BASE}/requests/nope")
        assert r.status_code == 404

    def test_list_filters(self, client, reviewers):
        _submitted(client)
        _create(client, owner="other@hoa.test")
        r = client.get(f"{BASE}/requests?status=ARC_REVIEW")
        assert r.get_json()["total"] == 1
        r = client.get(f"{BASE}/requests?owner_id=other@hoa.test")
        assert r.get_json()["total"] == 1

    def test_submit_twice_conflicts(self, client, reviewers):
        req = _submitted(client)
        r = _submit(client, req["id"])
        assert r.status_code == 409
        assert r.get_json()["code"] == "ERR_INVALID_TRANSITION"


# ═══════════════════════════════════════════════════════════════════════════
# Voting
# ═══════════════════════════════════════════════════════════════════════════


class TestVotingApi:

    def test_full_approval_flow(self, client, reviewers):
        req = _submitted(client)
        assert req["status"] == "ARC_REVIEW"

        r = _vote(client, req["id"], "arc1@hoa.test", "ARC_REVIEW", "APPROVE")
        assert r.status_code == 201
        r = _vote(client, req["id"], "arc2@hoa.test", "arc_review", "approve")
        assert r.status_code == 201
        assert r.get_json()["request"]["status"] == "BOARD_REVIEW"

        _vote(client, req["id"], "board1@hoa.test", "BOARD_REVIEW", "APPROVE")
        r = _vote(client, req["id"], "board2@hoa.test", "BOARD_REVIEW", "APPROVE")
        assert r.get_json()["request"]["status"] == "BOARD_APPROVED"

        r = client.get(f"{BASE}/requests/{req['id']}/votes")
        assert r.get_json()["total"] == 4
        r = client.get(f"{BASE}/requests/{req['id']}/votes?stage=BOARD_REVIEW")
        assert r.get_json()["total"] == 2

        r = _vote(client, req["id"], "board3@hoa.test", "BOARD_REVIEW", "DENY")
        assert r.status_code == 409
        assert r.get_json()["code"] == "ERR_ALREADY_RESOLVED"

    def test_revision_returns_200(self, client, reviewers):
        req = _submitted(client)
        _vote(client, req["id"], "arc1@hoa.test", "ARC_REVIEW", "APPROVE")
        r = _vote(client, req["id"], "arc1@hoa.test", "ARC_REVIEW", "RETURN", comment="Need drawings")
        assert r.status_code == 200
        assert r.get_json()["previous_vote"] == "APPROVE"

    def test_error_codes(self, client, reviewers):
        req = _submitted(client)
        r = _vote(client, req["id"], "board1@hoa.test", "BOARD_REVIEW", "APPROVE")
        assert (r.status_code, r.get_json()["code"]) == (409, "ERR_WRONG_STAGE")

        r = _vote(client, req["id"], "board1@hoa.test", "ARC_REVIEW", "APPROVE")
        assert (r.status_code, r.get_json()["code"]) == (403, "ERR_NOT_ELIGIBLE")
        assert r.get_json()["details"]["reason"] == "missing_role"

        r = _vote(client, req["id"], "arc1@hoa.test", "ARC_REVIEW", "MAYBE")
        assert (r.status_code, r.get_json()["code"]) == (422, "ERR_VALIDATION_CONSTRAINT")

        r = _vote(client, "missing", "arc1@hoa.test", "ARC_REVIEW", "APPROVE")
        assert r.status_code == 404

        r = client.post(f"{BASE}/requests/{req['id']}/votes", json={"voter_id": "arc1@hoa.test"})
        assert r.status_code == 400

        r = _vote(client, req["id"], "arc1@hoa.test", "ARC_REVIEW", "APPROVE", cycle="two")
        assert r.status_code == 400

    def test_deadlock_and_resolution(self, client, reviewers):
        req = _submitted(client)
        for voter in reviewers["arc"]:
            r = _vote(client, req["id"], voter, "ARC_REVIEW", "ABSTAIN")
        assert r.get_json()["resolution"]["outcome"] == "DEADLOCKED"

        r = _vote(client, req["id"], "arc1@hoa.test", "ARC_REVIEW", "APPROVE")
        assert (r.status_code, r.get_json()["code"]) == (409, "ERR_DEADLOCKED")

        r = client.post(f"{BASE}/requests/{req['id']}/deadlock-resolution",
                        json={"actor_id": "board1@hoa.test", "decision": "RETURNED", "reason": "Resubmit with survey"})
        assert r.status_code == 200
        assert r.get_json()["status"] == "ARC_RETURNED"

    def test_eligible_voters_and_summary(self, client, reviewers, make_user):
        make_user("dual@hoa.test", "arc_board")
        req = _submitted(client)
        _vote(client, req["id"], "dual@hoa.test", "ARC_REVIEW", "APPROVE")

        r = client.get(f"{BASE}/requests/{req['id']}/eligible-voters")
        assert r.status_code == 200
        body = r.get_json()
        assert body["request_id"] == req["id"]
        assert body["cycle"] == 1
        assert body["stage"] == "ARC_REVIEW"
        assert body["eligible_count"] == 4

        r = client.get(f"{BASE}/requests/{req['id']}/eligible-voters?stage=BOARD_REVIEW")
        assert r.status_code == 200
        body = r.get_json()
        assert body["eligible_count"] == 3
        dual = next(v for v in body["voters"] if v["voter_id"] == "dual@hoa.test")
        assert dual["recused"] is True

        r = client.get(f"{BASE}/requests/{req['id']}/vote-summary")
        body = r.get_json()
        assert body["resolution"]["approve_count"] == 1
        assert body["progress"] == "1 of 4 votes cast (3 needed for majority)"
        assert body["projected_outcome"] == "Approval leading"
        assert body["possible"]["approval"] is True

    def test_eligible_voters_needs_stage_outside_review(self, client):
        req = _create(client)
        r = client.get(f"{BASE}/requests/{req['id']}/eligible-voters")
        assert r.status_code == 400


# ═══════════════════════════════════════════════════════════════════════════
# Audit, dashboard, deadlines
# ═══════════════════════════════════════════════════════════════════════════


class TestReadModels:

    def test_audit_history(self, client, reviewers):
        req = _submitted(client)
        _vote(client, req["id"], "arc1@hoa.test", "ARC_REVIEW", "APPROVE")
        r = client.get(f"{BASE}/requests/{req['id']}/audit")
        items = r.get_json()["items"]
        assert [i["action"] for i in items] == [
            "request_created", "status_transition", "status_transition", "vote_cast",
        ]

    def test_dashboard(self, client, reviewers):
        _submitted(client)
        _create(client)
        body = client.get(f"{BASE}/dashboard").get_json()
        assert body["total"] == 2
        assert body["counts_by_status"]["ARC_REVIEW"] == 1

    def test_health(self, client):
        assert client.get("/api/v1/health/ready").status_code == 200
        body = client.get("/api/v1/health/live").get_json()
        assert body["checks"]["database"]["status"] == "ok"


class TestDeadlinesApi:

    def test_apply_with_pinned_clock(self, client, reviewers):
        req = _submitted(client)
        deadline = datetime.fromisoformat(req["deadline_at"])
        if deadline.tzinfo is None:
            deadline = deadline.replace(tzinfo=timezone.utc)

        early = (deadline - timedelta(days=1)).isoformat()
        r = client.post(f"{BASE}/deadlines/apply", json={"now": early})
        assert r.get_json()["count"] == 0

        late = (deadline + timedelta(minutes=5)).isoformat()
        r = client.post(f"{BASE}/deadlines/apply", json={"now": late})
        assert r.get_json()["auto_approved"] == [req["id"]]

        r = client.post(f"{BASE}/deadlines/apply", json={"now": late})
        assert r.get_json()["count"] == 0

        body = client.get(f"{BASE}/requests/{req['id']}").get_json()
        assert body["status"] == "BOARD_REVIEW"
        assert body["auto_approved_reason"] == "deadline_expired"

    def test_bad_now(self, client):
        r = client.post(f"{BASE}/deadlines/apply", json={"now": "yesterday"})
        assert r.status_code == 400

    def test_nearing(self, client, reviewers):
        req = _submitted(client)
        deadline = datetime.fromisoformat(req["deadline_at"])
        now = (deadline - timedelta(days=4)).isoformat()
        r = client.get(f"{BASE}/deadlines/nearing", query_string={"days": 7, "now": now})
        body = r.get_json()
        assert body["total"] == 1
        assert body["items"][0]["deadline"]["urgency"] == "warning"

    def test_warnings(self, client, reviewers):
        req = _submitted(client)
        deadline = datetime.fromisoformat(req["deadline_at"])
        now = (deadline - timedelta(days=2, hours=6)).isoformat()
        r = client.post(f"{BASE}/deadlines/warnings", json={"now": now})
        assert r.get_json() == {"sent_7_day": 0, "sent_3_day": 1}

    def test_lazy_check_before_requests(self, app, client, reviewers, make_request, monkeypatch):
        stale = make_request(submit=True, now=datetime.now(timezone.utc) - timedelta(days=31))
        monkeypatch.setitem(app.config, "ARB_LAZY_DEADLINE_CHECK", True)

        body = client.get(f"{BASE}/requests/{stale.id}").get_json()
        assert body["status"] == "BOARD_REVIEW"
        assert body["auto_approved_reason"] == "deadline_expired"

"""
Shared pytest fixtures for the ARB portal test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - reviewers: three ARC members, three Board members and an owner
    - make_user: factory for one-off members (dual-role, inactive, …)
    - make_request / submitted_request: requests pinned to a fixed clock
"""

from datetime import datetime, timezone

import pytest

from arb_portal import create_app
from arb_portal.models import db as _db
from arb_portal.models.auth import ROLE_ARC, ROLE_BOARD, ROLE_MEMBER, User

OWNER = "owner@hoa.test"
ARC_MEMBERS = ("arc1@hoa.test", "arc2@hoa.test", "arc3@hoa.test")
BOARD_MEMBERS = ("board1@hoa.test", "board2@hoa.test", "board3@hoa.test")

# Fixed submission clock; deadline = T0 + 30 days
T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Members ──────────────────────────────────────────────────────────────


def _add_user(email, role, *, full_name=None, status="active"):
    user = User(email=email, full_name=full_name or email.split("@")[0].title(), role=role, status=status)
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture()
def make_user():
    """Factory: make_user("dual@hoa.test", "arc_board", status="inactive")."""
    return _add_user


@pytest.fixture()
def reviewers():
    """Seed the standard committee and return their voter ids."""
    for email in ARC_MEMBERS:
        _add_user(email, ROLE_ARC)
    for email in BOARD_MEMBERS:
        _add_user(email, ROLE_BOARD)
    _add_user(OWNER, ROLE_MEMBER, full_name="Pat Owner")
    return {"arc": list(ARC_MEMBERS), "board": list(BOARD_MEMBERS), "owner": OWNER}


# ── Requests ─────────────────────────────────────────────────────────────


@pytest.fixture()
def make_request():
    """Factory for DRAFT requests; pass ``submit=True`` to open ARC review at T0."""
    from arb_portal.services import arb_lifecycle

    def _make(owner=OWNER, *, submit=False, now=T0, description="Replace rear fence", **fields):
        fields.setdefault("application_type", "Fencing")
        fields.setdefault("property_address", "12 Heron Way")
        req = arb_lifecycle.create_request(owner, description, **fields)
        if submit:
            req = arb_lifecycle.submit(req.id, owner, now=now)
        return req

    return _make


@pytest.fixture()
def submitted_request(reviewers, make_request):
    """A request in ARC_REVIEW, cycle 1, submitted at T0."""
    return make_request(submit=True)

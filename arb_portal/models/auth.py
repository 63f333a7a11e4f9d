"""
HOA Architectural Review Portal
Member / reviewer directory model.

Models:
    - User: portal member and the committee roles they hold

Reviewer identity throughout the ARB workflow is the lowercased email, so
``User.email`` doubles as ``voter_id`` and ``owner_id``.
"""

from datetime import datetime, timezone

from arb_portal.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ROLE_MEMBER = "member"
ROLE_ARC = "arc"
ROLE_BOARD = "board"
ROLE_ARC_BOARD = "arc_board"
USER_ROLES = {ROLE_MEMBER, ROLE_ARC, ROLE_BOARD, ROLE_ARC_BOARD}

USER_STATUSES = {"active", "inactive"}


class User(db.Model):
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_users_email"),
        db.Index("ix_users_role", "role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(200))
    role = db.Column(db.String(20), nullable=False, default=ROLE_MEMBER)  # member, arc, board, arc_board
    status = db.Column(db.String(20), default="active")  # active, inactive
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_active(self) -> bool:
        return (self.status or "active") == "active"

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"

"""ARB voting workflow — requests, votes, audit log, reviewers, notifications

Revision ID: a1r2b3c4v501
Revises:
Create Date: 2026-10-18 09:00:00.000000

Changes:
  - Create users (reviewer directory: member / arc / board / arc_board)
  - Create arb_requests (lifecycle status, cycle, statutory deadline)
  - Create arb_votes with UNIQUE (request_id, voter_id, stage, cycle)
  - Create arb_audit_log (append-only)
  - Create notifications and notification_debounce
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "a1r2b3c4v501"
down_revision = None
branch_labels = None
depends_on = None


def _has_table(name):
    return name in sa.inspect(op.get_bind()).get_table_names()


def upgrade():
    # ── Users ──
    if not _has_table("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(255), nullable=False),
            sa.Column("full_name", sa.String(200), nullable=True),
            sa.Column("role", sa.String(20), nullable=False, server_default="member"),
            sa.Column("status", sa.String(20), server_default="active"),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("email", name="uq_users_email"),
        )
        op.create_index("ix_users_role", "users", ["role"])

    # ── ArbRequest ──
    if not _has_table("arb_requests"):
        op.create_table(
            "arb_requests",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("owner_id", sa.String(255), nullable=False,
                      comment="Owner email / user identifier"),
            sa.Column("applicant_name", sa.String(200), nullable=True),
            sa.Column("phone", sa.String(40), nullable=True),
            sa.Column("property_address", sa.String(300), nullable=True),
            sa.Column("application_type", sa.String(200), nullable=True,
                      comment="Comma-separated APPLICATION_TYPES"),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
            sa.Column("stage", sa.String(20), nullable=False, server_default="DRAFT"),
            sa.Column("cycle", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("deadline_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("auto_approved_reason", sa.String(50), nullable=True,
                      comment="Set only by the deadline monitor (deadline_expired)"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_arb_requests_owner", "arb_requests", ["owner_id"])
        op.create_index("ix_arb_requests_status", "arb_requests", ["status"])
        op.create_index("ix_arb_requests_stage_deadline", "arb_requests", ["stage", "deadline_at"])

    # ── ArbVote ──
    if not _has_table("arb_votes"):
        op.create_table(
            "arb_votes",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("request_id", sa.String(36),
                      sa.ForeignKey("arb_requests.id", ondelete="CASCADE"), nullable=False),
            sa.Column("voter_id", sa.String(255), nullable=False),
            sa.Column("stage", sa.String(20), nullable=False),
            sa.Column("cycle", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("vote", sa.String(10), nullable=False),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("voted_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.UniqueConstraint("request_id", "voter_id", "stage", "cycle",
                                name="uq_arb_vote_identity"),
            sa.CheckConstraint("stage IN ('ARC_REVIEW', 'BOARD_REVIEW')", name="ck_arb_vote_stage"),
            sa.CheckConstraint("vote IN ('APPROVE', 'DENY', 'RETURN', 'ABSTAIN')",
                               name="ck_arb_vote_choice"),
        )
        op.create_index("ix_arb_votes_request_stage_cycle", "arb_votes",
                        ["request_id", "stage", "cycle"])
        op.create_index("ix_arb_votes_voter", "arb_votes", ["voter_id"])

    # ── ArbAuditLog ──
    if not _has_table("arb_audit_log"):
        op.create_table(
            "arb_audit_log",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("request_id", sa.String(36),
                      sa.ForeignKey("arb_requests.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("action", sa.String(40), nullable=False),
            sa.Column("from_status", sa.String(20), nullable=True),
            sa.Column("to_status", sa.String(20), nullable=True),
            sa.Column("actor_id", sa.String(255), nullable=False, server_default="system"),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("cycle", sa.Integer(), nullable=True),
            sa.Column("metadata_json", sa.Text(), server_default="{}"),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("idx_arb_audit_request", "arb_audit_log", ["request_id"])
        op.create_index("idx_arb_audit_action", "arb_audit_log", ["action"])
        op.create_index("idx_arb_audit_ts", "arb_audit_log", ["timestamp"])

    # ── Notifications ──
    if not _has_table("notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("recipient", sa.String(255), server_default="all", index=True),
            sa.Column("title", sa.String(300), nullable=False),
            sa.Column("message", sa.Text(), server_default=""),
            sa.Column("category", sa.String(30), server_default="arb"),
            sa.Column("severity", sa.String(20), server_default="info"),
            sa.Column("entity_type", sa.String(30), server_default=""),
            sa.Column("entity_id", sa.String(36), nullable=True),
            sa.Column("is_read", sa.Boolean(), server_default=sa.false()),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        )

    if not _has_table("notification_debounce"):
        op.create_table(
            "notification_debounce",
            sa.Column("key", sa.String(120), primary_key=True),
            sa.Column("last_sent_at", sa.DateTime(timezone=True), nullable=False),
        )


def downgrade():
    op.drop_table("notification_debounce")
    op.drop_table("notifications")
    op.drop_index("idx_arb_audit_ts", table_name="arb_audit_log")
    op.drop_index("idx_arb_audit_action", table_name="arb_audit_log")
    op.drop_index("idx_arb_audit_request", table_name="arb_audit_log")
    op.drop_table("arb_audit_log")
    op.drop_index("ix_arb_votes_voter", table_name="arb_votes")
    op.drop_index("ix_arb_votes_request_stage_cycle", table_name="arb_votes")
    op.drop_table("arb_votes")
    op.drop_index("ix_arb_requests_stage_deadline", table_name="arb_requests")
    op.drop_index("ix_arb_requests_status", table_name="arb_requests")
    op.drop_index("ix_arb_requests_owner", table_name="arb_requests")
    op.drop_table("arb_requests")
    op.drop_index("ix_users_role", table_name="users")
    op.drop_table("users")

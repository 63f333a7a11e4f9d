"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db migrate -m "description"
    flask db upgrade
    flask arb-apply-deadlines
"""

from arb_portal import create_app

app = create_app()

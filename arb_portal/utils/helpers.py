"""Shared utility functions for blueprints and services.

get_or_404:          tuple-return lookup used by the blueprints
as_utc:              normalise naive datetimes read back from SQLite
parse_datetime:      query-string / JSON timestamps (None on bad input)
parse_int:           query-string integers with a fallback
"""
from datetime import datetime, timezone

from flask import jsonify

from arb_portal.models import db


def get_or_404(model, pk, label=None):
    """Fetch a model instance by primary key or return a 404 error tuple.

    - Success: (obj, None)
    - Failure: (None, (jsonify_response, 404))

        obj, err = get_or_404(ArbRequest, request_id)
        if err:
            return err
    """
    label = label or model.__name__
    obj = db.session.get(model, pk)
    if not obj:
        return None, (jsonify({"error": f"{label} not found", "code": "ERR_NOT_FOUND"}), 404)
    return obj, None


def as_utc(value):
    """Return ``value`` as an aware UTC datetime.

    SQLite drops tzinfo on round-trip, so values read back are naive but
    were written as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value):
    """Parse an ISO-8601 timestamp to an aware UTC datetime.

    Returns None for empty/invalid input.  A trailing ``Z`` is accepted.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except (ValueError, TypeError):
        return None


def parse_int(value, default=None):
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


"""
HOA Architectural Review Portal
Notification Blueprint.

Provides:
    GET  /api/v1/notifications?recipient=&unread_only=   — inbox, newest first
    GET  /api/v1/notifications/unread-count?recipient=
    POST /api/v1/notifications/<id>/read
    POST /api/v1/notifications/read-all                  — {"recipient": ...}
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from arb_portal.blueprints import pagination_args
from arb_portal.models.arb import normalize_party_id
from arb_portal.services.notification import NotificationService
from arb_portal.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1")


def _recipient(value):
    return normalize_party_id(value) or "all"


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    recipient = _recipient(request.args.get("recipient"))
    unread_only = request.args.get("unread_only", "").lower() in ("1", "true", "yes")
    limit, offset = pagination_args()
    items, total = NotificationService.list_for_recipient(
        recipient, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(recipient),
    }), 200


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    recipient = _recipient(request.args.get("recipient"))
    return jsonify({"recipient": recipient, "unread_count": NotificationService.unread_count(recipient)}), 200


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    notif = NotificationService.mark_read(notification_id)
    if notif is None:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    data = request.get_json(silent=True) or {}
    recipient = _recipient(data.get("recipient"))
    count = NotificationService.mark_all_read(recipient)
    logger.info("Marked %d notification(s) read for %s", count, recipient)
    return jsonify({"marked_read": count}), 200

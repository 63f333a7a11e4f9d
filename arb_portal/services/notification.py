"""
HOA Architectural Review Portal
Notification Service.

Central service for creating, broadcasting and querying in-app
notifications.  The ARB dispatcher (arb_notifications) is the main caller.
"""

from datetime import datetime, timezone

from arb_portal.models import db
from arb_portal.models.notification import Notification


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Broadcast ─────────────────────────────────────────────────────────

    @staticmethod
    def broadcast(*, title, message="", category="arb", severity="info",
                  entity_type="", entity_id=None, recipients=None):
        """
        Send a notification to multiple recipients (or 'all' if none given).

        Args:
            recipients: list of member emails. If None, sends to 'all'.

        Returns:
            List of created Notification instances.
        """
        targets = recipients or ["all"]
        notifications = []
        for r in targets:
            notif = Notification(
                recipient=r,
                title=title,
                message=message,
                category=category,
                severity=severity,
                entity_type=entity_type,
                entity_id=entity_id,
            )
            db.session.add(notif)
            notifications.append(notif)
        db.session.commit()
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient="all", unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter(
            (Notification.recipient == recipient) | (Notification.recipient == "all")
        )
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = q.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def unread_count(recipient="all"):
        """Return count of unread notifications."""
        return Notification.query.filter(
            (Notification.recipient == recipient) | (Notification.recipient == "all")
        ).filter_by(is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id):
        """Mark a single notification as read."""
        notif = db.session.get(Notification, notification_id)
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient="all"):
        """Mark all notifications for a recipient as read."""
        q = Notification.query.filter(
            (Notification.recipient == recipient) | (Notification.recipient == "all")
        ).filter_by(is_read=False)
        now = datetime.now(timezone.utc)
        count = q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        db.session.commit()
        return count

"""
Cleaning Operations Platform
Notification Service.

Central service for creating and querying in-app notifications. Lifecycle
services call ``notify_safely`` after their transition has been committed:
a notification failure is logged and swallowed so it can never undo or block
the state change that triggered it.
"""

import logging
from datetime import datetime, timezone

from cleanops.models import db
from cleanops.models.notification import NOTIFICATION_TYPES, Notification

logger = logging.getLogger(__name__)

_BODY_PREVIEW = 80


def preview(text, limit=_BODY_PREVIEW):
    """Shorten free text for a notification body."""
    if not text:
        return None
    return text if len(text) <= limit else text[:limit] + "..."


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def notify(user_id, type, title, body=None, link=None, *, org_id=None):
        """
        Create a single notification record for one recipient.

        Returns:
            The created Notification instance (already committed).
        """
        if type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type: {type}")
        notif = Notification(
            org_id=org_id,
            user_id=user_id,
            type=type,
            title=title,
            body=body,
            link=link,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(user_id, unread_only=False, limit=50, offset=0):
        """Retrieve notifications for a recipient, newest first."""
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark a single notification as read; only the recipient may do so."""
        notif = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all notifications for a recipient as read."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query.filter_by(user_id=user_id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count


def notify_safely(user_id, type, title, body=None, link=None, *, org_id=None):
    """Best-effort notify: never raises, returns the Notification or None."""
    if not user_id:
        return None
    try:
        return NotificationService.notify(user_id, type, title, body, link, org_id=org_id)
    except Exception:
        db.session.rollback()
        logger.warning(
            "Notification %s to user %s failed, transition unaffected",
            type, user_id, exc_info=True,
        )
        return None

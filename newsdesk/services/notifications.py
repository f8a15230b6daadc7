"""
System Notification Service

Operator-facing notifications raised by the pipeline (automation failures
and similar events), plus the read/acknowledge operations used by the
admin surface.
"""

import logging
import math
from datetime import timedelta
from typing import Optional

from newsdesk.database import SessionLocal
from newsdesk.models import SystemNotification, as_utc, get_by_id, utcnow

logger = logging.getLogger(__name__)

# Notification type tags
AUTOMATION_FAILED = "AUTOMATION_FAILED"
SOCIAL_POST_FAILED = "SOCIAL_POST_FAILED"


def serialize_notification(notification: SystemNotification) -> dict:
    created_at = as_utc(notification.created_at)
    return {
        'id': str(notification.id),
        'type': notification.type,
        'title': notification.title,
        'message': notification.message,
        'data': notification.data,
        'is_read': notification.is_read,
        'created_at': created_at.isoformat() if created_at else None,
    }


def create_notification(type: str, title: str, message: str,
                        data: Optional[dict] = None, session=None):
    """
    Create a notification.

    With a session, the notification joins the caller's transaction and
    the caller commits. Without one it is committed on its own and
    failures are logged rather than raised.

    Returns:
        The notification id, or None if it could not be stored
    """
    notification = SystemNotification(
        type=type,
        title=title,
        message=message,
        data=data,
        is_read=False,
    )

    if session is not None:
        session.add(notification)
        session.flush()
        logger.info(f"Notification queued: {type} - {title}")
        return notification.id

    own_session = SessionLocal()
    try:
        own_session.add(notification)
        own_session.commit()
        logger.info(f"Notification created: {type} - {title}")
        return notification.id
    except Exception as e:
        own_session.rollback()
        logger.error(f"Failed to create notification {type}: {e}")
        return None
    finally:
        own_session.close()


def get_unread_count() -> int:
    session = SessionLocal()
    try:
        return session.query(SystemNotification).filter(
            SystemNotification.is_read == False  # noqa: E712
        ).count()
    finally:
        session.close()


def get_notifications(page: int = 1, per_page: int = 20, unread_only: bool = False) -> dict:
    """
    Paginated notifications, newest first.

    Returns:
        {'data': [...], 'meta': {'current_page', 'total_pages', 'total_items', 'per_page'}}
    """
    page = max(page, 1)
    per_page = max(per_page, 1)

    session = SessionLocal()
    try:
        query = session.query(SystemNotification)
        if unread_only:
            query = query.filter(SystemNotification.is_read == False)  # noqa: E712

        total = query.count()
        notifications = query.order_by(
            SystemNotification.created_at.desc()
        ).offset((page - 1) * per_page).limit(per_page).all()

        return {
            'data': [serialize_notification(n) for n in notifications],
            'meta': {
                'current_page': page,
                'total_pages': math.ceil(total / per_page),
                'total_items': total,
                'per_page': per_page,
            }
        }
    finally:
        session.close()


def mark_as_read(notification_id) -> bool:
    """Returns False if the notification does not exist."""
    session = SessionLocal()
    try:
        notification = get_by_id(session, SystemNotification, notification_id)
        if notification is None:
            return False
        notification.is_read = True
        session.commit()
        return True
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def mark_all_as_read() -> int:
    session = SessionLocal()
    try:
        updated = session.query(SystemNotification).filter(
            SystemNotification.is_read == False  # noqa: E712
        ).update({SystemNotification.is_read: True}, synchronize_session=False)
        session.commit()
        return updated
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def delete_notification(notification_id) -> bool:
    session = SessionLocal()
    try:
        notification = get_by_id(session, SystemNotification, notification_id)
        if notification is None:
            return False
        session.delete(notification)
        session.commit()
        return True
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def cleanup_old_notifications(days_old: int = 30) -> int:
    """
    Delete read notifications older than the cutoff.

    Returns:
        Number of deleted notifications
    """
    cutoff = utcnow() - timedelta(days=days_old)
    session = SessionLocal()
    try:
        deleted = session.query(SystemNotification).filter(
            SystemNotification.created_at < cutoff,
            SystemNotification.is_read == True  # noqa: E712
        ).delete(synchronize_session=False)
        session.commit()
        logger.info(f"Deleted {deleted} read notifications older than {days_old} days")
        return deleted
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

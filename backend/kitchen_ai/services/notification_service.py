"""User notifications: persisted rows plus a best-effort Redis fan-out"""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from kitchen_ai.db.redis import publish_user_event
from kitchen_ai.models.notification import SEVERITIES, UserNotification

logger = logging.getLogger(__name__)


def create_notification(
    db: Session,
    user_id: str,
    title: str,
    message: str,
    severity: str = "info",
    type: str = "subscription",
    action_url: Optional[str] = None,
    related_entity: Optional[str] = None
) -> Optional[UserNotification]:
    """Insert a notification inside the caller's transaction

    Never raises: a failed notification must not fail the surrounding
    subscription update, so errors are logged and None is returned.
    """
    if severity not in SEVERITIES:
        logger.warning(f"Unknown notification severity '{severity}', using 'info'")
        severity = "info"

    notification = UserNotification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        severity=severity,
        action_url=action_url,
        related_entity=related_entity,
    )
    try:
        with db.begin_nested():
            db.add(notification)
    except Exception as e:
        logger.error(f"Failed to create notification '{title}' for user {user_id}: {e}")
        return None

    try:
        publish_user_event(user_id, "notification_created", notification.to_dict())
    except Exception as e:
        logger.warning(f"Failed to publish notification for user {user_id}: {e}")

    return notification


def list_notifications(db: Session, user_id: str, unread_only: bool = False, limit: int = 50) -> List[UserNotification]:
    query = db.query(UserNotification).filter(UserNotification.user_id == user_id)
    if unread_only:
        query = query.filter(UserNotification.is_read.is_(False))
    return query.order_by(UserNotification.created_at.desc()).limit(limit).all()


def mark_notification_read(db: Session, user_id: str, notification_id: int) -> bool:
    notification = db.query(UserNotification).filter(
        UserNotification.id == notification_id,
        UserNotification.user_id == user_id
    ).first()
    if not notification:
        return False
    notification.is_read = True
    db.commit()
    return True

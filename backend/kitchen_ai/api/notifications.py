"""In-app notification routes"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from kitchen_ai.core.errors import NotFoundError
from kitchen_ai.core.security import AuthUser, require_auth
from kitchen_ai.db.session import get_db
from kitchen_ai.services.notification_service import list_notifications, mark_notification_read

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
def get_notifications(
    unread_only: bool = False,
    limit: int = 50,
    user: AuthUser = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Most recent notifications for the caller"""
    notifications = list_notifications(db, user.id, unread_only=unread_only, limit=min(limit, 200))
    return {"notifications": [n.to_dict() for n in notifications]}


@router.post("/{notification_id}/read")
def read_notification(notification_id: int, user: AuthUser = Depends(require_auth), db: Session = Depends(get_db)):
    if not mark_notification_read(db, user.id, notification_id):
        raise NotFoundError("Notificación no encontrada", code="notification_not_found")
    return {"success": True}

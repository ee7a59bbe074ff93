"""Scheduled job routes, authenticated with the shared cron secret"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from kitchen_ai.core.security import require_cron_secret
from kitchen_ai.db.session import get_db
from kitchen_ai.services.expiration_service import expire_subscriptions, notify_expiring_subscriptions

router = APIRouter(tags=["cron"], dependencies=[Depends(require_cron_secret)])


@router.post("/expire-subscriptions")
def expire_subscriptions_route(db: Session = Depends(get_db)):
    return expire_subscriptions(db)


@router.post("/notify-expiring-subscriptions")
def notify_expiring_subscriptions_route(db: Session = Depends(get_db)):
    return notify_expiring_subscriptions(db)

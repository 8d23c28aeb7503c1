"""Notification subscription endpoints."""

from fastapi import APIRouter, Query, Security, status
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from uuid import UUID
from pydantic import BaseModel

from auth import get_current_user, require_roles
from notifications import SubscriptionManager, NotificationDispatcher, is_digest_due
from users import ADMIN_ROLES, ROLES, check_self_or_admin

router = APIRouter(
    prefix="/notifications",
    tags=["Notifications"]
)

manager = SubscriptionManager()

class SubscribeRequest(BaseModel):
    """Request model for a notification subscription."""
    user_id: Optional[UUID] = None
    frequency: str
    categories: List[str]

@router.post("", status_code=status.HTTP_201_CREATED)
async def subscribe(
    request: SubscribeRequest,
    user: Dict[str, Any] = Security(require_roles(*ROLES))
):
    """Create or replace a notification subscription."""
    user_id = request.user_id or user['user_id']
    check_self_or_admin(user, user_id, "You can only manage your own subscription")
    return await manager.subscribe(user_id, request.frequency, request.categories)

@router.get("/me")
async def get_my_subscription(user: Dict[str, Any] = Security(get_current_user)):
    """Get the caller's subscription."""
    return await manager.get_subscription(user['user_id'])

@router.delete("/me")
async def unsubscribe(user: Dict[str, Any] = Security(get_current_user)):
    """Remove the caller's subscription."""
    await manager.unsubscribe(user['user_id'])
    return {"message": "Unsubscribed successfully"}

@router.post("/send")
async def send_notifications(
    newsletter: bool = Query(False),
    user: Dict[str, Any] = Security(require_roles(*ADMIN_ROLES))
):
    """Send the digests due now, and the newsletter when asked or on Sundays."""
    now = datetime.now(timezone.utc)
    dispatcher = NotificationDispatcher()
    sent = await dispatcher.send_digests(now)
    newsletters = 0
    if newsletter or is_digest_due('weekly', now):
        newsletters = await dispatcher.send_newsletters(now)
    return {
        "message": "Notifications sent successfully",
        "digests_sent": sent,
        "newsletters_sent": newsletters
    }

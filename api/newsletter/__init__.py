"""Newsletter subscription endpoints."""

from fastapi import APIRouter, Security, status
from typing import Any, Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel

from auth import get_current_user
from notifications import NewsletterManager
from users import check_self_or_admin

router = APIRouter(
    prefix="/newsletter",
    tags=["Newsletter"]
)

manager = NewsletterManager()

class NewsletterSubscribeRequest(BaseModel):
    """Request model for subscribing to the newsletter."""
    subscription_type: str
    notification_types: List[str] = []

class NewsletterUpdateRequest(BaseModel):
    """Request model for changing newsletter preferences."""
    subscription_type: Optional[str] = None
    notification_types: Optional[List[str]] = None

@router.post("/subscribe", status_code=status.HTTP_201_CREATED)
async def subscribe(
    request: NewsletterSubscribeRequest,
    user: Dict[str, Any] = Security(get_current_user)
):
    """Subscribe the caller to the newsletter."""
    return await manager.subscribe(
        user['user_id'],
        request.subscription_type,
        request.notification_types
    )

@router.put("/update/{user_id}")
async def update_subscription(
    user_id: UUID,
    request: NewsletterUpdateRequest,
    user: Dict[str, Any] = Security(get_current_user)
):
    """Change a user's newsletter preferences."""
    check_self_or_admin(user, user_id, "You can only manage your own subscription")
    return await manager.update(
        user_id,
        subscription_type=request.subscription_type,
        notification_types=request.notification_types
    )

@router.delete("/unsubscribe/{user_id}")
async def unsubscribe(
    user_id: UUID,
    user: Dict[str, Any] = Security(get_current_user)
):
    """Remove a user's newsletter subscription."""
    check_self_or_admin(user, user_id, "You can only manage your own subscription")
    await manager.unsubscribe(user_id)
    return {"message": "Unsubscribed successfully"}

"""User profile and administration endpoints."""

from fastapi import APIRouter, Query, Security
from typing import Any, Dict, Optional
from uuid import UUID
from pydantic import BaseModel

from auth import get_current_user, require_roles
from users import UserManager, ADMIN_ROLES

router = APIRouter(
    prefix="/users",
    tags=["Users"]
)

manager = UserManager()

class AddressUpdate(BaseModel):
    """Model for a postal address."""
    street: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None

class UserUpdate(BaseModel):
    """Model for profile updates."""
    name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[AddressUpdate] = None
    phone: Optional[str] = None
    role: Optional[str] = None

@router.get("")
async def list_users(
    role: Optional[str] = Query(None),
    limit: int = Query(50),
    offset: int = Query(0),
    user: Dict[str, Any] = Security(require_roles(*ADMIN_ROLES))
):
    """List users, optionally by role."""
    return await manager.list_users(role=role, limit=limit, offset=offset)

@router.get("/{user_id}")
async def get_user(user_id: UUID, user: Dict[str, Any] = Security(get_current_user)):
    """Get a user's profile."""
    return await manager.get_user(user_id)

@router.put("/{user_id}")
async def update_user(
    user_id: UUID,
    update: UserUpdate,
    user: Dict[str, Any] = Security(get_current_user)
):
    """Update a profile. Users edit themselves; administrators edit anyone."""
    return await manager.update_user(user_id, update.model_dump(exclude_unset=True), user)

@router.delete("/{user_id}")
async def delete_user(
    user_id: UUID,
    user: Dict[str, Any] = Security(require_roles(*ADMIN_ROLES))
):
    """Delete a user."""
    await manager.delete_user(user_id)
    return {"message": "User deleted successfully"}

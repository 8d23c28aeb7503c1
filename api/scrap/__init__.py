"""Scrap inventory endpoints."""

from fastapi import APIRouter, Query, Security, status
from typing import Any, Dict, List, Optional
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel

from auth import require_roles
from scrap_items import ScrapItemManager

router = APIRouter(
    prefix="/scrap",
    tags=["Scrap Items"]
)

manager = ScrapItemManager()

# Roles allowed to record and edit inventory
INVENTORY_ROLES = ('auction_manager', 'system_admin', 'super_user')

class CategoryDetails(BaseModel):
    """Model for category details."""
    sub_category: Optional[str] = None
    classification: Optional[str] = None

class Category(BaseModel):
    """Model for a scrap category."""
    type: str
    details: Optional[CategoryDetails] = None

class StatusDetails(BaseModel):
    """Model for status details."""
    reason: Optional[str] = None

class Status(BaseModel):
    """Model for a scrap status."""
    type: str
    details: Optional[StatusDetails] = None

class LocationDetails(BaseModel):
    """Model for location details."""
    address: Optional[str] = None
    warehouse_section: Optional[str] = None

class Location(BaseModel):
    """Model for where a scrap item is kept."""
    type: str
    details: Optional[LocationDetails] = None

class CreateScrapItemRequest(BaseModel):
    """Request model for recording a scrap item."""
    description: str
    weight: Decimal
    category: Category
    location: Location
    received_by: UUID
    status: Optional[Status] = None
    sorted_by: Optional[UUID] = None
    images: Optional[List[str]] = None

class UpdateScrapItemRequest(BaseModel):
    """Request model for updating a scrap item."""
    description: Optional[str] = None
    weight: Optional[Decimal] = None
    category: Optional[Category] = None
    status: Optional[Status] = None
    location: Optional[Location] = None
    images: Optional[List[str]] = None
    sorted_by: Optional[UUID] = None

class StatusUpdateRequest(BaseModel):
    """Request model for a status change."""
    reason: Optional[str] = None

""" Public Endpoints - No Authentication Required """
@router.get("")
async def search_scrap_items(
    status: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    location: Optional[str] = Query(None),
    q: Optional[str] = Query(None),
    sort: str = Query('created_at'),
    order: str = Query('desc'),
    page: int = Query(1),
    limit: int = Query(10)
):
    """Search, filter, sort and paginate the inventory."""
    return await manager.search_scrap_items(
        status=status,
        category=category,
        location=location,
        search_term=q,
        sort_field=sort,
        order=order,
        page=page,
        limit=limit
    )

@router.get("/status/{status_type}")
async def get_by_status(status_type: str, page: int = Query(1), limit: int = Query(10)):
    """List scrap items with a status."""
    return await manager.search_scrap_items(status=status_type, page=page, limit=limit)

@router.get("/category/{category_type}")
async def get_by_category(category_type: str, page: int = Query(1), limit: int = Query(10)):
    """List scrap items in a category."""
    return await manager.search_scrap_items(category=category_type, page=page, limit=limit)

@router.get("/location/{location_type}")
async def get_by_location(location_type: str, page: int = Query(1), limit: int = Query(10)):
    """List scrap items at a kind of location."""
    return await manager.search_scrap_items(location=location_type, page=page, limit=limit)

""" Protected Endpoints - Inventory Roles Required """
@router.get("/count/status")
async def count_by_status(user: Dict[str, Any] = Security(require_roles(*INVENTORY_ROLES))):
    """Count scrap items per status."""
    return await manager.count_by_status()

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_scrap_item(
    request: CreateScrapItemRequest,
    user: Dict[str, Any] = Security(require_roles(*INVENTORY_ROLES))
):
    """Record a scrap item."""
    data = request.model_dump()
    return await manager.create_scrap_item(
        description=data['description'],
        weight=data['weight'],
        category=data['category'],
        location=data['location'],
        received_by=data['received_by'],
        status=data['status'],
        sorted_by=data['sorted_by'],
        images=data['images']
    )

@router.patch("/status/{item_id}/{status_type}")
async def update_status(
    item_id: UUID,
    status_type: str,
    request: Optional[StatusUpdateRequest] = None,
    user: Dict[str, Any] = Security(require_roles(*INVENTORY_ROLES))
):
    """Move a scrap item to a new status."""
    reason = request.reason if request else None
    return await manager.update_status(item_id, status_type, reason)

@router.get("/{item_id}")
async def get_scrap_item(item_id: UUID):
    """Get a scrap item."""
    return await manager.get_scrap_item(item_id)

@router.put("/{item_id}")
async def update_scrap_item(
    item_id: UUID,
    request: UpdateScrapItemRequest,
    user: Dict[str, Any] = Security(require_roles(*INVENTORY_ROLES))
):
    """Update a scrap item."""
    return await manager.update_scrap_item(item_id, request.model_dump(exclude_unset=True))

@router.delete("/{item_id}")
async def delete_scrap_item(
    item_id: UUID,
    user: Dict[str, Any] = Security(require_roles('system_admin', 'super_user'))
):
    """Delete a scrap item."""
    await manager.delete_scrap_item(item_id)
    return {"message": "Scrap item deleted successfully"}

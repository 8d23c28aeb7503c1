"""Auction endpoints.

Responses use the envelope {"success": true, "data": ...}, with "count"
added for lists.
"""

from fastapi import APIRouter, Query, Security, status
from typing import Any, Dict, List, Optional
from decimal import Decimal
from uuid import UUID
from datetime import datetime
from pydantic import BaseModel

from auth import require_roles
from auctions import AuctionManager

router = APIRouter(
    prefix="/auction",
    tags=["Auctions"]
)

manager = AuctionManager()

# Roles allowed to run auctions
AUCTION_ROLES = ('auction_manager', 'super_user')

class CreateAuctionRequest(BaseModel):
    """Request model for creating an auction."""
    title: str
    description: str
    scrap_item: UUID
    start_date: datetime
    end_date: datetime
    reserve_price: Decimal = Decimal('0')

class UpdateAuctionRequest(BaseModel):
    """Request model for updating an auction."""
    title: Optional[str] = None
    description: Optional[str] = None
    scrap_item: Optional[UUID] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    reserve_price: Optional[Decimal] = None
    status: Optional[str] = None

def envelope(data: Any) -> Dict[str, Any]:
    return {"success": True, "data": data}

def list_envelope(data: List[Any]) -> Dict[str, Any]:
    return {"success": True, "count": len(data), "data": data}

""" Public Endpoints - No Authentication Required """
@router.get("/filter")
async def filter_auctions(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    status: Optional[str] = Query(None)
):
    """Filter auctions by schedule and status."""
    return list_envelope(await manager.filter_auctions(start_date, end_date, status))

@router.get("/active")
async def get_active_auctions():
    """Open auctions whose bidding window contains now."""
    return list_envelope(await manager.get_active_auctions())

@router.get("/with-bids")
async def get_auctions_with_bids():
    """Every auction with its bids and maximum bid."""
    return list_envelope(await manager.get_auctions_with_bids())

@router.get("/stats")
async def get_auction_stats():
    """Totals across all auctions and bids."""
    return envelope(await manager.get_auction_stats())

@router.get("/{auction_id}/details")
async def get_auction_details(auction_id: UUID):
    """An auction together with its bids."""
    auction = await manager.get_auction_with_bids(auction_id)
    bids = auction.pop('bids')
    return envelope({"auction": auction, "bids": bids})

""" Protected Endpoints - Auction Roles Required """
@router.post("", status_code=status.HTTP_201_CREATED)
async def create_auction(
    request: CreateAuctionRequest,
    user: Dict[str, Any] = Security(require_roles(*AUCTION_ROLES))
):
    """Create an auction for a scrap item."""
    auction = await manager.create_auction(
        title=request.title,
        description=request.description,
        scrap_item_id=request.scrap_item,
        start_date=request.start_date,
        end_date=request.end_date,
        reserve_price=request.reserve_price
    )
    return envelope(auction)

@router.get("/users/{user_id}/bids")
async def get_user_bids(
    user_id: UUID,
    user: Dict[str, Any] = Security(require_roles(*AUCTION_ROLES))
):
    """Bids placed by a user."""
    return list_envelope(await manager.get_user_bids(user_id))

@router.patch("/end/{auction_id}")
async def end_auction(
    auction_id: UUID,
    user: Dict[str, Any] = Security(require_roles(*AUCTION_ROLES))
):
    """Close an auction now and record its winner."""
    return envelope(await manager.end_auction(auction_id))

@router.put("/{auction_id}")
async def update_auction(
    auction_id: UUID,
    request: UpdateAuctionRequest,
    user: Dict[str, Any] = Security(require_roles(*AUCTION_ROLES))
):
    """Update an auction."""
    updates = request.model_dump(exclude_unset=True)
    return envelope(await manager.update_auction(auction_id, updates))

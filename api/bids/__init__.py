"""Bidding endpoints."""

from fastapi import APIRouter, Security, status
from typing import Any, Dict
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel

from auth import get_current_user, require_roles
from bids import BidManager

router = APIRouter(
    prefix="/bids",
    tags=["Bids"]
)

manager = BidManager()

class CreateBidRequest(BaseModel):
    """Request model for placing a bid."""
    auction_id: UUID
    amount: Decimal

class UpdateBidRequest(BaseModel):
    """Request model for changing a bid amount."""
    amount: Decimal

@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_bid(
    request: CreateBidRequest,
    user: Dict[str, Any] = Security(require_roles('buyer'))
):
    """Place a bid on an open auction."""
    return await manager.create_bid(request.auction_id, request.amount, user['user_id'])

@router.get("/auction/{auction_id}")
async def get_bids_by_auction(
    auction_id: UUID,
    user: Dict[str, Any] = Security(get_current_user)
):
    """All bids on an auction."""
    return await manager.get_bids_by_auction(auction_id)

@router.get("/{bid_id}")
async def get_bid(bid_id: UUID, user: Dict[str, Any] = Security(get_current_user)):
    """Get a bid."""
    return await manager.get_bid(bid_id)

@router.put("/update/{bid_id}")
async def update_bid(
    bid_id: UUID,
    request: UpdateBidRequest,
    user: Dict[str, Any] = Security(require_roles('buyer'))
):
    """Change the amount of one of the caller's bids."""
    return await manager.update_bid(bid_id, request.amount, user)

@router.delete("/delete/{bid_id}")
async def delete_bid(
    bid_id: UUID,
    user: Dict[str, Any] = Security(require_roles('buyer', 'system_admin'))
):
    """Withdraw a bid."""
    return await manager.delete_bid(bid_id, user)

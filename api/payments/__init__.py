"""Payment ledger endpoints."""

from fastapi import APIRouter, Query, Security, status
from typing import Any, Dict, Optional
from decimal import Decimal
from uuid import UUID
from datetime import datetime
from pydantic import BaseModel

from auth import require_roles
from ledger import PaymentManager
from users import ADMIN_ROLES

router = APIRouter(
    prefix="/payments",
    tags=["Payments"]
)

manager = PaymentManager()

class CreatePaymentRequest(BaseModel):
    """Request model for recording a payment."""
    payment_id: str
    amount: Decimal
    method: str
    user: UUID
    status: str = 'pending'
    date: Optional[datetime] = None

class UpdatePaymentRequest(BaseModel):
    """Request model for updating a payment."""
    amount: Optional[Decimal] = None
    date: Optional[datetime] = None
    method: Optional[str] = None
    status: Optional[str] = None

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_payment(
    request: CreatePaymentRequest,
    user: Dict[str, Any] = Security(require_roles(*ADMIN_ROLES))
):
    """Record a payment."""
    return await manager.create_payment(
        payment_id=request.payment_id,
        amount=request.amount,
        method=request.method,
        user_id=request.user,
        status=request.status,
        date=request.date
    )

@router.get("")
async def list_payments(
    user_id: Optional[UUID] = Query(None),
    user: Dict[str, Any] = Security(require_roles(*ADMIN_ROLES))
):
    """List payments."""
    return await manager.list_payments(user_id)

@router.get("/{payment_id}")
async def get_payment(
    payment_id: UUID,
    user: Dict[str, Any] = Security(require_roles(*ADMIN_ROLES))
):
    """Get a payment with its transactions."""
    return await manager.get_payment(payment_id)

@router.put("/{payment_id}")
async def update_payment(
    payment_id: UUID,
    request: UpdatePaymentRequest,
    user: Dict[str, Any] = Security(require_roles(*ADMIN_ROLES))
):
    """Update a payment."""
    return await manager.update_payment(payment_id, request.model_dump(exclude_unset=True))

@router.delete("/{payment_id}")
async def delete_payment(
    payment_id: UUID,
    user: Dict[str, Any] = Security(require_roles(*ADMIN_ROLES))
):
    """Delete a payment with no transactions."""
    await manager.delete_payment(payment_id)
    return {"message": "Payment deleted successfully"}

"""Transaction ledger endpoints."""

from fastapi import APIRouter, Query, Security, status
from typing import Any, Dict, Optional
from decimal import Decimal
from uuid import UUID
from datetime import datetime
from pydantic import BaseModel

from auth import require_roles
from ledger import TransactionManager
from users import ADMIN_ROLES

router = APIRouter(
    prefix="/transactions",
    tags=["Transactions"]
)

manager = TransactionManager()

class CreateTransactionRequest(BaseModel):
    """Request model for recording a transaction."""
    transaction_id: str
    amount: Decimal
    payment_method: str
    payment: UUID
    user: Optional[UUID] = None
    status: str = 'pending'
    date: Optional[datetime] = None
    description: Optional[str] = None

class UpdateTransactionRequest(BaseModel):
    """Request model for updating a transaction."""
    amount: Optional[Decimal] = None
    date: Optional[datetime] = None
    payment_method: Optional[str] = None
    status: Optional[str] = None
    description: Optional[str] = None

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_transaction(
    request: CreateTransactionRequest,
    user: Dict[str, Any] = Security(require_roles(*ADMIN_ROLES))
):
    """Record a transaction against a payment."""
    return await manager.create_transaction(
        transaction_id=request.transaction_id,
        amount=request.amount,
        payment_method=request.payment_method,
        payment=request.payment,
        user_id=request.user,
        status=request.status,
        date=request.date,
        description=request.description
    )

@router.get("")
async def list_transactions(
    payment: Optional[UUID] = Query(None),
    status: Optional[str] = Query(None),
    user: Dict[str, Any] = Security(require_roles(*ADMIN_ROLES))
):
    """List transactions."""
    return await manager.list_transactions(payment=payment, status=status)

@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: UUID,
    user: Dict[str, Any] = Security(require_roles(*ADMIN_ROLES))
):
    """Get a transaction with its payment summary."""
    return await manager.get_transaction(transaction_id)

@router.put("/{transaction_id}")
async def update_transaction(
    transaction_id: UUID,
    request: UpdateTransactionRequest,
    user: Dict[str, Any] = Security(require_roles(*ADMIN_ROLES))
):
    """Update a transaction."""
    return await manager.update_transaction(
        transaction_id,
        request.model_dump(exclude_unset=True)
    )

@router.delete("/{transaction_id}")
async def delete_transaction(
    transaction_id: UUID,
    user: Dict[str, Any] = Security(require_roles(*ADMIN_ROLES))
):
    """Delete a transaction."""
    await manager.delete_transaction(transaction_id)
    return {"message": "Transaction deleted successfully"}

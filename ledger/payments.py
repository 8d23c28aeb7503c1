"""Payment records."""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from asyncpg import PostgresError
from asyncpg.exceptions import UniqueViolationError

from database import get_pool
from database.exceptions import DatabaseError
from database.lib.records import serialize_value, affected_rows
from errors import MarketplaceError, ValidationError, NotFoundError, ConflictError
from errors.validation import require_text, require_choice, require_amount, parse_datetime
from users import user_exists

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ('credit_card', 'bank_transfer', 'paypal', 'other')
PAYMENT_STATUSES = ('completed', 'pending', 'failed')

MUTABLE_FIELDS = {'amount', 'date', 'method', 'status'}

class PaymentNotFoundError(NotFoundError):
    """Raised when a payment is not found."""
    pass

class DuplicatePaymentError(ConflictError):
    """Raised when a payment_id is already recorded."""
    pass

def payment_to_dict(row, transactions: Optional[List[Dict[str, Any]]] = None) -> Optional[Dict[str, Any]]:
    """Convert a payments row to a dict, optionally with its transactions."""
    if row is None:
        return None
    payment = {
        'id': serialize_value(row['id']),
        'payment_id': row['payment_id'],
        'amount': serialize_value(row['amount']),
        'date': serialize_value(row['date']),
        'method': row['method'],
        'status': row['status'],
        'user': serialize_value(row['user_id']),
        'created_at': serialize_value(row['created_at']),
        'updated_at': serialize_value(row['updated_at'])
    }
    if transactions is not None:
        payment['transactions'] = transactions
    return payment

class PaymentManager:
    """Manager class for handling payment records."""

    def __init__(self, pool=None):
        """Initialize the payment manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def create_payment(
        self,
        payment_id: str,
        amount: Any,
        method: str,
        user_id: Union[str, uuid.UUID],
        status: str = 'pending',
        date: Optional[Union[str, datetime]] = None
    ) -> Dict[str, Any]:
        """Record a payment.

        Raises:
            ValidationError: If a field is invalid
            NotFoundError: If the user doesn't exist
            DuplicatePaymentError: If payment_id is already recorded
        """
        payment_id = require_text(payment_id, 'payment_id')
        amount = require_amount(amount)
        method = require_choice(method, PAYMENT_METHODS, 'payment method')
        status = require_choice(status or 'pending', PAYMENT_STATUSES, 'payment status')
        date = parse_datetime(date, 'date')

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                if not await user_exists(conn, user_id):
                    raise NotFoundError("User not found")

                row = await conn.fetchrow(
                    '''
                    INSERT INTO payments (payment_id, amount, date, method, status, user_id)
                    VALUES ($1, $2, COALESCE($3, now()), $4, $5, $6)
                    RETURNING *
                    ''',
                    payment_id, amount, date, method, status, user_id
                )

            logger.info(f"Recorded payment {payment_id} of {amount} via {method}")
            return payment_to_dict(row, [])

        except MarketplaceError:
            raise
        except UniqueViolationError:
            raise DuplicatePaymentError(f"Payment {payment_id} already exists")
        except PostgresError as e:
            logger.error(f"Database error creating payment: {e}")
            raise DatabaseError(f"Failed to create payment: {e}")

    async def list_payments(self, user_id: Optional[Union[str, uuid.UUID]] = None) -> List[Dict[str, Any]]:
        """List payments, newest first, optionally for one user."""
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                if user_id:
                    rows = await conn.fetch(
                        'SELECT * FROM payments WHERE user_id = $1 ORDER BY date DESC',
                        user_id
                    )
                else:
                    rows = await conn.fetch('SELECT * FROM payments ORDER BY date DESC')
            return [payment_to_dict(row) for row in rows]

        except PostgresError as e:
            logger.error(f"Database error listing payments: {e}")
            raise DatabaseError(f"Failed to list payments: {e}")

    async def get_payment(self, payment_uuid: Union[str, uuid.UUID]) -> Dict[str, Any]:
        """Get a payment with its transactions.

        Raises:
            PaymentNotFoundError: If the payment doesn't exist
        """
        # Imported here to avoid a circular import with ledger.transactions
        from .transactions import transaction_to_dict

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow('SELECT * FROM payments WHERE id = $1', payment_uuid)
                if not row:
                    raise PaymentNotFoundError("Payment not found")
                transactions = await conn.fetch(
                    'SELECT * FROM transactions WHERE payment_ref = $1 ORDER BY date',
                    payment_uuid
                )
            return payment_to_dict(row, [transaction_to_dict(t) for t in transactions])

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error getting payment {payment_uuid}: {e}")
            raise DatabaseError(f"Failed to get payment: {e}")

    async def update_payment(
        self,
        payment_uuid: Union[str, uuid.UUID],
        updates: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Update a payment's amount, date, method or status.

        Raises:
            PaymentNotFoundError: If the payment doesn't exist
            ValidationError: If update contains invalid fields
        """
        invalid_fields = set(updates) - MUTABLE_FIELDS
        if invalid_fields:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(invalid_fields))}")
        if not updates:
            raise ValidationError("No fields to update")

        columns = {}
        if 'amount' in updates:
            columns['amount'] = require_amount(updates['amount'])
        if 'date' in updates:
            columns['date'] = parse_datetime(updates['date'], 'date')
            if columns['date'] is None:
                raise ValidationError("date is required")
        if 'method' in updates:
            columns['method'] = require_choice(updates['method'], PAYMENT_METHODS, 'payment method')
        if 'status' in updates:
            columns['status'] = require_choice(updates['status'], PAYMENT_STATUSES, 'payment status')

        fields = []
        values = []
        for i, (field, value) in enumerate(columns.items(), start=1):
            fields.append(f"{field} = ${i}")
            values.append(value)
        values.append(payment_uuid)

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f'''
                    UPDATE payments
                    SET {', '.join(fields)}
                    WHERE id = ${len(values)}
                    RETURNING *
                    ''',
                    *values
                )
            if not row:
                raise PaymentNotFoundError("Payment not found")
            logger.info(f"Updated payment {payment_uuid}: {', '.join(sorted(columns))}")
            return payment_to_dict(row)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error updating payment {payment_uuid}: {e}")
            raise DatabaseError(f"Failed to update payment: {e}")

    async def delete_payment(self, payment_uuid: Union[str, uuid.UUID]) -> None:
        """Delete a payment that has no transactions.

        Raises:
            PaymentNotFoundError: If the payment doesn't exist
            ConflictError: If transactions still reference the payment
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    linked = await conn.fetchval(
                        'SELECT COUNT(*) FROM transactions WHERE payment_ref = $1',
                        payment_uuid
                    )
                    if linked:
                        raise ConflictError(
                            f"Payment has {linked} transaction(s) and cannot be deleted"
                        )
                    result = await conn.execute('DELETE FROM payments WHERE id = $1', payment_uuid)
            if affected_rows(result) == 0:
                raise PaymentNotFoundError("Payment not found")
            logger.info(f"Deleted payment {payment_uuid}")

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error deleting payment {payment_uuid}: {e}")
            raise DatabaseError(f"Failed to delete payment: {e}")

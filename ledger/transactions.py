"""Transaction records linked to payments."""

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
from .payments import PAYMENT_METHODS, PaymentNotFoundError

logger = logging.getLogger(__name__)

TRANSACTION_STATUSES = ('completed', 'pending', 'failed', 'refunded')

MUTABLE_FIELDS = {'amount', 'date', 'payment_method', 'status', 'description'}

class TransactionNotFoundError(NotFoundError):
    """Raised when a transaction is not found."""
    pass

class DuplicateTransactionError(ConflictError):
    """Raised when a transaction_id is already recorded."""
    pass

def transaction_to_dict(row) -> Optional[Dict[str, Any]]:
    """Convert a transactions row to a dict."""
    if row is None:
        return None
    transaction = {
        'id': serialize_value(row['id']),
        'transaction_id': row['transaction_id'],
        'amount': serialize_value(row['amount']),
        'date': serialize_value(row['date']),
        'payment_method': row['payment_method'],
        'status': row['status'],
        'payment': serialize_value(row['payment_ref']),
        'user': serialize_value(row['user_id']),
        'description': row['description'],
        'created_at': serialize_value(row['created_at']),
        'updated_at': serialize_value(row['updated_at'])
    }
    if row.get('payment_external_id') is not None:
        transaction['payment'] = {
            'id': serialize_value(row['payment_ref']),
            'payment_id': row['payment_external_id'],
            'status': row['payment_status']
        }
    return transaction

class TransactionManager:
    """Manager class for handling transaction records."""

    def __init__(self, pool=None):
        """Initialize the transaction manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def create_transaction(
        self,
        transaction_id: str,
        amount: Any,
        payment_method: str,
        payment: Union[str, uuid.UUID],
        user_id: Optional[Union[str, uuid.UUID]] = None,
        status: str = 'pending',
        date: Optional[Union[str, datetime]] = None,
        description: Optional[str] = None
    ) -> Dict[str, Any]:
        """Record a transaction against a payment.

        The transaction's user defaults to the payment's user.

        Raises:
            ValidationError: If a field is invalid
            PaymentNotFoundError: If the payment doesn't exist
            NotFoundError: If the given user doesn't exist
            DuplicateTransactionError: If transaction_id is already recorded
        """
        transaction_id = require_text(transaction_id, 'transaction_id')
        amount = require_amount(amount)
        payment_method = require_choice(payment_method, PAYMENT_METHODS, 'payment method')
        status = require_choice(status or 'pending', TRANSACTION_STATUSES, 'transaction status')
        date = parse_datetime(date, 'date')
        if not payment:
            raise ValidationError("payment is required")

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                payment_user = await conn.fetchval(
                    'SELECT user_id FROM payments WHERE id = $1',
                    payment
                )
                if payment_user is None:
                    raise PaymentNotFoundError("Payment not found")

                if user_id and not await user_exists(conn, user_id):
                    raise NotFoundError("User not found")

                row = await conn.fetchrow(
                    '''
                    INSERT INTO transactions (
                        transaction_id, amount, date, payment_method,
                        status, payment_ref, user_id, description
                    ) VALUES ($1, $2, COALESCE($3, now()), $4, $5, $6, $7, $8)
                    RETURNING *
                    ''',
                    transaction_id, amount, date, payment_method,
                    status, payment, user_id or payment_user, description
                )

            logger.info(f"Recorded transaction {transaction_id} for payment {payment}")
            return transaction_to_dict(row)

        except MarketplaceError:
            raise
        except UniqueViolationError:
            raise DuplicateTransactionError(f"Transaction {transaction_id} already exists")
        except PostgresError as e:
            logger.error(f"Database error creating transaction: {e}")
            raise DatabaseError(f"Failed to create transaction: {e}")

    async def list_transactions(
        self,
        payment: Optional[Union[str, uuid.UUID]] = None,
        status: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """List transactions, newest first, optionally filtered."""
        query = 'SELECT * FROM transactions WHERE 1=1'
        params = []
        param_idx = 1

        if payment:
            query += f" AND payment_ref = ${param_idx}"
            params.append(payment)
            param_idx += 1

        if status:
            require_choice(status, TRANSACTION_STATUSES, 'transaction status')
            query += f" AND status = ${param_idx}"
            params.append(status)
            param_idx += 1

        query += " ORDER BY date DESC"

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, *params)
            return [transaction_to_dict(row) for row in rows]

        except PostgresError as e:
            logger.error(f"Database error listing transactions: {e}")
            raise DatabaseError(f"Failed to list transactions: {e}")

    async def get_transaction(self, transaction_uuid: Union[str, uuid.UUID]) -> Dict[str, Any]:
        """Get a transaction with a summary of its payment.

        Raises:
            TransactionNotFoundError: If the transaction doesn't exist
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    '''
                    SELECT
                        t.*,
                        p.payment_id AS payment_external_id,
                        p.status AS payment_status
                    FROM transactions t
                    JOIN payments p ON p.id = t.payment_ref
                    WHERE t.id = $1
                    ''',
                    transaction_uuid
                )
            if not row:
                raise TransactionNotFoundError("Transaction not found")
            return transaction_to_dict(row)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error getting transaction {transaction_uuid}: {e}")
            raise DatabaseError(f"Failed to get transaction: {e}")

    async def update_transaction(
        self,
        transaction_uuid: Union[str, uuid.UUID],
        updates: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Update a transaction.

        Raises:
            TransactionNotFoundError: If the transaction doesn't exist
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
        if 'payment_method' in updates:
            columns['payment_method'] = require_choice(
                updates['payment_method'], PAYMENT_METHODS, 'payment method'
            )
        if 'status' in updates:
            columns['status'] = require_choice(
                updates['status'], TRANSACTION_STATUSES, 'transaction status'
            )
        if 'description' in updates:
            columns['description'] = updates['description']

        fields = []
        values = []
        for i, (field, value) in enumerate(columns.items(), start=1):
            fields.append(f"{field} = ${i}")
            values.append(value)
        values.append(transaction_uuid)

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f'''
                    UPDATE transactions
                    SET {', '.join(fields)}
                    WHERE id = ${len(values)}
                    RETURNING *
                    ''',
                    *values
                )
            if not row:
                raise TransactionNotFoundError("Transaction not found")
            logger.info(f"Updated transaction {transaction_uuid}: {', '.join(sorted(columns))}")
            return transaction_to_dict(row)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error updating transaction {transaction_uuid}: {e}")
            raise DatabaseError(f"Failed to update transaction: {e}")

    async def delete_transaction(self, transaction_uuid: Union[str, uuid.UUID]) -> None:
        """Delete a transaction.

        Raises:
            TransactionNotFoundError: If the transaction doesn't exist
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute('DELETE FROM transactions WHERE id = $1', transaction_uuid)
            if affected_rows(result) == 0:
                raise TransactionNotFoundError("Transaction not found")
            logger.info(f"Deleted transaction {transaction_uuid}")

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error deleting transaction {transaction_uuid}: {e}")
            raise DatabaseError(f"Failed to delete transaction: {e}")

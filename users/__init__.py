"""Users module for managing marketplace accounts.

This module provides:
- The canonical role enumeration
- Profile lookups and updates
- Administrative listing and removal of users
"""

import logging
import re
from typing import Any, Dict, Optional, Union
import uuid

from asyncpg import PostgresError
from asyncpg.exceptions import UniqueViolationError, ForeignKeyViolationError

from auctions.lifecycle import lock_auction, repoint_highest_bid, settle
from database import get_pool
from database.exceptions import DatabaseError
from database.lib.records import serialize_value, affected_rows
from errors import (
    MarketplaceError, ValidationError, ForbiddenError, NotFoundError, ConflictError
)
from errors.validation import require_text, require_choice

logger = logging.getLogger(__name__)

ROLES = ('buyer', 'seller', 'auction_manager', 'system_admin', 'super_user')
ADMIN_ROLES = ('system_admin', 'super_user')
PRIVILEGED_ROLES = ('auction_manager', 'system_admin', 'super_user')
DEFAULT_ROLE = 'buyer'

# Fields a user may change on their own profile
MUTABLE_FIELDS = {'name', 'email', 'address', 'phone'}

# Fields only administrators may change
ADMIN_FIELDS = {'role'}

ADDRESS_FIELDS = ('street', 'city', 'country')

USER_COLUMNS = '''
    id, name, email, role, address_street, address_city,
    address_country, phone, created_at, updated_at
'''

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

class UserNotFoundError(NotFoundError):
    """Raised when a user is not found."""
    pass

class DuplicateEmailError(ConflictError):
    """Raised when an email address is already registered."""
    pass

def normalize_email(email: Any) -> str:
    """Lower-case and trim an email address, validating its shape."""
    value = require_text(email, 'email').lower()
    if not EMAIL_PATTERN.match(value):
        raise ValidationError("Please use a valid email address")
    return value

def normalize_address(address: Optional[Dict[str, Any]]) -> Dict[str, Optional[str]]:
    """Return an address dict limited to street, city and country."""
    address = address or {}
    if not isinstance(address, dict):
        raise ValidationError("address must be an object")
    unknown = set(address) - set(ADDRESS_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown address fields: {', '.join(sorted(unknown))}")
    return {field: address.get(field) for field in ADDRESS_FIELDS}

def user_to_dict(row) -> Optional[Dict[str, Any]]:
    """Convert a users row into its public representation (no password hash)."""
    if row is None:
        return None
    return {
        'id': serialize_value(row['id']),
        'name': row['name'],
        'email': row['email'],
        'role': row['role'],
        'address': {
            'street': row['address_street'],
            'city': row['address_city'],
            'country': row['address_country']
        },
        'phone': row['phone'],
        'created_at': serialize_value(row['created_at']),
        'updated_at': serialize_value(row['updated_at'])
    }

def check_self_or_admin(actor: Dict[str, Any], user_id: Union[str, uuid.UUID], message: str) -> None:
    """Raise ForbiddenError unless actor is user_id or an administrator."""
    if str(user_id) != str(actor['user_id']) and actor['role'] not in ADMIN_ROLES:
        raise ForbiddenError(message)

async def user_exists(conn, user_id: Union[str, uuid.UUID]) -> bool:
    """Check whether a user row exists using an open connection."""
    return bool(await conn.fetchval(
        'SELECT EXISTS(SELECT 1 FROM users WHERE id = $1)',
        user_id
    ))

class UserManager:
    """Manager class for handling user profile operations."""

    def __init__(self, pool=None):
        """Initialize the user manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def get_user(self, user_id: Union[str, uuid.UUID]) -> Dict[str, Any]:
        """Get a user by ID.

        Raises:
            UserNotFoundError: If the user doesn't exist
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f'SELECT {USER_COLUMNS} FROM users WHERE id = $1',
                    user_id
                )
            if not row:
                raise UserNotFoundError("User not found")
            return user_to_dict(row)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error getting user {user_id}: {e}")
            raise DatabaseError(f"Failed to get user: {e}")

    async def list_users(
        self,
        role: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Dict[str, Any]:
        """List users, optionally filtered by role.

        Returns:
            Dict containing users and total_count
        """
        await self.ensure_pool()

        if role is not None:
            require_choice(role, ROLES, 'role')
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")

        where = ' WHERE role = $1' if role else ''
        params = [role] if role else []
        idx = len(params) + 1

        try:
            async with self.pool.acquire() as conn:
                total_count = await conn.fetchval(
                    f'SELECT COUNT(*) FROM users{where}',
                    *params
                )
                rows = await conn.fetch(
                    f'''
                    SELECT {USER_COLUMNS} FROM users{where}
                    ORDER BY created_at DESC
                    LIMIT ${idx} OFFSET ${idx + 1}
                    ''',
                    *params, limit, offset
                )
            return {
                'users': [user_to_dict(row) for row in rows],
                'total_count': total_count
            }

        except PostgresError as e:
            logger.error(f"Database error listing users: {e}")
            raise DatabaseError(f"Failed to list users: {e}")

    async def update_user(
        self,
        user_id: Union[str, uuid.UUID],
        updates: Dict[str, Any],
        actor: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Update a user's profile.

        Args:
            user_id: The user to update
            updates: Fields to change (name, email, address, phone; role for admins)
            actor: The authenticated caller ({'user_id', 'role'})

        Returns:
            The updated user

        Raises:
            ForbiddenError: If the caller may not edit this user or these fields
            ValidationError: If an update is invalid
            DuplicateEmailError: If the new email is taken
            UserNotFoundError: If the user doesn't exist
        """
        await self.ensure_pool()

        check_self_or_admin(actor, user_id, "You can only update your own profile")
        is_admin = actor['role'] in ADMIN_ROLES

        allowed = MUTABLE_FIELDS | ADMIN_FIELDS if is_admin else MUTABLE_FIELDS
        invalid_fields = set(updates) - allowed
        if invalid_fields:
            if invalid_fields & ADMIN_FIELDS:
                raise ForbiddenError("Only administrators can change roles")
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(invalid_fields))}")
        if not updates:
            raise ValidationError("No fields to update")

        columns = {}
        if 'name' in updates:
            columns['name'] = require_text(updates['name'], 'name')
        if 'email' in updates:
            columns['email'] = normalize_email(updates['email'])
        if 'phone' in updates:
            columns['phone'] = updates['phone']
        if 'role' in updates:
            columns['role'] = require_choice(updates['role'], ROLES, 'role')
        if 'address' in updates:
            # Only the address parts given change; None clears the whole address
            address = updates['address']
            for field, value in normalize_address(address).items():
                if address is None or field in address:
                    columns[f'address_{field}'] = value

        fields = []
        values = []
        for i, (field, value) in enumerate(columns.items(), start=1):
            fields.append(f"{field} = ${i}")
            values.append(value)
        values.append(user_id)

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f'''
                    UPDATE users
                    SET {', '.join(fields)}
                    WHERE id = ${len(values)}
                    RETURNING {USER_COLUMNS}
                    ''',
                    *values
                )
            if not row:
                raise UserNotFoundError("User not found")
            logger.info(f"Updated user {user_id}: {', '.join(sorted(columns))}")
            return user_to_dict(row)

        except MarketplaceError:
            raise
        except UniqueViolationError:
            raise DuplicateEmailError("Email is already registered")
        except PostgresError as e:
            logger.error(f"Database error updating user {user_id}: {e}")
            raise DatabaseError(f"Failed to update user: {e}")

    async def delete_user(self, user_id: Union[str, uuid.UUID]) -> None:
        """Delete a user.

        The user's bids go with them, so every auction they bid on is locked
        and pointed at its highest remaining bid in the same transaction.

        Raises:
            UserNotFoundError: If the user doesn't exist
            ConflictError: If payments or scrap items still reference the user
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    # Blocks new bids by this user until the delete commits
                    locked = await conn.fetchrow(
                        'SELECT id FROM users WHERE id = $1 FOR UPDATE',
                        user_id
                    )
                    if not locked:
                        raise UserNotFoundError("User not found")

                    rows = await conn.fetch(
                        '''
                        SELECT DISTINCT auction_id FROM bids
                        WHERE bidder_id = $1
                        ORDER BY auction_id
                        ''',
                        user_id
                    )
                    auction_ids = [row['auction_id'] for row in rows]
                    for auction_id in auction_ids:
                        await lock_auction(conn, auction_id)

                    result = await conn.execute('DELETE FROM users WHERE id = $1', user_id)
                    if affected_rows(result) == 0:
                        raise UserNotFoundError("User not found")

                    for auction_id in auction_ids:
                        await repoint_highest_bid(conn, auction_id)
                        await settle(conn, auction_id)

            logger.info(f"Deleted user {user_id}, updated {len(auction_ids)} auctions")

        except MarketplaceError:
            raise
        except ForeignKeyViolationError:
            raise ConflictError("User is still referenced by payments, transactions or scrap items")
        except PostgresError as e:
            logger.error(f"Database error deleting user {user_id}: {e}")
            raise DatabaseError(f"Failed to delete user: {e}")

__all__ = [
    'UserManager',
    'UserNotFoundError',
    'DuplicateEmailError',
    'ROLES',
    'ADMIN_ROLES',
    'PRIVILEGED_ROLES',
    'DEFAULT_ROLE',
    'user_to_dict',
    'user_exists',
    'check_self_or_admin',
    'normalize_email',
    'normalize_address'
]

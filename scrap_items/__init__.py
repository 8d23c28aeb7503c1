"""Scrap inventory module for managing recyclable items.

This module provides functionality for:
- Recording scrap items as they are received
- Sorting and status tracking through the recycling flow
- Searching, filtering, sorting and paginating the inventory
- Counting items per status
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Union

from asyncpg import PostgresError
from asyncpg.exceptions import ForeignKeyViolationError

from database import get_pool
from database.exceptions import DatabaseError
from database.lib.records import serialize_value, affected_rows
from errors import MarketplaceError, ValidationError, NotFoundError, ConflictError
from errors.validation import require_text, require_choice, require_amount
from users import user_exists

logger = logging.getLogger(__name__)

CATEGORY_TYPES = ('metal', 'plastic', 'electronic', 'other')
STATUS_TYPES = ('unprocessed', 'sorted', 'ready_for_auction', 'recycled')
LOCATION_TYPES = ('warehouse', 'recycling_center', 'auction_house')

# Client sort keys and the columns they map to
SORT_FIELDS = {
    'created_at': 'created_at',
    'updated_at': 'updated_at',
    'weight': 'weight',
    'description': 'description',
    'status': 'status_type',
    'category': 'category_type',
    'location': 'location_type'
}

MUTABLE_FIELDS = {
    'description',
    'weight',
    'category',
    'status',
    'location',
    'images',
    'sorted_by'
}

class ScrapItemNotFoundError(NotFoundError):
    """Raised when a scrap item is not found."""
    pass

def scrap_item_to_dict(row) -> Optional[Dict[str, Any]]:
    """Re-nest the flattened scrap_items columns."""
    if row is None:
        return None
    return {
        'id': serialize_value(row['id']),
        'description': row['description'],
        'weight': serialize_value(row['weight']),
        'category': {
            'type': row['category_type'],
            'details': {
                'sub_category': row['category_sub_category'],
                'classification': row['category_classification']
            }
        },
        'status': {
            'type': row['status_type'],
            'details': {'reason': row['status_reason']}
        },
        'location': {
            'type': row['location_type'],
            'details': {
                'address': row['location_address'],
                'warehouse_section': row['location_warehouse_section']
            }
        },
        'received_by': serialize_value(row['received_by']),
        'sorted_by': serialize_value(row['sorted_by']),
        'images': list(row['images'] or []),
        'created_at': serialize_value(row['created_at']),
        'updated_at': serialize_value(row['updated_at'])
    }

def _details(section: Dict[str, Any], name: str) -> Dict[str, Any]:
    details = section.get('details') or {}
    if not isinstance(details, dict):
        raise ValidationError(f"{name}.details must be an object")
    return details

def category_columns(category: Any) -> Dict[str, Any]:
    """Validate a category object and flatten it to columns."""
    if not isinstance(category, dict):
        raise ValidationError("category is required")
    details = _details(category, 'category')
    return {
        'category_type': require_choice(category.get('type'), CATEGORY_TYPES, 'category type'),
        'category_sub_category': details.get('sub_category'),
        'category_classification': details.get('classification')
    }

def status_columns(status: Any) -> Dict[str, Any]:
    """Validate a status object and flatten it to columns."""
    if not isinstance(status, dict):
        raise ValidationError("status must be an object")
    details = _details(status, 'status')
    return {
        'status_type': require_choice(status.get('type'), STATUS_TYPES, 'status type'),
        'status_reason': details.get('reason')
    }

def location_columns(location: Any) -> Dict[str, Any]:
    """Validate a location object and flatten it to columns."""
    if not isinstance(location, dict):
        raise ValidationError("location is required")
    details = _details(location, 'location')
    return {
        'location_type': require_choice(location.get('type'), LOCATION_TYPES, 'location type'),
        'location_address': require_text(details.get('address'), 'location address'),
        'location_warehouse_section': details.get('warehouse_section')
    }

def image_list(images: Any) -> List[str]:
    """Validate a list of image URLs."""
    if images is None:
        return []
    if not isinstance(images, (list, tuple)) or not all(isinstance(i, str) for i in images):
        raise ValidationError("images must be a list of URLs")
    return list(images)

class ScrapItemManager:
    """Manager class for handling scrap inventory operations."""

    def __init__(self, pool=None):
        """Initialize the scrap item manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def create_scrap_item(
        self,
        description: str,
        weight: Any,
        category: Dict[str, Any],
        location: Dict[str, Any],
        received_by: Union[str, uuid.UUID],
        status: Optional[Dict[str, Any]] = None,
        sorted_by: Optional[Union[str, uuid.UUID]] = None,
        images: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """Record a new scrap item.

        Args:
            description: What the item is
            weight: Weight of the item
            category: {'type': ..., 'details': {'sub_category', 'classification'}}
            location: {'type': ..., 'details': {'address', 'warehouse_section'}}
            received_by: User who received the item
            status: Optional {'type': ..., 'details': {'reason'}}, defaults to unprocessed
            sorted_by: Optional user who sorted the item
            images: Optional list of image URLs

        Returns:
            Dict containing the created scrap item

        Raises:
            ValidationError: If a field is invalid
            NotFoundError: If received_by or sorted_by is not a known user
        """
        columns = {
            'description': require_text(description, 'description'),
            'weight': require_amount(weight, 'weight'),
            **category_columns(category),
            **status_columns(status or {'type': 'unprocessed'}),
            **location_columns(location),
            'received_by': received_by,
            'sorted_by': sorted_by,
            'images': image_list(images)
        }
        if not received_by:
            raise ValidationError("received_by is required")

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                if not await user_exists(conn, received_by):
                    raise NotFoundError("User who received the item not found")
                if sorted_by and not await user_exists(conn, sorted_by):
                    raise NotFoundError("User who sorted the item not found")

                names = list(columns)
                placeholders = ', '.join(f'${i}' for i in range(1, len(names) + 1))
                row = await conn.fetchrow(
                    f'''
                    INSERT INTO scrap_items ({', '.join(names)})
                    VALUES ({placeholders})
                    RETURNING *
                    ''',
                    *columns.values()
                )

            logger.info(f"Created scrap item {row['id']} ({columns['category_type']})")
            return scrap_item_to_dict(row)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error creating scrap item: {e}")
            raise DatabaseError(f"Failed to create scrap item: {e}")

    async def get_scrap_item(self, item_id: Union[str, uuid.UUID]) -> Dict[str, Any]:
        """Get a scrap item by ID.

        Raises:
            ScrapItemNotFoundError: If the item doesn't exist
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow('SELECT * FROM scrap_items WHERE id = $1', item_id)
            if not row:
                raise ScrapItemNotFoundError("Scrap item not found")
            return scrap_item_to_dict(row)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error getting scrap item {item_id}: {e}")
            raise DatabaseError(f"Failed to get scrap item: {e}")

    async def update_scrap_item(
        self,
        item_id: Union[str, uuid.UUID],
        updates: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Update a scrap item's details.

        Args:
            item_id: The scrap item UUID
            updates: Fields to change; nested objects replace the stored ones

        Returns:
            Updated scrap item

        Raises:
            ScrapItemNotFoundError: If the item doesn't exist
            ValidationError: If update contains invalid fields
        """
        invalid_fields = set(updates) - MUTABLE_FIELDS
        if invalid_fields:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(invalid_fields))}")
        if not updates:
            raise ValidationError("No fields to update")

        columns = {}
        if 'description' in updates:
            columns['description'] = require_text(updates['description'], 'description')
        if 'weight' in updates:
            columns['weight'] = require_amount(updates['weight'], 'weight')
        if 'category' in updates:
            columns.update(category_columns(updates['category']))
        if 'status' in updates:
            columns.update(status_columns(updates['status']))
        if 'location' in updates:
            columns.update(location_columns(updates['location']))
        if 'images' in updates:
            columns['images'] = image_list(updates['images'])
        if 'sorted_by' in updates:
            columns['sorted_by'] = updates['sorted_by']

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                if columns.get('sorted_by') and not await user_exists(conn, columns['sorted_by']):
                    raise NotFoundError("User who sorted the item not found")
                row = await self._update_columns(conn, item_id, columns)

            logger.info(f"Updated scrap item {item_id}: {', '.join(sorted(updates))}")
            return scrap_item_to_dict(row)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error updating scrap item {item_id}: {e}")
            raise DatabaseError(f"Failed to update scrap item: {e}")

    async def update_status(
        self,
        item_id: Union[str, uuid.UUID],
        status_type: str,
        reason: Optional[str] = None
    ) -> Dict[str, Any]:
        """Move a scrap item to a new status.

        Raises:
            ScrapItemNotFoundError: If the item doesn't exist
            ValidationError: If the status is unknown
        """
        columns = status_columns({'type': status_type, 'details': {'reason': reason}})

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                row = await self._update_columns(conn, item_id, columns)
            logger.info(f"Scrap item {item_id} status set to {status_type}")
            return scrap_item_to_dict(row)

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Database error updating status of scrap item {item_id}: {e}")
            raise DatabaseError(f"Failed to update scrap item status: {e}")

    async def _update_columns(self, conn, item_id, columns: Dict[str, Any]):
        fields = []
        values = []
        for i, (field, value) in enumerate(columns.items(), start=1):
            fields.append(f"{field} = ${i}")
            values.append(value)
        values.append(item_id)

        row = await conn.fetchrow(
            f'''
            UPDATE scrap_items
            SET {', '.join(fields)}
            WHERE id = ${len(values)}
            RETURNING *
            ''',
            *values
        )
        if not row:
            raise ScrapItemNotFoundError("Scrap item not found")
        return row

    async def delete_scrap_item(self, item_id: Union[str, uuid.UUID]) -> None:
        """Delete a scrap item.

        Raises:
            ScrapItemNotFoundError: If the item doesn't exist
            ConflictError: If an auction still references the item
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute('DELETE FROM scrap_items WHERE id = $1', item_id)
            if affected_rows(result) == 0:
                raise ScrapItemNotFoundError("Scrap item not found")
            logger.info(f"Deleted scrap item {item_id}")

        except MarketplaceError:
            raise
        except ForeignKeyViolationError:
            raise ConflictError("Scrap item is referenced by an auction")
        except PostgresError as e:
            logger.error(f"Database error deleting scrap item {item_id}: {e}")
            raise DatabaseError(f"Failed to delete scrap item: {e}")

    async def search_scrap_items(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
        location: Optional[str] = None,
        search_term: Optional[str] = None,
        sort_field: str = 'created_at',
        order: str = 'desc',
        page: int = 1,
        limit: int = 10
    ) -> Dict[str, Any]:
        """Search scrap items with filters, sorting and pagination.

        Args:
            status: Optional status type to filter by
            category: Optional category type to filter by
            location: Optional location type to filter by
            search_term: Optional case-insensitive text to find in the description
            sort_field: One of SORT_FIELDS
            order: 'asc' or 'desc'
            page: 1-based page number
            limit: Items per page

        Returns:
            Dict containing:
                - items: Matching scrap items for the page
                - total_count: Total number of matching items
                - total_pages: Total number of pages
                - current_page: Current page number
                - limit: Page size
        """
        if page < 1 or limit < 1:
            raise ValidationError("Page and limit must be positive integers")
        require_choice(sort_field, tuple(SORT_FIELDS), 'sort field')
        require_choice(order, ('asc', 'desc'), 'sort order')

        conditions = ''
        params = []
        param_idx = 1

        if status:
            require_choice(status, STATUS_TYPES, 'status type')
            conditions += f" AND status_type = ${param_idx}"
            params.append(status)
            param_idx += 1

        if category:
            require_choice(category, CATEGORY_TYPES, 'category type')
            conditions += f" AND category_type = ${param_idx}"
            params.append(category)
            param_idx += 1

        if location:
            require_choice(location, LOCATION_TYPES, 'location type')
            conditions += f" AND location_type = ${param_idx}"
            params.append(location)
            param_idx += 1

        if search_term:
            conditions += f" AND description ILIKE ${param_idx}"
            params.append(f"%{search_term}%")
            param_idx += 1

        query = (
            f"SELECT * FROM scrap_items WHERE 1=1{conditions}"
            f" ORDER BY {SORT_FIELDS[sort_field]} {order.upper()}, id"
            f" LIMIT ${param_idx} OFFSET ${param_idx + 1}"
        )
        offset = (page - 1) * limit

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                total_count = await conn.fetchval(
                    f"SELECT COUNT(*) FROM scrap_items WHERE 1=1{conditions}",
                    *params
                )
                rows = await conn.fetch(query, *params, limit, offset)

            return {
                'items': [scrap_item_to_dict(row) for row in rows],
                'total_count': total_count,
                'total_pages': (total_count + limit - 1) // limit,
                'current_page': page,
                'limit': limit
            }

        except PostgresError as e:
            logger.error(f"Database error searching scrap items: {e}")
            raise DatabaseError(f"Failed to search scrap items: {e}")

    async def count_by_status(self) -> List[Dict[str, Any]]:
        """Count scrap items per status type."""
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    '''
                    SELECT status_type, COUNT(*) AS count
                    FROM scrap_items
                    GROUP BY status_type
                    ORDER BY status_type
                    '''
                )
            return [{'status': row['status_type'], 'count': row['count']} for row in rows]

        except PostgresError as e:
            logger.error(f"Database error counting scrap items: {e}")
            raise DatabaseError(f"Failed to count scrap items: {e}")

__all__ = [
    'ScrapItemManager',
    'ScrapItemNotFoundError',
    'CATEGORY_TYPES',
    'STATUS_TYPES',
    'LOCATION_TYPES',
    'SORT_FIELDS',
    'scrap_item_to_dict'
]

"""System health endpoint."""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

import psutil
from asyncpg import PostgresError
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from database import get_pool
from errors import MarketplaceError

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    tags=["System"]
)

class SystemHealth(BaseModel):
    """Model for system health data."""
    status: str
    timestamp: datetime
    uptime: float
    cpu_usage: float
    memory_usage: float
    disk_usage: float
    database_status: str
    active_connections: Optional[int] = None

async def check_database() -> Optional[int]:
    """Count active database connections, or None when the database is unreachable."""
    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            return await conn.fetchval(
                '''
                SELECT COUNT(*)
                FROM pg_stat_activity
                WHERE state = 'active'
                '''
            )
    except (MarketplaceError, PostgresError, OSError, RuntimeError) as e:
        logger.warning(f"Database health check failed: {e}")
        return None

@router.get("/health", response_model=SystemHealth)
async def get_system_health():
    """Get system health status."""
    cpu_percent = psutil.cpu_percent()
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage('/')
    process = psutil.Process()

    active_connections = await check_database()
    db_ok = active_connections is not None

    health = SystemHealth(
        status="healthy" if db_ok and cpu_percent < 80 else "degraded",
        timestamp=datetime.now(timezone.utc),
        uptime=time.time() - process.create_time(),
        cpu_usage=cpu_percent,
        memory_usage=memory.percent,
        disk_usage=disk.percent,
        database_status="connected" if db_ok else "disconnected",
        active_connections=active_connections
    )

    if not db_ok:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=health.model_dump(mode='json')
        )
    return health

__all__ = ['router']

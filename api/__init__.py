"""REST API module for the scrap auction marketplace.

This module provides HTTP endpoints for:
- Registration, login and session management
- User profiles and administration
- Scrap inventory
- Auctions and bidding
- Payments and transactions
- Notification and newsletter subscriptions
- System health monitoring
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings_conf
from errors import MarketplaceError
from workers import AuctionCloser, DigestSender

# Configure logging
logging.basicConfig(
    level=settings_conf['log_level'],
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    logger.info("Initializing API...")
    # Don't initialize DB here since it's handled in __main__.py

    closer = AuctionCloser(interval=settings_conf['auction_sweep_interval'])
    sender = DigestSender(interval=settings_conf['digest_interval'])
    tasks = [
        asyncio.create_task(closer.run(), name="auction-closer"),
        asyncio.create_task(sender.run(), name="digest-sender")
    ]
    logger.info("Started background workers")

    yield

    # Shutdown
    logger.info("Shutting down API...")
    closer.stop()
    sender.stop()
    for task in tasks:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

# Create FastAPI app
app = FastAPI(
    title="Scrap Auction Marketplace API",
    description="REST API for the scrap recycling auction marketplace",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings_conf['cors_origins'],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status and duration of every request."""
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000
    logger.info(
        f"{request.method} {request.url.path} {response.status_code} {duration_ms:.1f}ms"
    )
    return response

@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, 'headers', None)
    )

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": '.'.join(str(part) for part in error['loc'] if part != 'body'),
            "message": error['msg']
        }
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"errors": errors})

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"message": "Internal Server Error"})

# Import and include all routers
from .auth import router as auth_router
from .users import router as users_router
from .scrap import router as scrap_router
from .auctions import router as auctions_router
from .bids import router as bids_router
from .payments import router as payments_router
from .transactions import router as transactions_router
from .notifications import router as notifications_router
from .newsletter import router as newsletter_router
from .system import router as system_router

# Include all routers
app.include_router(auth_router, prefix="/api")
app.include_router(users_router, prefix="/api")
app.include_router(scrap_router, prefix="/api")
app.include_router(auctions_router, prefix="/api")
app.include_router(bids_router, prefix="/api")
app.include_router(payments_router, prefix="/api")
app.include_router(transactions_router, prefix="/api")
app.include_router(notifications_router, prefix="/api")
app.include_router(newsletter_router, prefix="/api")
app.include_router(system_router)

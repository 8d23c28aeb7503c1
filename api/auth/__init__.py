"""Authentication API endpoints."""

from fastapi import APIRouter, Request, Security, status
from typing import Any, Dict, Optional
from pydantic import BaseModel

from auth import manager, get_current_user, AuthError
from users import UserManager, DEFAULT_ROLE

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"]
)

users = UserManager()

class Address(BaseModel):
    """Model for a postal address."""
    street: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None

class RegisterRequest(BaseModel):
    """Request model for registering an account."""
    name: str
    email: str
    password: str
    role: str = DEFAULT_ROLE
    address: Optional[Address] = None
    phone: Optional[str] = None

class LoginRequest(BaseModel):
    """Request model for logging in."""
    email: str
    password: str

class VerifyTokenRequest(BaseModel):
    """Request model for checking a token."""
    token: str

@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest, fastapi_request: Request):
    """Create an account and return a session token."""
    return await manager.register(
        name=request.name,
        email=request.email,
        password=request.password,
        role=request.role,
        address=request.address.model_dump() if request.address else None,
        phone=request.phone,
        request=fastapi_request
    )

@router.post("/login")
async def login(request: LoginRequest, fastapi_request: Request):
    """Exchange credentials for a session token."""
    result = await manager.login(request.email, request.password, fastapi_request)
    return {"token": result["token"], "expires_at": result["expires_at"]}

@router.post("/logout")
async def logout(user: Dict[str, Any] = Security(get_current_user)):
    """Revoke the caller's session."""
    await manager.logout(user['user_id'])
    return {"message": "Logged out successfully"}

@router.get("/profile")
async def profile(user: Dict[str, Any] = Security(get_current_user)):
    """Get the authenticated user's profile."""
    return await users.get_user(user['user_id'])

@router.post("/verify-token")
async def verify_token(request: VerifyTokenRequest):
    """Report whether a token belongs to a live session."""
    try:
        session = await manager.verify_session(request.token)
    except AuthError as e:
        return {"valid": False, "message": e.message}
    return {"valid": True, "user_id": session['user_id'], "role": session['role']}

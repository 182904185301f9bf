"""
Lead Tracker - Authentication Router
Handles login, token verification, user administration and password changes.
"""
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_current_user, get_settings, require_admin
from ..config import Settings
from ..database import get_db
from ..errors import LeadTrackerError
from ..models.db_models import UserDB
from ..services.auth_service import AuthService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class LoginRequest(BaseModel):
    username: Optional[str] = None  # username or email
    password: Optional[str] = None


class CreateUserRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None


class UpdateUserRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    isActive: Optional[bool] = None


class ChangePasswordRequest(BaseModel):
    currentPassword: Optional[str] = None
    newPassword: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


def _service_error(e: LeadTrackerError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.post("/login")
async def login(
    request: LoginRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Authenticate by username or email and return a JWT token.
    """
    try:
        token, user = AuthService(db, settings).login(request.username or "", request.password or "")
    except LeadTrackerError as e:
        raise _service_error(e)

    return {
        "message": "Login successful",
        "token": token,
        "user": user.to_dict(),
    }


@router.get("/verify")
async def verify(current_user: UserDB = Depends(get_current_user)):
    """
    Confirm the bearer token is valid and return the authenticated identity.
    """
    return {"valid": True, "user": current_user.to_dict()}


@router.post("/logout", response_model=MessageResponse)
async def logout():
    """Tokens are stateless; the client discards its copy."""
    return MessageResponse(message="Logout successful")


# -----------------------------------------------------------------------------
# USER ADMINISTRATION (admin only)
# -----------------------------------------------------------------------------

@router.post("/users", status_code=status.HTTP_201_CREATED)
async def create_user(
    request: CreateUserRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    admin: UserDB = Depends(require_admin),
):
    try:
        user = AuthService(db, settings).create_user(
            request.username, request.email, request.password, request.role
        )
    except LeadTrackerError as e:
        raise _service_error(e)

    logger.info(f"User {user.username} created by {admin.username}")
    return {"message": "User created successfully", "user": user.to_dict()}


@router.get("/users")
async def list_users(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    admin: UserDB = Depends(require_admin),
) -> List[dict]:
    return [user.to_dict() for user in AuthService(db, settings).list_users()]


@router.put("/users/{user_id}")
async def update_user(
    user_id: str,
    request: UpdateUserRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    admin: UserDB = Depends(require_admin),
):
    try:
        user = AuthService(db, settings).update_user(
            user_id,
            username=request.username,
            email=request.email,
            role=request.role,
            is_active=request.isActive,
        )
    except LeadTrackerError as e:
        raise _service_error(e)

    return {"message": "User updated successfully", "user": user.to_dict()}


# -----------------------------------------------------------------------------
# SELF SERVICE
# -----------------------------------------------------------------------------

@router.put("/change-password", response_model=MessageResponse)
async def change_password(
    request: ChangePasswordRequest,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Change the caller's password.
    Requires current password for verification.
    """
    try:
        AuthService(db, settings).change_password(
            current_user, request.currentPassword or "", request.newPassword or ""
        )
    except LeadTrackerError as e:
        raise _service_error(e)

    return MessageResponse(message="Password changed successfully")

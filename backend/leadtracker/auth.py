"""
Lead Tracker - Authentication Utilities
Password hashing, JWT tokens, role permissions and auth dependencies
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import bcrypt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .config import Settings
from .database import get_db
from .errors import AuthorizationError, LeadTrackerError
from .models.db_models import UserDB, UserRole

# Bearer token security; missing header is reported by get_current_user
security = HTTPBearer(auto_error=False)

PERMISSION_NAMES = ("viewSubmissions", "exportData", "manageUsers", "viewAnalytics")

ROLE_PERMISSIONS: Dict[str, Dict[str, bool]] = {
    UserRole.ADMIN.value: {
        "viewSubmissions": True,
        "exportData": True,
        "manageUsers": True,
        "viewAnalytics": True,
    },
    UserRole.MANAGER.value: {
        "viewSubmissions": True,
        "exportData": True,
        "manageUsers": False,
        "viewAnalytics": True,
    },
    UserRole.ANALYST.value: {
        "viewSubmissions": True,
        "exportData": False,
        "manageUsers": False,
        "viewAnalytics": True,
    },
}


def permissions_for_role(role: str) -> Dict[str, bool]:
    """Permission set for a role. Unknown roles get nothing."""
    return dict(ROLE_PERMISSIONS.get(role, {name: False for name in PERMISSION_NAMES}))


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password_bytes, salt).decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash (bcrypt compares in constant time)."""
    password_bytes = plain_password.encode('utf-8')
    hashed_bytes = hashed_password.encode('utf-8')
    try:
        return bcrypt.checkpw(password_bytes, hashed_bytes)
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def create_access_token(settings: Settings, user_id: str, username: str, role: str) -> str:
    """Create a JWT access token carrying id, username and role."""
    expire = datetime.now(timezone.utc) + timedelta(hours=settings.jwt_expire_hours)
    to_encode = {
        "sub": user_id,
        "username": username,
        "role": role,
        "exp": expire
    }
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(settings: Settings, token: str) -> Optional[dict]:
    """Decode and validate a JWT token. Signature and expiry are both checked."""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> UserDB:
    """
    Dependency to get the current authenticated user.
    Validates JWT token and fetches an active user from the database.
    """
    from .services.auth_service import AuthService

    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return AuthService(db, settings).verify(credentials.credentials)
    except LeadTrackerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


def check_permission(user: UserDB, permission: str) -> None:
    """Raise AuthorizationError unless the user holds the named permission."""
    if not (user.permissions or {}).get(permission):
        raise AuthorizationError(f"Permission required: {permission}")


def check_admin(user: UserDB) -> None:
    """Raise AuthorizationError unless the user is an admin."""
    if user.role != UserRole.ADMIN.value:
        raise AuthorizationError("Admin access required")


def require_permission(permission: str) -> Callable:
    """
    Dependency factory: the current user must hold the named permission.
    """
    async def checker(current_user: UserDB = Depends(get_current_user)) -> UserDB:
        try:
            check_permission(current_user, permission)
        except AuthorizationError as e:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)
        return current_user

    return checker


async def require_admin(current_user: UserDB = Depends(get_current_user)) -> UserDB:
    """
    Dependency to require admin role.
    Use this on admin-only routes.
    """
    try:
        check_admin(current_user)
    except AuthorizationError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)
    return current_user

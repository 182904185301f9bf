"""
Auth Service

Credential verification, token issuance/verification and user management.
Permissions are always recomputed from the role when a role is written.
"""
import logging
from functools import lru_cache
from typing import List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth import (
    hash_password, verify_password, create_access_token, decode_token, permissions_for_role,
)
from ..config import Settings
from ..errors import (
    AuthenticationError, AuthorizationError, NotFoundError, PersistenceError, ValidationError,
)
from ..models.db_models import UserDB, UserRole, utcnow

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"
MIN_PASSWORD_LENGTH = 6
USERNAME_LENGTH = (3, 50)
VALID_ROLES = tuple(r.value for r in UserRole)


@lru_cache(maxsize=1)
def _dummy_password_hash() -> str:
    return hash_password(str(uuid4()))


class AuthService:
    """Login, token verification and user CRUD over a session."""

    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings

    # =========================================================================
    # AUTHENTICATION
    # =========================================================================

    def login(self, identifier: str, password: str) -> Tuple[str, UserDB]:
        """
        Authenticate by username or email.

        Unknown user, inactive user and wrong password all fail with the same
        message so the response never reveals whether an account exists.
        """
        if not identifier or not password:
            raise ValidationError("Username and password are required")

        identifier = identifier.strip()
        user = self.db.query(UserDB).filter(
            or_(UserDB.username == identifier, UserDB.email == identifier.lower())
        ).first()

        if user is None or not user.is_active:
            # Same bcrypt cost as a real check so timing does not reveal the account
            verify_password(password, _dummy_password_hash())
            raise AuthenticationError(INVALID_CREDENTIALS)
        if not verify_password(password, user.password_hash):
            raise AuthenticationError(INVALID_CREDENTIALS)

        user.last_login = utcnow()
        self._commit()

        token = create_access_token(self.settings, user.id, user.username, user.role)
        logger.info(f"User logged in: {user.username}")
        return token, user

    def verify(self, token: str) -> UserDB:
        """Validate signature and expiry, then load an active user."""
        payload = decode_token(self.settings, token)
        if payload is None or payload.get("sub") is None:
            raise AuthorizationError("Invalid or expired token")

        user = self.db.query(UserDB).filter(UserDB.id == payload["sub"]).first()
        if user is None or not user.is_active:
            raise AuthenticationError("Invalid or inactive user")
        return user

    # =========================================================================
    # USER MANAGEMENT
    # =========================================================================

    def create_user(self, username: str, email: str, password: str, role: Optional[str] = None) -> UserDB:
        username = (username or "").strip()
        email = (email or "").strip().lower()
        role = role or UserRole.ANALYST.value

        if not username or not email or not password:
            raise ValidationError("Username, email, and password are required")
        self._validate_username(username)
        self._validate_email(email)
        self._validate_password(password)
        self._validate_role(role)

        existing = self.db.query(UserDB).filter(
            or_(UserDB.username == username, UserDB.email == email)
        ).first()
        if existing:
            raise ValidationError("User with this username or email already exists")

        user = UserDB(
            id=str(uuid4()),
            username=username,
            email=email,
            password_hash=hash_password(password),
            is_active=True,
        )
        self._apply_role(user, role)

        self.db.add(user)
        self._commit()
        self.db.refresh(user)

        logger.info(f"User created: {username} ({role})")
        return user

    def list_users(self) -> List[UserDB]:
        return self.db.query(UserDB).order_by(UserDB.created_at.asc()).all()

    def get_user(self, user_id: str) -> UserDB:
        user = self.db.query(UserDB).filter(UserDB.id == user_id).first()
        if user is None:
            raise NotFoundError("User not found")
        return user

    def update_user(
        self,
        user_id: str,
        username: Optional[str] = None,
        email: Optional[str] = None,
        role: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> UserDB:
        """Partial update. Setting a role recomputes permissions."""
        user = self.get_user(user_id)

        if username:
            username = username.strip()
            self._validate_username(username)
            self._ensure_unique(UserDB.username, username, user.id)
            user.username = username
        if email:
            email = email.strip().lower()
            self._validate_email(email)
            self._ensure_unique(UserDB.email, email, user.id)
            user.email = email
        if role:
            self._validate_role(role)
            self._apply_role(user, role)
        if is_active is not None:
            user.is_active = is_active

        self._commit()
        self.db.refresh(user)

        logger.info(f"User updated: {user.username}")
        return user

    def change_password(self, user: UserDB, current_password: str, new_password: str) -> None:
        if not current_password or not new_password:
            raise ValidationError("Current password and new password are required")
        if not verify_password(current_password, user.password_hash):
            raise AuthenticationError("Current password is incorrect")
        self._validate_password(new_password)

        user.password_hash = hash_password(new_password)
        self._commit()

        logger.info(f"Password changed for user: {user.username}")

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _apply_role(user: UserDB, role: str) -> None:
        user.role = role
        user.permissions = permissions_for_role(role)

    @staticmethod
    def _validate_username(username: str) -> None:
        low, high = USERNAME_LENGTH
        if not low <= len(username) <= high:
            raise ValidationError(f"Username must be between {low} and {high} characters")

    @staticmethod
    def _validate_email(email: str) -> None:
        if "@" not in email:
            raise ValidationError("Invalid email address")

    @staticmethod
    def _validate_password(password: str) -> None:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    @staticmethod
    def _validate_role(role: str) -> None:
        if role not in VALID_ROLES:
            raise ValidationError(f"Invalid role. Must be one of: {', '.join(VALID_ROLES)}")

    def _ensure_unique(self, column, value: str, user_id: str) -> None:
        clash = self.db.query(UserDB).filter(column == value, UserDB.id != user_id).first()
        if clash:
            raise ValidationError("User with this username or email already exists")

    def _commit(self) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ValidationError("User with this username or email already exists") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("User write failed")
            raise PersistenceError(f"Failed to save user: {e}") from e

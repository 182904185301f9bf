#!/usr/bin/env python3
"""
Admin User Seed Script
Creates an admin user (and optionally a sample analyst) for the dashboard.

Usage:
    python -m scripts.seed_admin <email> <username> <password> [--with-analyst]

Example:
    python -m scripts.seed_admin admin@example.com admin securepassword123
"""
import sys
import os

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from leadtracker.auth import permissions_for_role
from leadtracker.config import Settings
from leadtracker.database import create_db_engine, create_session_factory, init_db
from leadtracker.errors import LeadTrackerError
from leadtracker.models.db_models import UserDB, UserRole
from leadtracker.services.auth_service import AuthService

SAMPLE_ANALYST = ("analyst@example.com", "analyst", "analyst123")


def create_admin_user(db: Session, settings: Settings, email: str, username: str, password: str) -> bool:
    """Create an admin user, or upgrade an existing account with that email."""
    existing = db.query(UserDB).filter(
        (UserDB.email == email.lower()) | (UserDB.username == username)
    ).first()

    if existing:
        if existing.email == email.lower():
            if existing.role == UserRole.ADMIN.value:
                print(f"User '{email}' is already an admin.")
                return True
            # Upgrade existing user to admin; permissions follow the role
            existing.role = UserRole.ADMIN.value
            existing.permissions = permissions_for_role(existing.role)
            db.commit()
            print(f"Upgraded existing user '{email}' to admin role.")
            return True
        print(f"Error: Username '{username}' already exists.")
        return False

    try:
        AuthService(db, settings).create_user(username, email, password, UserRole.ADMIN.value)
    except LeadTrackerError as e:
        print(f"Error creating admin user: {e.message}")
        return False

    print("Admin user created successfully!")
    print(f"  Email: {email}")
    print(f"  Username: {username}")
    print("  Role: admin")
    print("Change the password after first login.")
    return True


def create_sample_analyst(db: Session, settings: Settings) -> None:
    email, username, password = SAMPLE_ANALYST
    if db.query(UserDB).filter(UserDB.username == username).first():
        return
    AuthService(db, settings).create_user(username, email, password, UserRole.ANALYST.value)
    print(f"Sample analyst user created ({username}/{password})")


def main():
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    with_analyst = "--with-analyst" in sys.argv[1:]

    if len(args) != 3:
        print(__doc__)
        sys.exit(1)

    email, username, password = args

    # Basic validation
    if len(password) < 8:
        print("Error: Password must be at least 8 characters.")
        sys.exit(1)

    if "@" not in email:
        print("Error: Invalid email format.")
        sys.exit(1)

    settings = Settings.from_env()
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    db = create_session_factory(engine)()
    try:
        success = create_admin_user(db, settings, email, username, password)
        if success and with_analyst:
            create_sample_analyst(db, settings)
        print(f"Total users: {db.query(UserDB).count()}")
    finally:
        db.close()
        engine.dispose()

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()

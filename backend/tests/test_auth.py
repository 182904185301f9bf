"""
Tests for authentication and user management.

Role-derived permissions, password hashing, login, token verification
and the AuthService user CRUD.
"""
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from leadtracker.auth import (
    check_admin, check_permission, create_access_token, decode_token,
    hash_password, permissions_for_role, verify_password,
)
from leadtracker.errors import (
    AuthenticationError, AuthorizationError, NotFoundError, ValidationError,
)
from leadtracker.services.auth_service import AuthService

from conftest import make_user


@pytest.fixture
def service(db, settings):
    return AuthService(db, settings)


# =============================================================================
# TEST: PERMISSIONS
# =============================================================================

class TestPermissions:

    def test_admin_has_everything(self):
        assert all(permissions_for_role("admin").values())

    def test_manager_cannot_manage_users(self):
        perms = permissions_for_role("manager")
        assert perms["exportData"] is True
        assert perms["manageUsers"] is False

    def test_analyst_cannot_export(self):
        perms = permissions_for_role("analyst")
        assert perms == {
            "viewSubmissions": True,
            "exportData": False,
            "manageUsers": False,
            "viewAnalytics": True,
        }

    def test_unknown_role_gets_nothing(self):
        assert not any(permissions_for_role("intern").values())

    def test_returned_dict_is_a_copy(self):
        permissions_for_role("analyst")["exportData"] = True
        assert permissions_for_role("analyst")["exportData"] is False

    def test_check_helpers(self, db):
        analyst = make_user(db, "ana")
        check_permission(analyst, "viewAnalytics")
        with pytest.raises(AuthorizationError):
            check_permission(analyst, "exportData")
        with pytest.raises(AuthorizationError):
            check_admin(analyst)


# =============================================================================
# TEST: PASSWORDS AND TOKENS
# =============================================================================

class TestPasswordsAndTokens:

    def test_hash_and_verify(self):
        hashed = hash_password("s3cret!")
        assert hashed != "s3cret!"
        assert verify_password("s3cret!", hashed)
        assert not verify_password("wrong", hashed)

    def test_verify_against_non_hash(self):
        assert verify_password("anything", "plaintext") is False

    def test_token_round_trip(self, settings):
        token = create_access_token(settings, "user-1", "ana", "analyst")
        payload = decode_token(settings, token)
        assert payload["sub"] == "user-1"
        assert payload["username"] == "ana"
        assert payload["role"] == "analyst"

    def test_token_expiry_window(self, settings):
        payload = decode_token(settings, create_access_token(settings, "u", "n", "admin"))
        expires = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        remaining = expires - datetime.now(timezone.utc)
        assert timedelta(hours=23) < remaining <= timedelta(hours=24)

    def test_expired_token_rejected(self, settings):
        token = jwt.encode(
            {"sub": "u", "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
            settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
        )
        assert decode_token(settings, token) is None

    def test_wrong_signature_rejected(self, settings):
        token = jwt.encode({"sub": "u"}, "other-secret", algorithm="HS256")
        assert decode_token(settings, token) is None


# =============================================================================
# TEST: LOGIN AND VERIFY
# =============================================================================

class TestLogin:

    def test_login_by_username_or_email(self, db, service):
        make_user(db, "ana")
        token, user = service.login("ana", "password123")
        assert token
        assert user.username == "ana"
        _, user = service.login("ANA@example.com", "password123")
        assert user.username == "ana"

    def test_login_records_last_login(self, db, service):
        user = make_user(db, "ana")
        assert user.last_login is None
        service.login("ana", "password123")
        db.refresh(user)
        assert user.last_login is not None

    @pytest.mark.parametrize("identifier,password", [
        ("ana", "wrong-password"),
        ("nobody", "password123"),
    ])
    def test_failures_share_one_message(self, db, service, identifier, password):
        make_user(db, "ana")
        with pytest.raises(AuthenticationError) as exc:
            service.login(identifier, password)
        assert exc.value.message == "Invalid credentials"

    def test_inactive_user_cannot_login(self, db, service):
        make_user(db, "ghost", is_active=False)
        with pytest.raises(AuthenticationError) as exc:
            service.login("ghost", "password123")
        assert exc.value.message == "Invalid credentials"

    @pytest.mark.parametrize("username,is_active", [("nobody", True), ("ghost", False)])
    def test_unknown_or_inactive_user_still_checks_a_hash(self, db, service, monkeypatch, username, is_active):
        from leadtracker.services import auth_service

        make_user(db, "ghost", is_active=is_active)
        checked = []

        def recording_verify(plain, hashed):
            checked.append(hashed)
            return False

        monkeypatch.setattr(auth_service, "verify_password", recording_verify)
        with pytest.raises(AuthenticationError):
            service.login(username, "password123")
        assert len(checked) == 1
        assert checked[0].startswith("$2")

    def test_missing_credentials(self, service):
        with pytest.raises(ValidationError):
            service.login("", "")

    def test_verify_token(self, db, service):
        make_user(db, "ana")
        token, user = service.login("ana", "password123")
        assert service.verify(token).id == user.id

    def test_verify_bad_token(self, service):
        with pytest.raises(AuthorizationError):
            service.verify("not-a-token")

    def test_verify_deactivated_user(self, db, service):
        user = make_user(db, "ana")
        token, _ = service.login("ana", "password123")
        service.update_user(user.id, is_active=False)
        with pytest.raises(AuthenticationError):
            service.verify(token)


# =============================================================================
# TEST: USER MANAGEMENT
# =============================================================================

class TestUserManagement:

    def test_create_user_defaults_to_analyst(self, service):
        user = service.create_user("newbie", "New@Example.com", "secret1")
        assert user.role == "analyst"
        assert user.email == "new@example.com"
        assert user.permissions == permissions_for_role("analyst")
        assert "password_hash" not in user.to_dict()

    def test_duplicate_rejected(self, db, service):
        make_user(db, "ana")
        with pytest.raises(ValidationError):
            service.create_user("ana", "other@example.com", "secret1")
        with pytest.raises(ValidationError):
            service.create_user("other", "ana@example.com", "secret1")

    @pytest.mark.parametrize("username,email,password,role", [
        ("ab", "ab@example.com", "secret1", None),
        ("valid", "not-an-email", "secret1", None),
        ("valid", "v@example.com", "short", None),
        ("valid", "v@example.com", "secret1", "superuser"),
    ])
    def test_create_user_validation(self, service, username, email, password, role):
        with pytest.raises(ValidationError):
            service.create_user(username, email, password, role)

    def test_role_change_recomputes_permissions(self, db, service):
        user = make_user(db, "ana")
        updated = service.update_user(user.id, role="manager")
        assert updated.role == "manager"
        assert updated.permissions["exportData"] is True

    def test_update_unknown_user(self, service):
        with pytest.raises(NotFoundError):
            service.update_user("missing", role="admin")

    def test_list_users(self, db, service):
        make_user(db, "ana")
        make_user(db, "bob", role="manager")
        assert {u.username for u in service.list_users()} == {"ana", "bob"}

    def test_change_password(self, db, service):
        user = make_user(db, "ana")
        service.change_password(user, "password123", "brand-new-pw")
        assert service.login("ana", "brand-new-pw")[1].id == user.id

    def test_change_password_wrong_current(self, db, service):
        user = make_user(db, "ana")
        with pytest.raises(AuthenticationError):
            service.change_password(user, "nope", "brand-new-pw")

    def test_change_password_too_short(self, db, service):
        user = make_user(db, "ana")
        with pytest.raises(ValidationError):
            service.change_password(user, "password123", "abc")

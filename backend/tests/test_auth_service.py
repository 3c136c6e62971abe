# Overview: Pytest coverage for users, password hashing and session tokens.

from datetime import timedelta

import pytest

from tilestock.errors import PermissionDenied
from tilestock.extensions import db
from tilestock.models import ROLE_SHOP_ADMIN, ROLE_STAFF, SessionToken
from tilestock.services import auth_service, session_service
from tilestock.services.auth_service import PasswordValidationError
from tilestock.validation import ConflictError, ValidationError

from conftest import TEST_PASSWORD


class TestPasswords:

    @pytest.mark.parametrize("password,message", [
        ("Sh0rt!", "at least 8 characters"),
        ("lowercase1!", "uppercase"),
        ("UPPERCASE1!", "lowercase"),
        ("NoDigits!!", "digit"),
        ("NoSpecial123", "special"),
    ])
    def test_weak_passwords_rejected(self, password, message):
        with pytest.raises(PasswordValidationError, match=message):
            auth_service.validate_password_strength(password)

    def test_hash_and_verify(self, app):
        hashed = auth_service.hash_password(TEST_PASSWORD)

        assert hashed != TEST_PASSWORD
        assert auth_service.verify_password(TEST_PASSWORD, hashed) is True
        assert auth_service.verify_password("Wrong-pass1", hashed) is False
        assert auth_service.verify_password(TEST_PASSWORD, "not-a-bcrypt-hash") is False


class TestCreateUser:

    def test_email_is_normalized_and_unique(self, shop_a):
        user = auth_service.create_user(
            email="  New.Person@Example.COM ", name="New", password=TEST_PASSWORD, shop_id=shop_a.id,
        )
        assert user.email == "new.person@example.com"

        with pytest.raises(ConflictError):
            auth_service.create_user(
                email="new.person@example.com", name="Again", password=TEST_PASSWORD, shop_id=shop_a.id,
            )

    def test_shop_users_need_a_shop(self, app):
        with pytest.raises(ValidationError, match="shop_id is required"):
            auth_service.create_user(email="x@example.com", name="X", password=TEST_PASSWORD, role=ROLE_STAFF)

    def test_shop_admin_creates_staff_in_own_shop(self, admin_a_caller, shop_a):
        user = auth_service.create_user(
            email="hired@example.com", name="Hired", password=TEST_PASSWORD, caller=admin_a_caller,
        )

        assert (user.role, user.shop_id) == (ROLE_STAFF, shop_a.id)

    def test_shop_admin_limits(self, admin_a_caller, shop_b):
        with pytest.raises(PermissionDenied):
            auth_service.create_user(
                email="peer@example.com", name="Peer", password=TEST_PASSWORD,
                role=ROLE_SHOP_ADMIN, caller=admin_a_caller,
            )
        with pytest.raises(PermissionDenied):
            auth_service.create_user(
                email="spy@example.com", name="Spy", password=TEST_PASSWORD,
                shop_id=shop_b.id, caller=admin_a_caller,
            )

    def test_staff_cannot_create_users(self, staff_a_caller):
        with pytest.raises(PermissionDenied):
            auth_service.create_user(
                email="friend@example.com", name="Friend", password=TEST_PASSWORD, caller=staff_a_caller,
            )


class TestAuthenticate:

    def test_valid_credentials(self, staff_a):
        user = auth_service.authenticate("STAFF.A@tilestock.test", TEST_PASSWORD)

        assert user.id == staff_a.id
        assert user.last_login_at is not None

    def test_wrong_password(self, staff_a):
        assert auth_service.authenticate(staff_a.email, "Wrong-pass1") is None

    def test_inactive_shop_blocks_login(self, staff_b, shop_b):
        shop_b.is_active = False
        db.session.commit()

        assert auth_service.authenticate(staff_b.email, TEST_PASSWORD) is None


class TestSessions:

    def test_token_is_stored_hashed(self, staff_a):
        session, token = session_service.create_session(staff_a)

        assert len(token) == 64
        assert session.token_hash == session_service.hash_token(token)
        assert session.token_hash != token

    def test_validate_captures_caller(self, staff_a, shop_a):
        _, token = session_service.create_session(staff_a)

        context = session_service.validate_session(token)

        assert context.caller.user_id == staff_a.id
        assert context.caller.role == ROLE_STAFF
        assert context.caller.shop_id == shop_a.id

    def test_revoked_token_rejected(self, staff_a):
        _, token = session_service.create_session(staff_a)

        assert session_service.revoke_session(token) is True
        assert session_service.validate_session(token) is None
        assert session_service.revoke_session(token) is False

    def test_expired_token_rejected(self, staff_a):
        session, token = session_service.create_session(staff_a)
        session.expires_at = session.created_at - timedelta(seconds=1)
        db.session.commit()

        assert session_service.validate_session(token) is None

    def test_deactivated_user_revokes_session(self, staff_a):
        session, token = session_service.create_session(staff_a)
        staff_a.is_active = False
        db.session.commit()

        assert session_service.validate_session(token) is None
        assert db.session.get(SessionToken, session.id).is_revoked is True

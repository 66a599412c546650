"""
Authentication and role tests.
"""

from datetime import timedelta

import pytest

from loyalty.errors import AuthorizationError
from loyalty.permissions import Role, has_at_least_role, require_role
from loyalty.services import auth_service
from loyalty.time_utils import utcnow

from conftest import TEST_PASSWORD


class TestRoles:

    @pytest.mark.parametrize(
        "principal,role,expected",
        [
            (Role.REGULAR, Role.REGULAR, True),
            (Role.REGULAR, Role.CASHIER, False),
            (Role.CASHIER, Role.CASHIER, True),
            (Role.MANAGER, Role.CASHIER, True),
            (Role.CASHIER, Role.MANAGER, False),
            (Role.SUPERUSER, Role.MANAGER, True),
            ("intruder", Role.REGULAR, False),
        ],
    )
    def test_ordering(self, principal, role, expected):
        assert has_at_least_role(principal, role) is expected

    def test_unknown_target_role(self):
        with pytest.raises(ValueError):
            has_at_least_role(Role.MANAGER, "owner")

    def test_require_role_raises(self):
        with pytest.raises(AuthorizationError, match="Managers only"):
            require_role(Role.CASHIER, Role.MANAGER, "Managers only")


class TestPasswords:

    def test_hash_and_verify(self):
        hashed = auth_service.hash_password(TEST_PASSWORD)
        assert hashed != TEST_PASSWORD
        assert auth_service.verify_password(TEST_PASSWORD, hashed)
        assert not auth_service.verify_password("something-else", hashed)

    def test_minimum_length(self):
        with pytest.raises(ValueError):
            auth_service.hash_password("short")

    def test_missing_or_malformed_hash(self):
        assert not auth_service.verify_password(TEST_PASSWORD, None)
        assert not auth_service.verify_password(TEST_PASSWORD, "not-a-bcrypt-hash")


class TestSessions:

    def test_session_round_trip(self, make_user):
        user = make_user("alice001", password=TEST_PASSWORD)

        authed = auth_service.authenticate("alice001", TEST_PASSWORD)
        session, token = auth_service.create_session(authed.id)

        assert session.token_hash == auth_service.hash_token(token)
        assert auth_service.validate_session(token).id == user.id
        assert auth_service.revoke_session(token) is True
        assert auth_service.validate_session(token) is None
        assert auth_service.revoke_session(token) is False

    def test_expired_session(self, db_session, make_user):
        user = make_user("alice001", password=TEST_PASSWORD)
        session, token = auth_service.create_session(user.id)
        session.expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()

        assert auth_service.validate_session(token) is None

    def test_inactive_user_rejected(self, db_session, make_user):
        user = make_user("alice001", password=TEST_PASSWORD)
        user.is_active = False
        db_session.commit()

        with pytest.raises(auth_service.AuthenticationError):
            auth_service.authenticate("alice001", TEST_PASSWORD)

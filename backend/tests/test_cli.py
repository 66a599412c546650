"""
CLI command tests (flask users / promotions / system).
"""

from loyalty.models import Promotion, User
from loyalty.permissions import Role
from loyalty.services.auth_service import verify_password


class TestUserCommands:

    def test_create_member(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "users", "create",
            "--utorid", "carol001",
            "--name", "Carol",
            "--password", "Password123",
            "--role", "cashier",
            "--verified",
        ])

        assert result.exit_code == 0, result.output
        assert "Created cashier carol001" in result.output
        user = db_session.query(User).filter_by(utorid="carol001").one()
        assert user.role == Role.CASHIER
        assert user.verified is True
        assert user.balance == 0
        assert verify_password("Password123", user.password_hash)

    def test_duplicate_member(self, app, make_user):
        make_user("carol001")
        runner = app.test_cli_runner()
        result = runner.invoke(args=["users", "create", "--utorid", "carol001", "--name", "Carol", "--password", "Password123"])
        assert result.exit_code != 0
        assert "already exists" in result.output

    def test_short_password(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["users", "create", "--utorid", "carol001", "--name", "Carol", "--password", "short"])
        assert result.exit_code != 0
        assert db_session.query(User).count() == 0

    def test_list(self, app, make_user):
        make_user("alice001", balance=42, suspicious=True)
        runner = app.test_cli_runner()
        result = runner.invoke(args=["users", "list"])
        assert result.exit_code == 0
        assert "alice001" in result.output
        assert "42" in result.output
        assert "suspicious" in result.output


class TestPromotionCommands:

    def test_create_and_list_active(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "promotions", "create",
            "--name", "Summer Bonus",
            "--type", "automatic",
            "--start", "2020-01-01T00:00Z",
            "--end", "2099-01-01T00:00Z",
            "--rate", "0.05",
        ])
        assert result.exit_code == 0, result.output
        assert db_session.query(Promotion).filter_by(name="Summer Bonus").one().rate_bps == 500

        listed = runner.invoke(args=["promotions", "active"])
        assert "Summer Bonus" in listed.output

    def test_invalid_window(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "promotions", "create",
            "--name", "Backwards",
            "--type", "one-time",
            "--start", "2030-01-01T00:00Z",
            "--end", "2020-01-01T00:00Z",
            "--points", "10",
        ])
        assert result.exit_code != 0
        assert "End time must be after start time" in result.output


class TestSystemCommands:

    def test_reset_requires_confirmation(self, app, db_session, make_user):
        make_user("alice001")
        runner = app.test_cli_runner()
        result = runner.invoke(args=["system", "reset-db"])
        assert result.exit_code != 0
        assert db_session.query(User).count() == 1

from __future__ import annotations

from ..extensions import db
from loyalty.time_utils import to_utc_z


class User(db.Model):
    """
    Program member.

    balance is the only hot shared mutable value in the ledger. It is written
    exclusively by services.balance_service inside a unit of work; nothing
    else assigns to it after the row exists.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("balance >= 0", name="ck_users_balance_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Unique member handle
    utorid = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)

    # Bcrypt hashed password (members created at the counter have none yet)
    password_hash = db.Column(db.String(255), nullable=True)

    role = db.Column(db.String(16), nullable=False, default="regular", index=True)

    balance = db.Column(db.Integer, nullable=False, default=0)

    # Gates transfers and redemptions
    verified = db.Column(db.Boolean, nullable=False, default=False)
    # A suspicious cashier's purchases are recorded but not credited
    suspicious = db.Column(db.Boolean, nullable=False, default=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "utorid": self.utorid,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "points": self.balance,
            "verified": self.verified,
            "suspicious": self.suspicious,
            "createdAt": to_utc_z(self.created_at),
            "lastLogin": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class SessionToken(db.Model):
    """
    Bearer token issued at login.

    Only the SHA-256 hash of the token is stored; the plaintext is returned
    to the client once.
    """
    __tablename__ = "session_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    is_revoked = db.Column(db.Boolean, nullable=False, default=False)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))

# Overview: Identity lookup used by the ledger, plus member creation for the CLI.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, UserNotFound, ValidationError
from ..extensions import db
from ..models import User
from ..permissions import Role, is_valid_role
from .auth_service import hash_password


def find_user_by_handle(utorid: str) -> User:
    user = db.session.query(User).filter_by(utorid=utorid).first()
    if not user:
        raise UserNotFound(f"User {utorid} not found")
    return user


def find_user_by_id(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise UserNotFound()
    return user


def create_user(
    utorid: str,
    name: str,
    email: str | None = None,
    password: str | None = None,
    role: str = Role.REGULAR,
    verified: bool = False,
) -> User:
    """
    Create a member. Balance always starts at zero; points only arrive
    through ledger transactions.
    """
    utorid = (utorid or "").strip()
    if not utorid:
        raise ValidationError("utorid is required")
    if not (name or "").strip():
        raise ValidationError("name is required")
    if not is_valid_role(role):
        raise ValidationError(f"Unknown role: {role}")

    user = User(
        utorid=utorid,
        name=name.strip(),
        email=email,
        password_hash=hash_password(password) if password else None,
        role=role,
        verified=verified,
        balance=0,
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(f"User {utorid} already exists") from exc

    current_app.logger.info("Created %s user %s", role, utorid)
    return user

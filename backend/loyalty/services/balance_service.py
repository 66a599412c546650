# Overview: Balance Mutator; the only code path that writes User.balance.

"""
Balance mutation.

credit() and debit() must be called inside concurrency.atomic(). They never
write a balance computed in application memory: each one emits a single
UPDATE users SET balance = balance +/- :amount, so concurrent units cannot
lose each other's updates.

debit() re-reads the locked row and refuses with InsufficientPoints before
writing; the UPDATE itself also carries WHERE balance >= :amount. After every
mutation the balance is read back and must be >= 0, otherwise the unit is
aborted with InvariantViolationError.
"""

from __future__ import annotations

from sqlalchemy import func

from ..errors import InsufficientPoints, InvariantViolationError, UserNotFound
from ..extensions import db
from ..models import User, RedemptionTransaction
from .concurrency import lock_for_update


def lock_user(user_id: int) -> User:
    """Load and lock a user row for the rest of the unit."""
    user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
    if not user:
        raise UserNotFound()
    return user


def lock_users(*user_ids: int) -> dict[int, User]:
    """
    Lock several users in ascending id order.

    A fixed order means two units touching the same pair of users cannot
    deadlock on each other.
    """
    locked = {}
    for user_id in sorted(set(user_ids)):
        locked[user_id] = lock_user(user_id)
    return locked


def current_balance(user_id: int) -> int:
    balance = db.session.query(User.balance).filter_by(id=user_id).scalar()
    if balance is None:
        raise UserNotFound()
    return balance


def pending_redemption_total(user_id: int) -> int:
    """Points reserved by this user's created-but-unprocessed redemptions."""
    total = (
        db.session.query(func.coalesce(func.sum(RedemptionTransaction.redeemed), 0))
        .filter(
            RedemptionTransaction.owner_user_id == user_id,
            RedemptionTransaction.processed_by_user_id.is_(None),
        )
        .scalar()
    )
    return int(total or 0)


def available_balance(user_id: int) -> int:
    return current_balance(user_id) - pending_redemption_total(user_id)


def _verify_non_negative(user_id: int) -> int:
    balance = current_balance(user_id)
    if balance < 0:
        raise InvariantViolationError(f"Balance of user {user_id} went negative ({balance})")
    return balance


def _refresh(user_id: int) -> None:
    # Keep any User instance already in the session in step with the row
    user = db.session.get(User, user_id)
    if user is not None:
        db.session.refresh(user, attribute_names=["balance"])


def credit(user_id: int, amount: int) -> int:
    """Add amount points to the user's balance. Returns the new balance."""
    if amount < 0:
        raise ValueError("credit amount must be >= 0")
    if amount == 0:
        return _verify_non_negative(user_id)

    updated = (
        db.session.query(User)
        .filter(User.id == user_id)
        .update({User.balance: User.balance + amount}, synchronize_session=False)
    )
    if updated != 1:
        raise UserNotFound()

    _refresh(user_id)
    return _verify_non_negative(user_id)


def debit(user_id: int, amount: int) -> int:
    """
    Remove amount points from the user's balance. Returns the new balance.

    Raises InsufficientPoints without writing anything if the balance is too low.
    """
    if amount < 0:
        raise ValueError("debit amount must be >= 0")

    user = lock_user(user_id)
    if user.balance - amount < 0:
        raise InsufficientPoints(
            f"Insufficient points. Available: {user.balance}, requested: {amount}"
        )
    if amount == 0:
        return _verify_non_negative(user_id)

    updated = (
        db.session.query(User)
        .filter(User.id == user_id, User.balance >= amount)
        .update({User.balance: User.balance - amount}, synchronize_session=False)
    )
    if updated != 1:
        raise InsufficientPoints(f"Insufficient points. Requested: {amount}")

    _refresh(user_id)
    return _verify_non_negative(user_id)


def apply_delta(user_id: int, delta: int) -> int:
    """Credit a positive delta, debit a negative one."""
    if delta >= 0:
        return credit(user_id, delta)
    return debit(user_id, -delta)

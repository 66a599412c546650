# Overview: Redemption creation (reservation) and processing (deferred deduction).

"""
Redemptions happen in two steps.

create_redemption() only reserves points: the row carries redeemed=N and is
unprocessed, and the balance is untouched. The available balance used to
accept further redemptions is balance minus everything still reserved, and
it is computed with the member's row locked so two concurrent requests
cannot both spend the same reservation headroom.

process_redemption() is the cashier handing over the reward: it re-checks the
live balance (it may have dropped since creation), deducts redeemed and sets
processed_by exactly once.
"""

from __future__ import annotations

from flask import current_app

from ..errors import (
    AlreadyProcessed,
    AuthorizationError,
    InsufficientPoints,
    NotARedemption,
    TransactionNotFound,
)
from ..extensions import db
from ..models import RedemptionTransaction, Transaction
from ..permissions import Role, require_role
from ..time_utils import utcnow
from ..validation import RedemptionRequest
from . import balance_service
from .concurrency import atomic, lock_for_update
from .users_service import find_user_by_id


def create_redemption(request: RedemptionRequest, acting_user_id: int) -> dict:
    def _op():
        user = find_user_by_id(acting_user_id)
        if not user.verified:
            raise AuthorizationError("User is not verified")

        locked = balance_service.lock_user(user.id)
        pending = balance_service.pending_redemption_total(user.id)
        available = locked.balance - pending
        if available < request.amount:
            raise InsufficientPoints(
                f"Insufficient points. Available: {available} "
                f"(balance {locked.balance}, pending redemptions {pending}), requested: {request.amount}"
            )

        txn = RedemptionTransaction(
            amount=-request.amount,
            redeemed=request.amount,
            owner_user_id=user.id,
            created_by_user_id=user.id,
            remark=request.remark,
            credit_applied=False,
        )
        db.session.add(txn)
        db.session.flush()
        current_app.logger.info(
            "Redemption %s: %s reserved %s points", txn.id, user.utorid, request.amount
        )

        return {
            "id": txn.id,
            "utorid": user.utorid,
            "type": txn.kind,
            "processedBy": None,
            "amount": request.amount,
            "remark": txn.remark,
            "createdBy": user.utorid,
        }

    return atomic(_op)


def process_redemption(transaction_id: int, acting_user_id: int) -> dict:
    def _op():
        processor = find_user_by_id(acting_user_id)
        require_role(processor, Role.CASHIER, "Unauthorized to process redemptions")

        txn = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
        if not txn:
            raise TransactionNotFound()
        if not isinstance(txn, RedemptionTransaction):
            raise NotARedemption()
        if txn.is_processed:
            raise AlreadyProcessed()

        owner = balance_service.lock_user(txn.owner_user_id)
        if owner.balance < txn.redeemed:
            raise InsufficientPoints(
                f"Insufficient points. Available: {owner.balance}, redemption: {txn.redeemed}"
            )

        txn.processed_by_user_id = processor.id
        txn.processed_at = utcnow()
        txn.credit_applied = True
        # Version bump: a concurrent processor of the same row fails here
        db.session.flush()

        balance_service.debit(owner.id, txn.redeemed)
        current_app.logger.info(
            "Redemption %s processed by %s: %s points deducted from %s",
            txn.id, processor.utorid, txn.redeemed, owner.utorid,
        )

        return {
            "id": txn.id,
            "utorid": owner.utorid,
            "type": txn.kind,
            "processedBy": processor.utorid,
            "redeemed": txn.redeemed,
            "remark": txn.remark,
            "createdBy": txn.created_by.utorid,
        }

    return atomic(_op)

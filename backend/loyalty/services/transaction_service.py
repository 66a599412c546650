# Overview: Transaction Factory for purchases, adjustments and transfers, plus ledger queries.

"""
Transaction creation.

Each create_* operation runs as one unit of work (concurrency.atomic):

1. resolve and check the acting user, the target user(s) and any referenced
   rows; lock the users whose balance will change
2. raise a typed error if anything is off, before any write
3. write the ledger row(s), move points through balance_service, record
   promotion usage
4. return the summary dict the API sends back

A failure anywhere in 3 rolls the whole unit back.
"""

from __future__ import annotations

from flask import current_app

from ..errors import (
    AuthorizationError,
    InsufficientPoints,
    RelatedTransactionNotFound,
    SelfTransfer,
    TransactionNotFound,
    ValidationError,
)
from ..extensions import db
from ..models import (
    AdjustmentTransaction,
    PurchaseTransaction,
    Transaction,
    TransferTransaction,
    User,
)
from ..models.transactions import TRANSACTION_KINDS
from ..permissions import Role, require_role
from ..validation import AdjustmentRequest, PurchaseRequest, TransferRequest
from . import balance_service, promotions_service
from .concurrency import atomic
from .users_service import find_user_by_handle, find_user_by_id


# =============================================================================
# PURCHASE
# =============================================================================

def create_purchase(request: PurchaseRequest, acting_user_id: int) -> dict:
    """
    Record a purchase and award its points.

    A suspicious cashier's purchase is recorded with suspicious=True and
    credit_applied=False: the points are withheld until a manager clears the
    flag. One-time promotions are consumed either way.
    """
    def _op():
        cashier = find_user_by_id(acting_user_id)
        require_role(cashier, Role.CASHIER, "Only cashiers or higher can record purchases")

        customer = find_user_by_handle(request.utorid)
        if customer.id == cashier.id:
            raise AuthorizationError("Cannot record a purchase for yourself")

        balance_service.lock_user(customer.id)

        evaluation = promotions_service.evaluate_purchase(
            request.spent_cents, request.promotion_ids, customer.id
        )
        withheld = bool(cashier.suspicious)
        points = evaluation.points_earned

        txn = PurchaseTransaction(
            amount=points,
            spent_cents=request.spent_cents,
            owner_user_id=customer.id,
            created_by_user_id=cashier.id,
            remark=request.remark,
            suspicious=withheld,
            credit_applied=not withheld,
        )
        txn.promotions = list(evaluation.applied)
        db.session.add(txn)
        db.session.flush()

        promotions_service.consume_one_time_promotions(evaluation, customer.id, txn.id)

        if withheld:
            current_app.logger.warning(
                "Purchase %s by suspicious cashier %s: %s points withheld from %s",
                txn.id, cashier.utorid, points, customer.utorid,
            )
        else:
            balance_service.credit(customer.id, points)
            current_app.logger.info(
                "Purchase %s: %s earned %s points", txn.id, customer.utorid, points
            )

        return {
            "id": txn.id,
            "utorid": customer.utorid,
            "type": txn.kind,
            "spent": txn.spent,
            "earned": 0 if withheld else points,
            "remark": txn.remark,
            "createdBy": cashier.utorid,
            "promotionIds": evaluation.promotion_ids,
        }

    return atomic(_op)


# =============================================================================
# ADJUSTMENT
# =============================================================================

def create_adjustment(request: AdjustmentRequest, acting_user_id: int) -> dict:
    """
    Apply a manager's signed correction to a user's balance.

    Adjustments are never gated by suspicion. Promotion ids are recorded for
    audit only; the amount is taken as given.
    """
    def _op():
        manager = find_user_by_id(acting_user_id)
        require_role(manager, Role.MANAGER, "Only managers can create adjustments")

        user = find_user_by_handle(request.utorid)

        related = db.session.get(Transaction, request.related_id)
        if not related:
            raise RelatedTransactionNotFound(f"Related transaction {request.related_id} not found")

        promotions = promotions_service.load_promotions(request.promotion_ids)

        locked = balance_service.lock_user(user.id)
        if locked.balance + request.amount < 0:
            raise InsufficientPoints(
                f"Insufficient points. Available: {locked.balance}, adjustment: {request.amount}"
            )

        txn = AdjustmentTransaction(
            amount=request.amount,
            related_transaction_id=related.id,
            owner_user_id=user.id,
            created_by_user_id=manager.id,
            remark=request.remark,
            credit_applied=True,
        )
        txn.promotions = promotions
        db.session.add(txn)
        db.session.flush()

        balance_service.apply_delta(user.id, request.amount)
        current_app.logger.info(
            "Adjustment %s: %+d points for %s by %s (related %s)",
            txn.id, request.amount, user.utorid, manager.utorid, related.id,
        )

        return {
            "id": txn.id,
            "utorid": user.utorid,
            "amount": txn.amount,
            "type": txn.kind,
            "relatedId": related.id,
            "remark": txn.remark,
            "promotionIds": [p.id for p in promotions],
            "createdBy": manager.utorid,
        }

    return atomic(_op)


# =============================================================================
# TRANSFER
# =============================================================================

def create_transfer(request: TransferRequest, sender_id: int) -> dict:
    """
    Move points between two members.

    Writes two rows (sender -amount, recipient +amount) that reference each
    other's owner, and moves the points, all in one unit.
    """
    def _op():
        sender = find_user_by_id(sender_id)
        if not sender.verified:
            raise AuthorizationError("Sender is not verified")

        recipient = find_user_by_handle(request.recipient_utorid)
        if recipient.id == sender.id:
            raise SelfTransfer()

        locked = balance_service.lock_users(sender.id, recipient.id)
        if locked[sender.id].balance < request.amount:
            raise InsufficientPoints(
                f"Insufficient points. Available: {locked[sender.id].balance}, requested: {request.amount}"
            )

        sent = TransferTransaction(
            amount=-request.amount,
            owner_user_id=sender.id,
            created_by_user_id=sender.id,
            counterpart_user_id=recipient.id,
            remark=request.remark,
            credit_applied=True,
        )
        received = TransferTransaction(
            amount=request.amount,
            owner_user_id=recipient.id,
            created_by_user_id=sender.id,
            counterpart_user_id=sender.id,
            remark=request.remark,
            credit_applied=True,
        )
        db.session.add_all([sent, received])
        db.session.flush()

        balance_service.debit(sender.id, request.amount)
        balance_service.credit(recipient.id, request.amount)
        current_app.logger.info(
            "Transfer %s/%s: %s points from %s to %s",
            sent.id, received.id, request.amount, sender.utorid, recipient.utorid,
        )

        return {
            "id": sent.id,
            "sender": sender.utorid,
            "recipient": recipient.utorid,
            "type": sent.kind,
            "sent": request.amount,
            "remark": sent.remark,
            "createdBy": sender.utorid,
        }

    return atomic(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_transaction(transaction_id: int) -> dict:
    txn = db.session.get(Transaction, transaction_id)
    if not txn:
        raise TransactionNotFound()
    return txn.to_dict()


def list_user_transactions(user_id: int, kind: str | None = None) -> list[dict]:
    """A member's own ledger, newest first."""
    if kind is not None and kind not in TRANSACTION_KINDS:
        raise ValidationError(f"type must be one of: {', '.join(TRANSACTION_KINDS)}")
    q = db.session.query(Transaction).filter(Transaction.owner_user_id == user_id)
    if kind is not None:
        q = q.filter(Transaction.kind == kind)
    rows = q.order_by(Transaction.created_at.desc(), Transaction.id.desc()).all()
    return [txn.to_dict() for txn in rows]


def list_transactions(
    suspicious: bool | None = None,
    kind: str | None = None,
    utorid: str | None = None,
) -> list[dict]:
    """
    Ledger-wide listing for fraud review, newest first.

    Every filter is optional; utorid matches the row owner exactly, so an
    unknown handle yields an empty list rather than an error.
    """
    if kind is not None and kind not in TRANSACTION_KINDS:
        raise ValidationError(f"type must be one of: {', '.join(TRANSACTION_KINDS)}")
    q = db.session.query(Transaction)
    if suspicious is not None:
        q = q.filter(Transaction.suspicious == suspicious)
    if kind is not None:
        q = q.filter(Transaction.kind == kind)
    if utorid is not None:
        q = q.join(User, Transaction.owner_user_id == User.id).filter(User.utorid == utorid)
    rows = q.order_by(Transaction.created_at.desc(), Transaction.id.desc()).all()
    return [txn.to_dict() for txn in rows]

# Overview: Suspicious-flag reversal; withholds or releases a transaction's points.

from __future__ import annotations

from flask import current_app

from ..errors import TransactionNotFound
from ..extensions import db
from ..models import Transaction
from ..permissions import Role, require_role
from . import balance_service
from .concurrency import atomic, lock_for_update
from .users_service import find_user_by_id


def set_suspicious(transaction_id: int, suspicious: bool, acting_user_id: int) -> dict:
    """
    Flag or clear a transaction for fraud review.

    credit_applied says whether the row's points are in the owner's balance:
    - flagging a positive, credited row claws the points back
    - clearing a positive, withheld row releases them
    Rows with amount <= 0 only change their flag. Setting the current value
    again changes nothing.
    """
    def _op():
        reviewer = find_user_by_id(acting_user_id)
        require_role(reviewer, Role.MANAGER, "Only managers can review transactions")

        txn = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
        if not txn:
            raise TransactionNotFound()

        if txn.suspicious == suspicious:
            return txn.to_dict()

        if txn.amount > 0:
            balance_service.lock_user(txn.owner_user_id)
            if suspicious and txn.credit_applied:
                balance_service.debit(txn.owner_user_id, txn.amount)
                txn.credit_applied = False
                current_app.logger.warning(
                    "Transaction %s flagged suspicious: %s points clawed back", txn.id, txn.amount
                )
            elif not suspicious and not txn.credit_applied:
                balance_service.credit(txn.owner_user_id, txn.amount)
                txn.credit_applied = True
                current_app.logger.info(
                    "Transaction %s cleared: %s points released", txn.id, txn.amount
                )

        txn.suspicious = suspicious
        db.session.flush()
        return txn.to_dict()

    return atomic(_op)

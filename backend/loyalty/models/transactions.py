from __future__ import annotations

from ..extensions import db
from .promotions import transaction_promotions
from loyalty.time_utils import to_utc_z


KIND_PURCHASE = "purchase"
KIND_ADJUSTMENT = "adjustment"
KIND_REDEMPTION = "redemption"
KIND_TRANSFER = "transfer"
KIND_EVENT = "event"

TRANSACTION_KINDS = (KIND_PURCHASE, KIND_ADJUSTMENT, KIND_REDEMPTION, KIND_TRANSFER, KIND_EVENT)


class Transaction(db.Model):
    """
    Ledger row: one point-affecting event for one user.

    Single-table hierarchy keyed on kind. Each subclass owns the columns that
    only make sense for its kind (spent_cents for purchases, redeemed for
    redemptions, ...), so e.g. a transfer never carries a spend.

    amount is the signed point delta for the owner. credit_applied records
    whether that delta is currently reflected in the owner's balance; it is
    what suspicious-flag reversal and redemption processing consult.

    IMMUTABLE except for:
    - suspicious / credit_applied (fraud review)
    - processed_by_user_id on redemptions (null -> set, exactly once)
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_owner_created", "owner_user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(16), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)

    owner_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    remark = db.Column(db.Text, nullable=False, default="")

    suspicious = db.Column(db.Boolean, nullable=False, default=False, index=True)
    credit_applied = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    owner = db.relationship("User", foreign_keys=[owner_user_id])
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    promotions = db.relationship("Promotion", secondary=transaction_promotions, lazy="selectin", order_by="Promotion.id")

    __mapper_args__ = {
        "polymorphic_on": kind,
        "version_id_col": version_id,
    }

    @property
    def related_id(self) -> int | None:
        return None

    @property
    def promotion_ids(self) -> list[int]:
        return [p.id for p in self.promotions]

    def _kind_fields(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "utorid": self.owner.utorid,
            "type": self.kind,
            "amount": self.amount,
            "suspicious": self.suspicious,
            "remark": self.remark,
            "createdBy": self.created_by.utorid,
            "createdAt": to_utc_z(self.created_at),
            "promotionIds": self.promotion_ids,
        }
        data.update(self._kind_fields())
        return data


class PurchaseTransaction(Transaction):
    spent_cents = db.Column(db.Integer, nullable=True)

    __mapper_args__ = {"polymorphic_identity": KIND_PURCHASE}

    @property
    def spent(self) -> float:
        return self.spent_cents / 100

    def _kind_fields(self) -> dict:
        return {"spent": self.spent}


class AdjustmentTransaction(Transaction):
    related_transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True)

    __mapper_args__ = {"polymorphic_identity": KIND_ADJUSTMENT}

    @property
    def related_id(self) -> int | None:
        return self.related_transaction_id

    def _kind_fields(self) -> dict:
        return {"relatedId": self.related_id}


class RedemptionTransaction(Transaction):
    redeemed = db.Column(db.Integer, nullable=True)
    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    processed_by = db.relationship("User", foreign_keys=[processed_by_user_id])

    __mapper_args__ = {"polymorphic_identity": KIND_REDEMPTION}

    @property
    def is_processed(self) -> bool:
        return self.processed_by_user_id is not None

    @property
    def related_id(self) -> int | None:
        return self.processed_by_user_id

    def _kind_fields(self) -> dict:
        return {
            "redeemed": self.redeemed,
            "relatedId": self.related_id,
            "processedBy": self.processed_by.utorid if self.processed_by else None,
        }


class TransferTransaction(Transaction):
    # Recipient on the sender's row, sender on the recipient's row
    counterpart_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    counterpart = db.relationship("User", foreign_keys=[counterpart_user_id])

    __mapper_args__ = {"polymorphic_identity": KIND_TRANSFER}

    @property
    def related_id(self) -> int | None:
        return self.counterpart_user_id

    def _kind_fields(self) -> dict:
        role = "recipient" if self.amount < 0 else "sender"
        return {
            "relatedId": self.related_id,
            role: self.counterpart.utorid if self.counterpart else None,
        }


class EventTransaction(Transaction):
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=True, index=True)

    __mapper_args__ = {"polymorphic_identity": KIND_EVENT}

    @property
    def related_id(self) -> int | None:
        return self.event_id

    def _kind_fields(self) -> dict:
        return {"relatedId": self.related_id}

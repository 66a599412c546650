from __future__ import annotations

from ..extensions import db
from loyalty.time_utils import to_utc_z


PROMOTION_KIND_AUTOMATIC = "automatic"
PROMOTION_KIND_ONE_TIME = "one-time"

PROMOTION_KINDS = (PROMOTION_KIND_AUTOMATIC, PROMOTION_KIND_ONE_TIME)


# Weak link: promotions referenced by a transaction. Never cascades.
transaction_promotions = db.Table(
    "transaction_promotions",
    db.Column("transaction_id", db.Integer, db.ForeignKey("transactions.id"), primary_key=True),
    db.Column("promotion_id", db.Integer, db.ForeignKey("promotions.id"), primary_key=True),
)


class Promotion(db.Model):
    """
    Bonus-point promotion applied to purchases.

    A promotion carries a rate (basis points of the spend, in cents), a flat
    points bonus, or both. Rates never stack: only the best rate among the
    applied promotions counts. Flat bonuses always stack.
    """
    __tablename__ = "promotions"
    __table_args__ = (
        db.CheckConstraint("rate_bps IS NOT NULL OR points IS NOT NULL", name="ck_promotions_has_bonus"),
        db.Index("ix_promotions_window", "start_time", "end_time"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    kind = db.Column(db.String(16), nullable=False, default=PROMOTION_KIND_AUTOMATIC)  # automatic, one-time

    min_spending_cents = db.Column(db.Integer, nullable=True)
    rate_bps = db.Column(db.Integer, nullable=True)  # 1000 = 0.10 extra points per cent spent
    points = db.Column(db.Integer, nullable=True)

    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_one_time(self) -> bool:
        return self.kind == PROMOTION_KIND_ONE_TIME

    @property
    def rate(self) -> float | None:
        return self.rate_bps / 10000 if self.rate_bps is not None else None

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.kind,
            "startTime": to_utc_z(self.start_time),
            "endTime": to_utc_z(self.end_time),
            "minSpending": self.min_spending_cents / 100 if self.min_spending_cents is not None else None,
            "rate": self.rate,
            "points": self.points,
        }


class PromotionUsage(db.Model):
    """
    Consumption of a one-time promotion by a user.

    UNIQUE (promotion_id, user_id): two concurrent purchases cannot both
    consume the same one-time promotion for the same user.
    """
    __tablename__ = "promotion_usages"
    __table_args__ = (
        db.UniqueConstraint("promotion_id", "user_id", name="uq_promotion_usages_promotion_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    promotion_id = db.Column(db.Integer, db.ForeignKey("promotions.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True)
    used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

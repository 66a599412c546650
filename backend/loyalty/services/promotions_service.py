# Overview: Promotion Evaluator plus promotion administration.

"""
Promotion evaluation for purchases.

Points for a purchase:
- base: 1 point per 25 cents spent, rounded half-up
- rate bonus: only the single best rate among the applied promotions,
  round(spent_cents * rate) half-up. Rates never add up.
- flat bonus: every applied points promotion, summed in full

evaluate_promotions() is pure: it takes the promotions the caller loaded and
locked inside its unit of work. Marking one-time promotions as used is done
by consume_one_time_promotions() in that same unit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    MinimumSpendingNotMet,
    PromotionAlreadyUsed,
    PromotionNotFound,
    ValidationError,
)
from ..extensions import db
from ..models import Promotion, PromotionUsage
from ..models.promotions import PROMOTION_KINDS, PROMOTION_KIND_ONE_TIME
from ..time_utils import parse_iso_datetime, utcnow


CENTS_PER_BASE_POINT = 25


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PromotionEvaluation:
    base_points: int
    rate_bonus: int
    flat_bonus: int
    applied: tuple[Promotion, ...] = ()
    one_time_to_consume: tuple[Promotion, ...] = field(default=())

    @property
    def points_earned(self) -> int:
        return self.base_points + self.rate_bonus + self.flat_bonus

    @property
    def promotion_ids(self) -> list[int]:
        return [p.id for p in self.applied]


def base_points_for(spent_cents: int) -> int:
    return round_half_up(Decimal(spent_cents) / CENTS_PER_BASE_POINT)


def evaluate_promotions(
    spent_cents: int,
    promotions: Sequence[Promotion],
    *,
    used_promotion_ids: Iterable[int] = (),
) -> PromotionEvaluation:
    """
    Compute the points a purchase earns with the given promotions applied.

    promotions must already be restricted to the ones active now.
    used_promotion_ids holds the one-time promotions this user already consumed.
    """
    if spent_cents <= 0:
        raise ValidationError("Spent amount must be a positive number")

    used = set(used_promotion_ids)
    for promotion in promotions:
        if promotion.is_one_time and promotion.id in used:
            raise PromotionAlreadyUsed(f"Promotion {promotion.id} already used")

    for promotion in promotions:
        if promotion.min_spending_cents is not None and spent_cents < promotion.min_spending_cents:
            raise MinimumSpendingNotMet(
                f"Minimum spending of ${promotion.min_spending_cents / 100:,.2f} "
                f"not met for promotion {promotion.id}"
            )

    best_rate_bps = max((p.rate_bps for p in promotions if p.rate_bps), default=0)
    rate_bonus = round_half_up(Decimal(spent_cents) * best_rate_bps / 10000) if best_rate_bps else 0
    flat_bonus = sum(p.points for p in promotions if p.points)

    return PromotionEvaluation(
        base_points=base_points_for(spent_cents),
        rate_bonus=rate_bonus,
        flat_bonus=flat_bonus,
        applied=tuple(promotions),
        one_time_to_consume=tuple(p for p in promotions if p.is_one_time),
    )


def used_promotion_ids_for(user_id: int, promotion_ids: Iterable[int]) -> set[int]:
    promotion_ids = list(promotion_ids)
    if not promotion_ids:
        return set()
    rows = (
        db.session.query(PromotionUsage.promotion_id)
        .filter(PromotionUsage.user_id == user_id, PromotionUsage.promotion_id.in_(promotion_ids))
        .all()
    )
    return {row[0] for row in rows}


def load_promotions(promotion_ids: Sequence[int]) -> list[Promotion]:
    """Resolve ids to promotions regardless of their window; all must exist."""
    if not promotion_ids:
        return []
    promotions = db.session.query(Promotion).filter(Promotion.id.in_(promotion_ids)).all()
    by_id = {p.id: p for p in promotions}
    missing = [pid for pid in promotion_ids if pid not in by_id]
    if missing:
        raise PromotionNotFound(f"Promotion not found: {', '.join(str(m) for m in missing)}")
    return [by_id[pid] for pid in promotion_ids]


def load_active_promotions(promotion_ids: Sequence[int], now: datetime | None = None) -> list[Promotion]:
    """Resolve ids to promotions whose window contains now."""
    if not promotion_ids:
        return []
    now = now or utcnow()
    promotions = (
        db.session.query(Promotion)
        .filter(
            Promotion.id.in_(promotion_ids),
            Promotion.start_time <= now,
            Promotion.end_time >= now,
        )
        .all()
    )
    by_id = {p.id: p for p in promotions}
    missing = [pid for pid in promotion_ids if pid not in by_id]
    if missing:
        raise PromotionNotFound(f"Promotion not found: {', '.join(str(m) for m in missing)}")
    return [by_id[pid] for pid in promotion_ids]


def evaluate_purchase(
    spent_cents: int,
    promotion_ids: Sequence[int],
    user_id: int,
    now: datetime | None = None,
) -> PromotionEvaluation:
    """Load, check and evaluate promotions for a purchase by user_id."""
    promotions = load_active_promotions(promotion_ids, now)
    used = used_promotion_ids_for(user_id, [p.id for p in promotions if p.is_one_time])
    return evaluate_promotions(spent_cents, promotions, used_promotion_ids=used)


def consume_one_time_promotions(evaluation: PromotionEvaluation, user_id: int, transaction_id: int) -> None:
    """
    Record one-time promotion usage. Must run in the purchase's unit of work.

    The unique (promotion, user) constraint turns a concurrent second use into
    PromotionAlreadyUsed instead of a double credit.
    """
    if not evaluation.one_time_to_consume:
        return
    for promotion in evaluation.one_time_to_consume:
        db.session.add(PromotionUsage(
            promotion_id=promotion.id,
            user_id=user_id,
            transaction_id=transaction_id,
        ))
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise PromotionAlreadyUsed() from exc


# =============================================================================
# ADMINISTRATION
# =============================================================================

def _optional_cents(value, field_name: str) -> int | None:
    if value is None:
        return None
    try:
        cents = round_half_up(Decimal(str(value)) * 100)
    except ArithmeticError:
        raise ValidationError(f"{field_name} must be a number")
    if cents < 0:
        raise ValidationError(f"{field_name} must be a positive number")
    return cents


def _optional_rate_bps(value) -> int | None:
    if value is None:
        return None
    try:
        rate = Decimal(str(value))
    except ArithmeticError:
        raise ValidationError("Rate must be a positive number")
    if not rate.is_finite() or rate <= 0:
        raise ValidationError("Rate must be a positive number")
    bps = round_half_up(rate * 10000)
    if bps <= 0:
        raise ValidationError("Rate is too small (minimum 0.0001)")
    return bps


def _optional_points(value) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("Points must be a whole number")
    if value < 0:
        raise ValidationError("Points must be a positive number")
    return value


def _as_datetime(value, field_name: str) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        parsed = parse_iso_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an ISO-8601 datetime")
    if parsed is None:
        raise ValidationError(f"{field_name} is required")
    return parsed


def create_promotion(data: dict) -> Promotion:
    """
    Create a promotion from API-shaped data.

    Keys: name, description, type, startTime, endTime, minSpending (dollars),
    rate (fraction of spend), points.
    """
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Promotion name is required")

    kind = data.get("type")
    if kind not in PROMOTION_KINDS:
        raise ValidationError('Promotion type must be either "automatic" or "one-time"')

    start_time = _as_datetime(data.get("startTime"), "startTime")
    end_time = _as_datetime(data.get("endTime"), "endTime")
    if start_time >= end_time:
        raise ValidationError("End time must be after start time")

    rate_bps = _optional_rate_bps(data.get("rate"))
    points = _optional_points(data.get("points"))
    if rate_bps is None and points is None:
        raise ValidationError("Either rate or points must be specified")

    promotion = Promotion(
        name=name,
        description=data.get("description"),
        kind=kind,
        start_time=start_time,
        end_time=end_time,
        min_spending_cents=_optional_cents(data.get("minSpending"), "minSpending"),
        rate_bps=rate_bps,
        points=points,
    )
    db.session.add(promotion)
    db.session.commit()
    current_app.logger.info("Created %s promotion %s (%s)", kind, promotion.id, name)
    return promotion


def list_active_promotions(user_id: int | None = None, now: datetime | None = None) -> list[dict]:
    """Promotions currently in their window, minus one-time ones user_id already used."""
    now = now or utcnow()
    q = db.session.query(Promotion).filter(Promotion.start_time <= now, Promotion.end_time >= now)
    promotions = q.order_by(Promotion.end_time.asc(), Promotion.id.asc()).all()
    if user_id is not None:
        used = used_promotion_ids_for(user_id, [p.id for p in promotions if p.kind == PROMOTION_KIND_ONE_TIME])
        promotions = [p for p in promotions if p.id not in used]
    return [p.to_dict() for p in promotions]

# Overview: Event award transactions; moves points from an event budget to its guests.

from __future__ import annotations

from flask import current_app

from ..errors import (
    AuthorizationError,
    EventNotFound,
    InsufficientEventPoints,
    ValidationError,
)
from ..extensions import db
from ..models import Event, EventTransaction
from ..permissions import Role, has_at_least_role
from ..validation import EventAwardRequest
from . import balance_service
from .concurrency import atomic, lock_for_update
from .users_service import find_user_by_handle, find_user_by_id


def create_event_award(event_id: int, request: EventAwardRequest, acting_user_id: int):
    """
    Award points to one guest (request.utorid) or to every guest.

    Returns one summary dict for a single guest, a list of them for all
    guests. The event budget and every guest credit change in one unit.
    """
    def _op():
        creator = find_user_by_id(acting_user_id)

        event = lock_for_update(db.session.query(Event).filter_by(id=event_id)).first()
        if not event:
            raise EventNotFound()

        if not event.is_organizer(creator.id) and not has_at_least_role(creator, Role.MANAGER):
            raise AuthorizationError("Not authorized to create event transactions")

        if request.amount > event.points_remain:
            raise InsufficientEventPoints()

        if request.awards_all_guests:
            recipients = list(event.guests)
            if not recipients:
                raise ValidationError("No guests to award points to")
        else:
            guest = find_user_by_handle(request.utorid)
            if not event.is_guest(guest.id) or event.is_organizer(guest.id):
                raise ValidationError("User is not a guest for this event")
            recipients = [guest]

        total = request.amount * len(recipients)
        if total > event.points_remain:
            raise InsufficientEventPoints(
                f"Not enough points remaining to award {len(recipients)} guests "
                f"(remaining {event.points_remain}, needed {total})"
            )

        balance_service.lock_users(*(r.id for r in recipients))

        event.points_remain = event.points_remain - total
        event.points_awarded = event.points_awarded + total

        rows = []
        for recipient in recipients:
            txn = EventTransaction(
                amount=request.amount,
                event_id=event.id,
                owner_user_id=recipient.id,
                created_by_user_id=creator.id,
                remark=request.remark,
                credit_applied=True,
            )
            db.session.add(txn)
            rows.append((txn, recipient))
        db.session.flush()

        for txn, recipient in rows:
            balance_service.credit(recipient.id, request.amount)

        current_app.logger.info(
            "Event %s awarded %s points to %s guest(s) (%s remaining)",
            event.id, request.amount, len(rows), event.points_remain,
        )

        summaries = [
            {
                "id": txn.id,
                "recipient": recipient.utorid,
                "awarded": request.amount,
                "type": txn.kind,
                "relatedId": event.id,
                "remark": txn.remark,
                "createdBy": creator.utorid,
            }
            for txn, recipient in rows
        ]
        return summaries if request.awards_all_guests else summaries[0]

    return atomic(_op)

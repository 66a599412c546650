from __future__ import annotations

from ..extensions import db


event_organizers = db.Table(
    "event_organizers",
    db.Column("event_id", db.Integer, db.ForeignKey("events.id"), primary_key=True),
    db.Column("user_id", db.Integer, db.ForeignKey("users.id"), primary_key=True),
)

event_guests = db.Table(
    "event_guests",
    db.Column("event_id", db.Integer, db.ForeignKey("events.id"), primary_key=True),
    db.Column("user_id", db.Integer, db.ForeignKey("users.id"), primary_key=True),
)


class Event(db.Model):
    """
    Event with a points budget.

    Event and RSVP management live outside the ledger; the ledger only reads
    organizers/guests and moves points from points_remain to points_awarded
    when it awards guests.
    """
    __tablename__ = "events"
    __table_args__ = (
        db.CheckConstraint("points_remain >= 0", name="ck_events_points_remain_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    location = db.Column(db.String(255), nullable=True)

    start_time = db.Column(db.DateTime, nullable=True)
    end_time = db.Column(db.DateTime, nullable=True)

    points_remain = db.Column(db.Integer, nullable=False, default=0)
    points_awarded = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    organizers = db.relationship("User", secondary=event_organizers, lazy="selectin")
    guests = db.relationship("User", secondary=event_guests, lazy="selectin", order_by="User.id")

    __mapper_args__ = {"version_id_col": version_id}

    def is_organizer(self, user_id: int) -> bool:
        return any(u.id == user_id for u in self.organizers)

    def is_guest(self, user_id: int) -> bool:
        return any(u.id == user_id for u in self.guests)

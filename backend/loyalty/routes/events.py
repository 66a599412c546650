# backend/loyalty/routes/events.py
from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth
from ..services import event_award_service
from ..validation import EventAwardRequest


events_bp = Blueprint("events", __name__, url_prefix="/events")


@events_bp.route("/<int:event_id>/transactions", methods=["POST"])
@require_auth
def create_event_transaction(event_id: int):
    """
    Award event points. Organizers of the event and managers only
    (checked by the service, since organizer status is per event).

    Request body:
    {
        "type": "event",
        "amount": int,
        "utorid": str (optional; omit to award every guest),
        "remark": str (optional)
    }
    """
    req = EventAwardRequest.from_payload(request.get_json(silent=True))
    result = event_award_service.create_event_award(event_id, req, g.current_user.id)
    return jsonify(result), 201

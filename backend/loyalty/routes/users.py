# backend/loyalty/routes/users.py
"""
Member-facing transaction routes: redemptions, transfers and the member's
own ledger.
"""
from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth
from ..services import redemption_service, transaction_service
from ..validation import RedemptionRequest, TransferRequest


users_bp = Blueprint("users", __name__, url_prefix="/users")


@users_bp.route("/me", methods=["GET"])
@require_auth
def get_me():
    return jsonify(g.current_user.to_dict())


@users_bp.route("/me/transactions", methods=["POST"])
@require_auth
def create_redemption():
    """
    Request body:
    {
        "type": "redemption",
        "amount": int,
        "remark": str (optional)
    }
    """
    req = RedemptionRequest.from_payload(request.get_json(silent=True))
    result = redemption_service.create_redemption(req, g.current_user.id)
    return jsonify(result), 201


@users_bp.route("/me/transactions", methods=["GET"])
@require_auth
def list_my_transactions():
    kind = request.args.get("type") or None
    results = transaction_service.list_user_transactions(g.current_user.id, kind)
    return jsonify({"count": len(results), "results": results})


@users_bp.route("/<string:utorid>/transactions", methods=["POST"])
@require_auth
def create_transfer(utorid: str):
    """
    Transfer points from the current user to utorid.

    Request body:
    {
        "type": "transfer",
        "amount": int,
        "remark": str (optional)
    }
    """
    req = TransferRequest.from_payload(request.get_json(silent=True), recipient_utorid=utorid)
    result = transaction_service.create_transfer(req, g.current_user.id)
    return jsonify(result), 201

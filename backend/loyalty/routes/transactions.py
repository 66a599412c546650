# backend/loyalty/routes/transactions.py
"""
Staff-facing transaction routes: purchases, adjustments, review and
redemption processing.

Ledger errors raised by the services are translated by the app-level
LedgerError handler.
"""
from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_role
from ..errors import ValidationError
from ..models.transactions import KIND_PURCHASE, KIND_ADJUSTMENT
from ..permissions import Role
from ..services import redemption_service, suspicious_service, transaction_service
from ..validation import coerce_query_flag, parse_transaction_request, PurchaseRequest


transactions_bp = Blueprint("transactions", __name__, url_prefix="/transactions")


@transactions_bp.route("", methods=["POST"])
@require_auth
@require_role(Role.CASHIER)
def create_transaction():
    """
    Create a purchase (cashier+) or an adjustment (manager+).

    Request body:
    {
        "type": "purchase" | "adjustment",
        "utorid": str,
        "spent": number (purchase),
        "amount": int (adjustment),
        "relatedId": int (adjustment),
        "promotionIds": [int] (optional),
        "remark": str (optional)
    }

    Returns:
        201: Transaction created
        400: Invalid request / insufficient points
        403: Forbidden
        404: User, promotion or related transaction not found
        409: Promotion already used
    """
    data = request.get_json(silent=True)
    req = parse_transaction_request(data, allowed=(KIND_PURCHASE, KIND_ADJUSTMENT))

    if isinstance(req, PurchaseRequest):
        result = transaction_service.create_purchase(req, g.current_user.id)
    else:
        result = transaction_service.create_adjustment(req, g.current_user.id)

    return jsonify(result), 201


@transactions_bp.route("", methods=["GET"])
@require_auth
@require_role(Role.MANAGER)
def list_transactions():
    """
    Ledger-wide listing for managers reviewing suspicious activity.

    Query params (all optional):
        suspicious: "true" | "false"
        type: transaction kind
        utorid: owner of the row
    """
    results = transaction_service.list_transactions(
        suspicious=coerce_query_flag(request.args.get("suspicious"), "suspicious"),
        kind=request.args.get("type") or None,
        utorid=request.args.get("utorid") or None,
    )
    return jsonify({"count": len(results), "results": results})


@transactions_bp.route("/<int:transaction_id>", methods=["GET"])
@require_auth
@require_role(Role.MANAGER)
def get_transaction(transaction_id: int):
    return jsonify(transaction_service.get_transaction(transaction_id))


@transactions_bp.route("/<int:transaction_id>/suspicious", methods=["PATCH"])
@require_auth
@require_role(Role.MANAGER)
def update_suspicious(transaction_id: int):
    """
    Request body: {"suspicious": bool}

    Returns the full transaction record after the change.
    """
    data = request.get_json(silent=True) or {}
    suspicious = data.get("suspicious")
    if not isinstance(suspicious, bool):
        raise ValidationError("suspicious must be a boolean")

    result = suspicious_service.set_suspicious(transaction_id, suspicious, g.current_user.id)
    return jsonify(result)


@transactions_bp.route("/<int:transaction_id>/processed", methods=["PATCH"])
@require_auth
@require_role(Role.CASHIER)
def process_redemption(transaction_id: int):
    """
    Request body: {"processed": true}
    """
    data = request.get_json(silent=True) or {}
    if data.get("processed") is not True:
        raise ValidationError("processed must be true")

    result = redemption_service.process_redemption(transaction_id, g.current_user.id)
    return jsonify(result)

# backend/loyalty/routes/auth.py
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..errors import AuthenticationError, ValidationError
from ..services import auth_service
from ..time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.route("/tokens", methods=["POST"])
def login():
    """
    Request body: {"utorid": str, "password": str}

    Returns:
        200: {"token": str, "expiresAt": str}
        400: Missing fields
        401: Invalid credentials
    """
    data = request.get_json(silent=True) or {}
    utorid = data.get("utorid")
    password = data.get("password")
    if not utorid or not password:
        raise ValidationError("utorid and password are required")

    try:
        user = auth_service.authenticate(utorid, password)
    except AuthenticationError:
        current_app.logger.info("Rejected login for %s", utorid)
        raise AuthenticationError("Invalid credentials")

    session, token = auth_service.create_session(user.id)
    return jsonify({"token": token, "expiresAt": to_utc_z(session.expires_at)})


@auth_bp.route("/tokens", methods=["DELETE"])
@require_auth
def logout():
    auth_service.revoke_session(g.auth_token)
    return "", 204

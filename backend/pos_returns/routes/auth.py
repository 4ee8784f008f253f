# Overview: Flask API routes for login/logout.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import auth_service, session_service
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Request body:
    {
        "username": "cashier",
        "password": "...",
        "store_id": 1  (optional)
    }

    Returns:
        200: {"token": ..., "user": {...}}
        400: Missing credentials
        401: Invalid credentials
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username")
        password = data.get("password")
        store_id = data.get("store_id")

        if not username or not password:
            return jsonify({"error": "username and password required"}), 400

        user = auth_service.authenticate(store_id, username, password)
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        _, token = session_service.create_session(user.id)
        return jsonify({"token": token, "user": user.to_dict()}), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(g.session_token)
        return jsonify({"message": "Logged out"}), 200
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500

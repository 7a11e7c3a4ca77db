# backend/marketpos/routes/auth.py
"""
Authentication API routes

Login exchanges email + password for an opaque bearer token.
Accounts are created by admins (POST /api/users), not by self-registration.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service, session_service
from ..services.audit_service import record_action
from ..decorators import require_auth, client_context


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not email or not password:
            return jsonify({"error": "email and password required"}), 400

        user = auth_service.authenticate(email, password)
        if not user:
            return jsonify({"error": "Invalid email or password"}), 401

        ctx = client_context()
        session, token = session_service.create_session(user_id=user.id, **ctx)
        record_action(user_id=user.id, action="LOGIN", table_name="users", record_id=user.id, **ctx)

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "message": "Login successful"
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the presented session token."""
    try:
        session_service.revoke_session(g.session_token, reason="User logout")
        record_action(
            user_id=g.current_user.id,
            action="LOGOUT",
            table_name="users",
            record_id=g.current_user.id,
            **client_context(),
        )
        return jsonify({"message": "Logged out successfully"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200

# backend/marketpos/routes/users.py
"""
User management routes.

- list: admin, manager
- create, activate/deactivate: admin
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import auth_service, session_service
from ..services.audit_service import record_action
from ..validation import ValidationError, ConflictError
from ..decorators import require_auth, require_role, client_context

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_role("admin", "manager")
def list_users():
    users = auth_service.list_users()
    return jsonify({"users": [u.to_dict() for u in users], "count": len(users)})


@users_bp.get("/profile")
@require_auth
def profile():
    return jsonify({"user": g.current_user.to_dict()})


@users_bp.post("")
@require_auth
@require_role("admin")
def create_user():
    """
    Create a new user.

    Request body: name, email, password, role (admin | manager | cashier)
    """
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.create_user(
            name=data.get("name"),
            email=data.get("email"),
            password=data.get("password"),
            role=data.get("role", "cashier"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500

    record_action(
        user_id=g.current_user.id,
        action="CREATE_USER",
        table_name="users",
        record_id=user.id,
        new_values={"name": user.name, "email": user.email, "role": user.role},
        **client_context(),
    )
    return jsonify({"user": user.to_dict()}), 201


@users_bp.patch("/<int:user_id>/status")
@require_auth
@require_role("admin")
def update_user_status(user_id: int):
    data = request.get_json(silent=True) or {}
    is_active = data.get("is_active")
    if not isinstance(is_active, bool):
        return jsonify({"error": "is_active must be a boolean"}), 400

    if user_id == g.current_user.id and not is_active:
        return jsonify({"error": "You cannot deactivate your own account"}), 400

    user = auth_service.set_user_active(user_id, is_active)
    if not user:
        return jsonify({"error": "User not found"}), 404

    if not is_active:
        session_service.revoke_all_user_sessions(user.id, reason="User deactivated")

    record_action(
        user_id=g.current_user.id,
        action="UPDATE_USER_STATUS",
        table_name="users",
        record_id=user.id,
        new_values={"is_active": user.is_active},
        **client_context(),
    )
    return jsonify({"user": user.to_dict(), "message": "User status updated successfully"})

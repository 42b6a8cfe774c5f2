# backend/d1store/routes/session.py
"""
Session routes (signed cookie role claim).

- POST /api/session/login   {email, password, role?}
- POST /api/session/logout
- GET  /api/session/current
"""

from flask import Blueprint, request, jsonify

from ..services import session_service
from ..services.session_service import SessionError


session_bp = Blueprint("session", __name__, url_prefix="/api/session")


@session_bp.post("/login")
def login_route():
    data = request.get_json(silent=True) or {}
    try:
        user = session_service.authenticate(data.get("email"), data.get("password"), data.get("role"))
    except SessionError as e:
        return jsonify({"error": str(e)}), 400
    if not user:
        return jsonify({"error": "Invalid credentials."}), 401

    session_service.start_session(user)
    return jsonify({"user": user})


@session_bp.post("/logout")
def logout_route():
    session_service.end_session()
    return jsonify({"ok": True})


@session_bp.get("/current")
def current_route():
    user = session_service.current_user()
    if not user:
        return jsonify({"authenticated": False, "user": None}), 401
    return jsonify({"authenticated": True, "user": user})

# Overview: Flask API routes for staff management and staff-facing uniform requests.

"""
Staff management routes.

- GET   /api/staff-management/staffs
- GET   /api/staff-management/staffs/<id>/limit                 cooldown + allowance view
- PATCH /api/staff-management/staffs/<id>/limit                 set allowance (admin)
- POST  /api/staff-management/staffs/<id>/uniform-request       create request
- GET   /api/staff-management/staffs/<id>/uniform-request       staff's requests
- POST  /api/staff-management/staffs/<id>/uniform-request/cancel

Request creation rejections carry a machine-readable "kind":
staff_not_found (404), uniform_limit_error (409), cooldown (429),
stock_error (409), tracking_id_error (500).
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_auth, require_role
from ..extensions import db
from ..services import request_status_service, staff_service, uniform_request_service
from ..services.request_status_service import ROLE_STAFF, RequestStatusError
from ..services.session_service import ROLE_ADMIN
from ..services.staff_service import StaffNotFound
from ..services.uniform_request_service import UniformRequestError
from ..validation import ValidationError, coerce_positive_int


staff_bp = Blueprint("staff", __name__, url_prefix="/api/staff-management")


@staff_bp.get("/staffs")
@require_auth
def list_staff_route():
    role = request.args.get("role")
    store_id = request.args.get("store_id", type=int)
    staff = staff_service.list_staff(role=role, store_id=store_id)
    return jsonify([member.to_dict() for member in staff])


@staff_bp.get("/staffs/<int:staff_id>/limit")
@require_auth
def get_limit_route(staff_id: int):
    try:
        return jsonify(uniform_request_service.get_request_eligibility(staff_id))
    except UniformRequestError as e:
        return jsonify(e.to_dict()), e.status_code


@staff_bp.patch("/staffs/<int:staff_id>/limit")
@require_role(ROLE_ADMIN)
def set_limit_route(staff_id: int):
    data = request.get_json(silent=True) or {}
    if "uniformLimit" not in data:
        return jsonify({"error": "uniformLimit is required (null clears it)"}), 400
    try:
        staff = staff_service.set_uniform_limit(staff_id, data.get("uniformLimit"))
        return jsonify({"id": staff.id, "uniformLimit": staff.uniform_limit})
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except StaffNotFound as e:
        return jsonify({"error": str(e)}), 404


@staff_bp.post("/staffs/<int:staff_id>/uniform-request")
@require_auth
def create_uniform_request_route(staff_id: int):
    data = request.get_json(silent=True) or {}
    try:
        result = uniform_request_service.create_uniform_request(
            staff_id,
            ean=data.get("ean"),
            name=data.get("name"),
            quantity=data.get("quantity"),
            notes=data.get("notes"),
        )
        return jsonify(result.to_dict()), 201
    except ValidationError as e:
        return jsonify({"error": str(e), "kind": "validation_error"}), 400
    except UniformRequestError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create uniform request")
        return jsonify({"error": "Internal server error"}), 500


@staff_bp.get("/staffs/<int:staff_id>/uniform-request")
@require_auth
def list_staff_requests_route(staff_id: int):
    try:
        staff_service.get_staff(staff_id)
    except StaffNotFound as e:
        return jsonify({"error": str(e)}), 404
    requests = uniform_request_service.list_requests_for_staff(staff_id)
    return jsonify([r.to_dict() for r in requests])


@staff_bp.post("/staffs/<int:staff_id>/uniform-request/cancel")
@require_auth
def cancel_uniform_request_route(staff_id: int):
    data = request.get_json(silent=True) or {}
    try:
        request_id = coerce_positive_int(data.get("requestId"), "requestId")
    except ValidationError:
        return jsonify({"error": "Invalid request ID."}), 400

    try:
        cancelled = request_status_service.cancel_request(
            request_id,
            actor_role=ROLE_STAFF,
            staff_id=staff_id,
        )
        return jsonify(cancelled.to_dict())
    except RequestStatusError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel uniform request")
        return jsonify({"error": "Failed to cancel request."}), 500

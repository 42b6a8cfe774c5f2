# Overview: Flask API routes for uniform requests and stock; dispatch-side lifecycle actions.

"""
Uniform routes.

- GET    /api/uniform/requests[?status=]
- GET    /api/uniform/requests/<id>            includes "actions" for the caller's role
- PATCH  /api/uniform/requests/<id>            {status?, notes?}
- POST   /api/uniform/requests/<id>/advance    next forward status
- POST   /api/uniform/requests/<id>/collect    override: mark COLLECTED
- POST   /api/uniform/requests/<id>/reorder    {reason} -> new request
- GET    /api/uniform/stock
- DELETE /api/uniform/stocks                   {ean, name} (admin)

The actor role for lifecycle checks comes from the session (g.role), never
from the request body.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..extensions import db
from ..services import request_status_service, stock_service, uniform_request_service
from ..services.request_status_service import RequestNotFoundError, RequestStatusError
from ..services.session_service import ROLE_ADMIN
from ..services.stock_service import StockItemInUseError, StockItemNotFoundError
from ..services.uniform_request_service import UniformRequestError
from ..validation import ValidationError


uniform_bp = Blueprint("uniform", __name__, url_prefix="/api/uniform")


def _with_actions(uniform_request) -> dict:
    payload = uniform_request.to_dict()
    payload["actions"] = request_status_service.available_actions(uniform_request.status, g.role)
    return payload


@uniform_bp.get("/requests")
@require_auth
def list_requests_route():
    status = request.args.get("status")
    if status:
        try:
            request_status_service.validate_status(status)
        except RequestStatusError as e:
            return jsonify(e.to_dict()), e.status_code
    rows = uniform_request_service.list_requests(status=status)
    return jsonify([r.to_dict() for r in rows])


@uniform_bp.get("/requests/<int:request_id>")
@require_auth
def get_request_route(request_id: int):
    uniform_request = uniform_request_service.get_request(request_id)
    if uniform_request is None:
        return jsonify({"error": "Not found"}), 404
    return jsonify(_with_actions(uniform_request))


@uniform_bp.patch("/requests/<int:request_id>")
@require_auth
def update_request_route(request_id: int):
    """
    Update status and/or notes.

    Status changes go through the lifecycle rules for the caller's role;
    notes can be edited in any status. Status is applied first, so a
    rejected transition leaves notes untouched.
    """
    data = request.get_json(silent=True) or {}
    if not data.get("status") and "notes" not in data:
        return jsonify({"error": "status or notes is required"}), 400

    try:
        uniform_request = None
        if data.get("status"):
            uniform_request = request_status_service.transition_request(
                request_id, str(data["status"]).upper(), actor_role=g.role
            )
        if "notes" in data:
            uniform_request = request_status_service.update_notes(request_id, data.get("notes"))
        if uniform_request is None:
            raise RequestNotFoundError("Uniform request not found.", requestId=request_id)
        return jsonify(_with_actions(uniform_request))
    except RequestStatusError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update uniform request")
        return jsonify({"error": "Internal server error"}), 500


@uniform_bp.post("/requests/<int:request_id>/advance")
@require_auth
def advance_request_route(request_id: int):
    try:
        uniform_request = request_status_service.advance_request(request_id, actor_role=g.role)
        return jsonify(_with_actions(uniform_request))
    except RequestStatusError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to advance uniform request")
        return jsonify({"error": "Internal server error"}), 500


@uniform_bp.post("/requests/<int:request_id>/collect")
@require_auth
def collect_request_route(request_id: int):
    try:
        uniform_request = request_status_service.force_collect(request_id, actor_role=g.role)
        return jsonify(_with_actions(uniform_request))
    except RequestStatusError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to mark uniform request collected")
        return jsonify({"error": "Internal server error"}), 500


@uniform_bp.post("/requests/<int:request_id>/reorder")
@require_auth
def reorder_request_route(request_id: int):
    data = request.get_json(silent=True) or {}
    try:
        result = request_status_service.reorder_request(request_id, data.get("reason"))
        return jsonify(result.to_dict()), 201
    except RequestStatusError as e:
        return jsonify(e.to_dict()), e.status_code
    except UniformRequestError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to re-order uniform request")
        return jsonify({"error": "Internal server error"}), 500


@uniform_bp.get("/stock")
@require_auth
def list_stock_route():
    threshold = current_app.config["LOW_STOCK_THRESHOLD"]
    items = stock_service.list_stock_items()
    return jsonify([
        {"ean": item.ean, "name": item.name, "qty": item.qty, "isLowStock": item.qty <= threshold}
        for item in items
    ])


@uniform_bp.delete("/stocks")
@require_role(ROLE_ADMIN)
def delete_stock_route():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON body"}), 400
    try:
        stock_service.delete_stock_item(data.get("ean"), data.get("name"))
        return jsonify({"success": True})
    except ValidationError:
        return jsonify({"error": "ean and name are required"}), 400
    except StockItemNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except StockItemInUseError as e:
        return jsonify({"error": str(e)}), 409

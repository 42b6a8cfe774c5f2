# Overview: Flask API routes for CSV imports; parses uploads and returns JSON summaries.

"""
Import Routes

POST /api/import/staff  (multipart "file")
POST /api/import/stock  (multipart "file")

Both answer 200 with a summary even when every row fails. 400 only when the
upload itself is unusable (no file, not .csv, undecodable or unparsable).
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_role
from ..extensions import db
from ..services import import_service
from ..services.import_service import ImportRejectedError
from ..services.session_service import ROLE_ADMIN


imports_bp = Blueprint("imports", __name__, url_prefix="/api/import")


def _run_upload(import_type: str):
    file = request.files.get("file")
    try:
        if file is None:
            raise ImportRejectedError("No file uploaded", import_type)
        import_service.check_upload_name(file.filename, import_type)
        try:
            text = file.stream.read().decode("utf-8-sig")
        except UnicodeDecodeError:
            raise ImportRejectedError(import_service.PARSE_FAILED, import_type)
        result = import_service.run_import(import_type, file.filename, text)
        return jsonify(result.to_dict()), 200
    except ImportRejectedError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to import %s CSV", import_type)
        return jsonify({"error": "Internal server error"}), 500


@imports_bp.post("/staff")
@require_role(ROLE_ADMIN)
def import_staff_route():
    return _run_upload("staff")


@imports_bp.post("/stock")
@require_role(ROLE_ADMIN)
def import_stock_route():
    return _run_upload("stock")

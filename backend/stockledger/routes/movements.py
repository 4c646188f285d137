# Overview: Flask API routes for the movement log; history queries and ledger verification.

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start_date/end_date filtering is inclusive on occurred_at.
"""

from flask import Blueprint, current_app, jsonify, request

from ..services import movement_log
from ..services.errors import LedgerError
from ..validation import ValidationError, coerce_datetime, coerce_int, coerce_str, pagination

movements_bp = Blueprint("movements", __name__, url_prefix="/api/movements")


@movements_bp.get("")
def list_movements():
    try:
        limit, offset = pagination(request.args, max_page_size=current_app.config["API_MAX_PAGE_SIZE"])
        total, rows = movement_log.list_movements(
            product_id=coerce_int("product_id", request.args.get("product_id"), required=False),
            lot_id=coerce_int("lot_id", request.args.get("lot_id"), required=False),
            location_id=coerce_int("location_id", request.args.get("location_id"), required=False),
            movement_type=coerce_str("movement_type", request.args.get("movement_type")),
            reference_type=coerce_str("reference_type", request.args.get("reference_type")),
            reference_id=coerce_int("reference_id", request.args.get("reference_id"), required=False),
            start=coerce_datetime("start_date", request.args.get("start_date")),
            end=coerce_datetime("end_date", request.args.get("end_date")),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "items": [m.to_dict() for m in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@movements_bp.get("/verify")
def verify_ledger():
    """
    Rebuild every balance from the movement log and report mismatches.

    Returns:
        200: {"consistent": bool, "problems": [...]}
    """
    try:
        product_id = coerce_int("product_id", request.args.get("product_id"), required=False)
        problems = movement_log.verify_ledger(product_id=product_id)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    if problems:
        current_app.logger.warning("Ledger verification found %s inconsistent balance(s)", len(problems))
    return jsonify({"consistent": not problems, "problems": problems}), 200


@movements_bp.get("/<int:movement_id>")
def get_movement(movement_id: int):
    movement = movement_log.get_movement(movement_id)
    if movement is None:
        return jsonify({"error": "Stock movement not found"}), 404
    return jsonify(movement.to_dict()), 200

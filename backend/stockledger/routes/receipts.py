# Overview: Flask API route that applies a finalized receipt to the ledger.

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..services import receiving_service
from ..services.errors import LedgerError
from ..validation import ValidationError, coerce_bool, coerce_datetime, coerce_int, coerce_str, require_payload

receipts_bp = Blueprint("receipts", __name__, url_prefix="/api/receipts")


def _parse_line(index: int, raw) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError(f"lines[{index}] must be an object")
    return {
        "product_id": coerce_int(f"lines[{index}].product_id", raw.get("product_id")),
        "quantity": coerce_int(f"lines[{index}].quantity", raw.get("quantity")),
        "location_id": coerce_int(f"lines[{index}].location_id", raw.get("location_id")),
        "lot_number": coerce_str(f"lines[{index}].lot_number", raw.get("lot_number")),
        "expiration_date": coerce_str(f"lines[{index}].expiration_date", raw.get("expiration_date")),
        "is_break_bulk": coerce_bool(f"lines[{index}].is_break_bulk", raw.get("is_break_bulk")),
    }


@receipts_bp.post("/<int:receipt_id>/receive")
def receive(receipt_id: int):
    """
    Apply a receipt: every line lands or none does.

    Request body:
    {
        "lines": [
            {
                "product_id": int,
                "quantity": int,
                "location_id": int,
                "lot_number": str (optional),
                "expiration_date": "YYYY-MM-DD" (optional),
                "is_break_bulk": bool (optional)
            }
        ],
        "actor_id": int (optional),
        "occurred_at": ISO-8601 (optional)
    }

    Returns:
        201: Inbound movements created
        400: Invalid request
        404: Unknown product or location
        409: Receipt already received, or keying scheme conflict
    """
    try:
        data = require_payload(request.get_json(silent=True))
        raw_lines = data.get("lines")
        if not isinstance(raw_lines, list) or not raw_lines:
            raise ValidationError("lines must be a non-empty list")
        lines = [_parse_line(i, raw) for i, raw in enumerate(raw_lines)]

        movements = receiving_service.receive(
            lines,
            reference_id=receipt_id,
            actor_id=coerce_int("actor_id", data.get("actor_id"), required=False),
            occurred_at=coerce_datetime("occurred_at", data.get("occurred_at")),
        )
        return jsonify({
            "receipt_id": receipt_id,
            "movements": [m.to_dict() for m in movements],
        }), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to receive receipt")
        return jsonify({"error": "Internal server error"}), 500

# Overview: Flask API routes for stock takes (physical counts).

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..services import stock_take_service
from ..services.errors import LedgerError
from ..validation import ValidationError, coerce_int, coerce_str, pagination, require_payload

stock_takes_bp = Blueprint("stock_takes", __name__, url_prefix="/api/stock-takes")


def _ledger_error(e: LedgerError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


def _unexpected(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@stock_takes_bp.post("/initiate")
def initiate():
    """
    Create a stock take and snapshot expected quantities.

    Request body (all optional):
    {
        "location_id": int,
        "product_id": int,
        "initiated_by": int,
        "notes": str
    }

    Returns:
        201: Stock take with items
        404: Unknown location or product filter
    """
    try:
        data = require_payload(request.get_json(silent=True))
        take = stock_take_service.initiate(
            location_id=coerce_int("location_id", data.get("location_id"), required=False),
            product_id=coerce_int("product_id", data.get("product_id"), required=False),
            initiated_by=coerce_int("initiated_by", data.get("initiated_by"), required=False),
            notes=coerce_str("notes", data.get("notes")),
        )
        return jsonify(stock_take_service.get_stock_take_summary(take.id)), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        return _unexpected("Failed to initiate stock take")


@stock_takes_bp.get("")
def list_stock_takes():
    try:
        limit, offset = pagination(request.args, max_page_size=current_app.config["API_MAX_PAGE_SIZE"])
        total, rows = stock_take_service.list_stock_takes(
            coerce_str("status", request.args.get("status")),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "items": [t.to_dict() for t in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@stock_takes_bp.get("/<int:stock_take_id>")
def get_stock_take(stock_take_id: int):
    try:
        return jsonify(stock_take_service.get_stock_take_summary(stock_take_id)), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@stock_takes_bp.post("/<int:stock_take_id>/items")
def add_item(stock_take_id: int):
    """Body: {"location_id": int, "product_id": int, "lot_id": int (optional)}."""
    try:
        data = require_payload(request.get_json(silent=True))
        item = stock_take_service.add_item(
            stock_take_id,
            coerce_int("location_id", data.get("location_id")),
            coerce_int("product_id", data.get("product_id")),
            coerce_int("lot_id", data.get("lot_id"), required=False),
        )
        return jsonify(item.to_dict()), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        return _unexpected("Failed to add stock take item")


@stock_takes_bp.post("/<int:stock_take_id>/start")
def start(stock_take_id: int):
    try:
        take = stock_take_service.start(stock_take_id)
        return jsonify(take.to_dict()), 200
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        return _unexpected("Failed to start stock take")


@stock_takes_bp.post("/items/<int:item_id>/count")
def submit_count(item_id: int):
    """
    Record a physical count.

    Request body:
    {
        "counted_quantity": int,
        "counted_by": int (optional),
        "reason": str (optional)
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        item = stock_take_service.submit_count(
            item_id,
            coerce_int("counted_quantity", data.get("counted_quantity")),
            counted_by=coerce_int("counted_by", data.get("counted_by"), required=False),
            reason=coerce_str("reason", data.get("reason"), max_length=255),
        )
        return jsonify(item.to_dict()), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        return _unexpected("Failed to submit count")


@stock_takes_bp.post("/<int:stock_take_id>/process")
def process(stock_take_id: int):
    """
    Overwrite on-hand with the counts and post Adjustment movements.

    Returns:
        200: Stock take summary (Completed)
        404: Stock take or balance row not found
        409: Wrong status, uncounted items, or count below allocated
    """
    try:
        data = require_payload(request.get_json(silent=True))
        take = stock_take_service.process(
            stock_take_id,
            actor_id=coerce_int("actor_id", data.get("actor_id"), required=False),
        )
        return jsonify(stock_take_service.get_stock_take_summary(take.id)), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        return _unexpected("Failed to process stock take")


@stock_takes_bp.post("/<int:stock_take_id>/verify")
def verify(stock_take_id: int):
    try:
        data = require_payload(request.get_json(silent=True))
        take = stock_take_service.verify(
            stock_take_id,
            verified_by=coerce_int("verified_by", data.get("verified_by"), required=False),
        )
        return jsonify(take.to_dict()), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        return _unexpected("Failed to verify stock take")


@stock_takes_bp.post("/<int:stock_take_id>/cancel")
def cancel(stock_take_id: int):
    """Body: {"reason": str}."""
    try:
        data = require_payload(request.get_json(silent=True))
        take = stock_take_service.cancel(
            stock_take_id,
            coerce_str("reason", data.get("reason"), required=True),
        )
        return jsonify(take.to_dict()), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        return _unexpected("Failed to cancel stock take")


@stock_takes_bp.get("/<int:stock_take_id>/adjustments")
def adjustments(stock_take_id: int):
    try:
        movements = stock_take_service.adjustment_movements(stock_take_id)
        return jsonify({"items": [m.to_dict() for m in movements]}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code

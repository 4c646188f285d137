# Overview: Flask API routes for balance queries, allocation, transfer, adjustment and issue.

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..services import adjustment_service, allocation_service, ledger_store
from ..services.errors import LedgerError
from ..validation import (
    ValidationError,
    coerce_bool,
    coerce_datetime,
    coerce_int,
    coerce_str,
    pagination,
    require_payload,
)

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("")
def list_balances():
    """
    List balance rows.

    Query params: product_id, location_id, lot_id, lot_number, available_only,
    include_empty (default true), limit, offset.
    """
    try:
        limit, offset = pagination(request.args, max_page_size=current_app.config["API_MAX_PAGE_SIZE"])
        total, rows = ledger_store.list_balances(
            product_id=coerce_int("product_id", request.args.get("product_id"), required=False),
            location_id=coerce_int("location_id", request.args.get("location_id"), required=False),
            lot_id=coerce_int("lot_id", request.args.get("lot_id"), required=False),
            lot_number=coerce_str("lot_number", request.args.get("lot_number"), max_length=64),
            only_available=coerce_bool("available_only", request.args.get("available_only")),
            include_empty=coerce_bool("include_empty", request.args.get("include_empty"), default=True),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "items": [row.to_dict() for row in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@inventory_bp.get("/<int:balance_id>")
def get_balance(balance_id: int):
    balance = ledger_store.get_balance_by_id(balance_id)
    if balance is None:
        return jsonify({"error": "Inventory balance not found"}), 404
    return jsonify(balance.to_dict()), 200


@inventory_bp.post("/allocate")
def allocate():
    """
    Reserve stock for outbound demand, oldest stock first.

    Request body:
    {
        "product_id": int,
        "quantity": int,
        "reference_type": str (optional),
        "reference_id": int (optional)
    }

    Returns:
        200: Fully allocated
        400: Invalid request
        404: Unknown product
        409: Shortfall; the partial reservation in the body is kept
    """
    try:
        data = require_payload(request.get_json(silent=True))
        result = allocation_service.allocate(
            coerce_int("product_id", data.get("product_id")),
            coerce_int("quantity", data.get("quantity")),
            reference_type=coerce_str("reference_type", data.get("reference_type"), max_length=50),
            reference_id=coerce_int("reference_id", data.get("reference_id"), required=False),
        )
        if result.shortfall:
            return jsonify({
                "error": "Insufficient stock to allocate the full quantity",
                "kind": "InsufficientStock",
                "allocation": result.to_dict(),
            }), 409
        return jsonify({"allocation": result.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to allocate stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/<int:balance_id>/deallocate")
def deallocate(balance_id: int):
    """Release part of a reservation. Body: {"quantity": int}."""
    try:
        data = require_payload(request.get_json(silent=True))
        balance = allocation_service.deallocate(balance_id, coerce_int("quantity", data.get("quantity")))
        return jsonify(balance.to_dict()), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to deallocate stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/transfer")
def transfer():
    """
    Move unallocated stock between locations.

    Request body:
    {
        "product_id": int,
        "lot_id": int (optional; omit for break-bulk stock),
        "from_location_id": int,
        "to_location_id": int,
        "quantity": int,
        "reason": str (optional),
        "actor_id": int (optional),
        "reference_type": str (optional),
        "reference_id": int (optional),
        "occurred_at": ISO-8601 (optional)
    }

    Returns:
        201: Transfer movement
        400: Invalid request
        404: Missing source row or unknown destination
        409: Insufficient stock
    """
    try:
        data = require_payload(request.get_json(silent=True))
        movement = allocation_service.transfer(
            coerce_int("product_id", data.get("product_id")),
            coerce_int("lot_id", data.get("lot_id"), required=False),
            coerce_int("from_location_id", data.get("from_location_id")),
            coerce_int("to_location_id", data.get("to_location_id")),
            coerce_int("quantity", data.get("quantity")),
            actor_id=coerce_int("actor_id", data.get("actor_id"), required=False),
            reason=coerce_str("reason", data.get("reason"), max_length=255),
            reference_type=coerce_str("reference_type", data.get("reference_type"), max_length=50),
            reference_id=coerce_int("reference_id", data.get("reference_id"), required=False),
            occurred_at=coerce_datetime("occurred_at", data.get("occurred_at")),
        )
        return jsonify(movement.to_dict()), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to transfer stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/adjust")
def adjust():
    """
    Manual on-hand correction.

    Request body:
    {
        "product_id": int,
        "lot_id": int (optional),
        "location_id": int,
        "quantity_delta": int (non-zero, signed),
        "reason": str,
        "actor_id": int (optional)
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        movement = adjustment_service.adjust(
            coerce_int("product_id", data.get("product_id")),
            coerce_int("lot_id", data.get("lot_id"), required=False),
            coerce_int("location_id", data.get("location_id")),
            coerce_int("quantity_delta", data.get("quantity_delta")),
            coerce_str("reason", data.get("reason"), required=True, max_length=255),
            actor_id=coerce_int("actor_id", data.get("actor_id"), required=False),
            occurred_at=coerce_datetime("occurred_at", data.get("occurred_at")),
        )
        return jsonify(movement.to_dict()), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/<int:balance_id>/issue")
def issue(balance_id: int):
    """
    Ship allocated units. Body: {"quantity": int, "reference_id": int?, "actor_id": int?}.
    """
    try:
        data = require_payload(request.get_json(silent=True))
        movement = allocation_service.issue(
            balance_id,
            coerce_int("quantity", data.get("quantity")),
            actor_id=coerce_int("actor_id", data.get("actor_id"), required=False),
            reference_id=coerce_int("reference_id", data.get("reference_id"), required=False),
            occurred_at=coerce_datetime("occurred_at", data.get("occurred_at")),
        )
        return jsonify(movement.to_dict()), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to issue stock")
        return jsonify({"error": "Internal server error"}), 500

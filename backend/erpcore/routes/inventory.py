# Overview: Flask API routes for the inventory ledger; parses input and returns JSON responses.

from flask import Blueprint, jsonify, g

from ..errors import CoreError
from ..services import inventory_service
from ..decorators import require_principal
from .errors import error_response, internal_error, json_body, limit_arg


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/<product_id>/restock")
@require_principal
def restock_route(product_id: str):
    """Body: {quantity: int > 0, note?}"""
    try:
        data = json_body()
        movement = inventory_service.restock(
            g.principal,
            product_id,
            data.get("quantity"),
            note=data.get("note"),
        )
        return jsonify({"movement": movement.to_dict()}), 201
    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to restock product")


@inventory_bp.get("/<product_id>/movements")
@require_principal
def list_movements_route(product_id: str):
    try:
        movements = inventory_service.list_movements(g.principal, product_id, limit=limit_arg(200, 1000))
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list movements")

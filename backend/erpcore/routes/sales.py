# Overview: Flask API routes for sales; parses input and returns JSON responses.

"""Sales API routes"""

from flask import Blueprint, request, jsonify, g

from ..errors import CoreError, InvalidRequest
from ..services import sales_service, invoice_service
from ..services.sales_service import SaleItemRequest
from ..decorators import require_principal
from .errors import error_response, internal_error, json_body, limit_arg


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def parse_items(data: dict) -> list[SaleItemRequest]:
    items = data.get("items")
    if not isinstance(items, list):
        raise InvalidRequest("items must be a list")
    return [SaleItemRequest.from_dict(item) for item in items]


@sales_bp.post("")
@require_principal
def create_sale_route():
    """
    Create a completed sale and take its items out of stock.

    Body: {customer_id, items: [{product_id, quantity, unit_price_cents,
    sat_product_key?, sat_unit_key?, description?}], notes?}
    """
    try:
        data = json_body()
        customer_id = data.get("customer_id")
        if not customer_id:
            return jsonify({"error": "customer_id required"}), 400

        sale = sales_service.create_sale(
            g.principal,
            customer_id,
            parse_items(data),
            notes=data.get("notes"),
        )
        return jsonify({"sale": sale.to_dict(include_items=True)}), 201

    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create sale")


@sales_bp.get("")
@require_principal
def list_sales_route():
    try:
        sales = sales_service.list_sales(
            g.principal,
            status=request.args.get("status"),
            limit=limit_arg(),
        )
        return jsonify({"sales": [s.to_dict() for s in sales]}), 200
    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list sales")


@sales_bp.get("/<sale_id>")
@require_principal
def get_sale_route(sale_id: str):
    try:
        sale = sales_service.get_sale(g.principal, sale_id)
        return jsonify({"sale": sale.to_dict(include_items=True)}), 200
    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to get sale")


@sales_bp.get("/<sale_id>/preview")
@require_principal
def preview_sale_route(sale_id: str):
    """Invoice projection of a sale with fiscal validation results."""
    try:
        preview = invoice_service.preview_sale(
            g.principal,
            sale_id,
            payment_method=request.args.get("payment_method", "PUE"),
            payment_form=request.args.get("payment_form", "01"),
            cfdi_use=request.args.get("cfdi_use"),
        )
        return jsonify(preview), 200
    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to preview sale")

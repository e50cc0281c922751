# Overview: Flask API routes for quotations; parses input and returns JSON responses.

from flask import Blueprint, jsonify, g

from ..errors import CoreError, InvalidRequest
from ..services import quotation_service
from ..decorators import require_principal
from ..time_utils import parse_iso_datetime
from .errors import error_response, internal_error, json_body
from .sales import parse_items


quotations_bp = Blueprint("quotations", __name__, url_prefix="/api/quotations")


@quotations_bp.post("")
@require_principal
def create_quotation_route():
    try:
        data = json_body()
        customer_id = data.get("customer_id")
        if not customer_id:
            return jsonify({"error": "customer_id required"}), 400

        try:
            expiry_date = parse_iso_datetime(data.get("expiry_date"))
        except (TypeError, ValueError, AttributeError):
            raise InvalidRequest("expiry_date must be an ISO-8601 datetime", details={"expiry_date": data.get("expiry_date")})

        quotation = quotation_service.create_quotation(
            g.principal,
            customer_id,
            parse_items(data),
            expiry_date=expiry_date,
            notes=data.get("notes"),
        )
        return jsonify({"quotation": quotation.to_dict(include_items=True)}), 201

    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create quotation")


@quotations_bp.get("/<quotation_id>")
@require_principal
def get_quotation_route(quotation_id: str):
    try:
        quotation = quotation_service.get_quotation(g.principal, quotation_id)
        return jsonify({"quotation": quotation.to_dict(include_items=True)}), 200
    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to get quotation")


@quotations_bp.post("/<quotation_id>/status")
@require_principal
def set_quotation_status_route(quotation_id: str):
    """Body: {status: accepted|rejected|expired}"""
    try:
        data = json_body()
        status = data.get("status")
        if not status:
            return jsonify({"error": "status required"}), 400
        quotation = quotation_service.set_quotation_status(g.principal, quotation_id, status)
        return jsonify({"quotation": quotation.to_dict()}), 200
    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to change quotation status")


@quotations_bp.post("/<quotation_id>/convert")
@require_principal
def convert_quotation_route(quotation_id: str):
    try:
        sale = quotation_service.convert_quotation(g.principal, quotation_id)
        return jsonify({"sale": sale.to_dict(include_items=True)}), 201
    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to convert quotation")

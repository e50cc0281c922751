# Overview: Flask API routes for invoices; parses input and returns JSON responses.

"""
Invoice API routes

Status codes follow the error taxonomy: 422 when fiscal validation blocks a
stamp, 202 when a cancellation awaits receiver acceptance, 503 when the PAC
is unavailable (local state unchanged).
"""

from flask import Blueprint, request, jsonify, g

from ..errors import CoreError
from ..services import invoice_service, ledger_service
from ..decorators import require_principal
from .errors import error_response, internal_error, json_body, limit_arg


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.post("")
@require_principal
def create_invoice_route():
    """Body: {sale_id, payment_method?, payment_form?, cfdi_use?}"""
    try:
        data = json_body()
        sale_id = data.get("sale_id")
        if not sale_id:
            return jsonify({"error": "sale_id required"}), 400

        invoice = invoice_service.create_draft(
            g.principal,
            sale_id,
            payment_method=data.get("payment_method") or "PUE",
            payment_form=data.get("payment_form") or "01",
            cfdi_use=data.get("cfdi_use"),
        )
        return jsonify({"invoice": invoice.to_dict(include_items=True)}), 201

    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create invoice")


@invoices_bp.get("")
@require_principal
def list_invoices_route():
    try:
        invoices = invoice_service.list_invoices(
            g.principal,
            status=request.args.get("status"),
            limit=limit_arg(),
        )
        return jsonify({"invoices": [i.to_dict() for i in invoices]}), 200
    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list invoices")


@invoices_bp.get("/<invoice_id>")
@require_principal
def get_invoice_route(invoice_id: str):
    try:
        invoice = invoice_service.get_invoice(g.principal, invoice_id)
        return jsonify({"invoice": invoice.to_dict(include_items=True)}), 200
    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to get invoice")


@invoices_bp.get("/<invoice_id>/preview")
@require_principal
def preview_invoice_route(invoice_id: str):
    try:
        return jsonify(invoice_service.preview_invoice(g.principal, invoice_id)), 200
    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to preview invoice")


@invoices_bp.get("/<invoice_id>/validation")
@require_principal
def validate_invoice_route(invoice_id: str):
    try:
        report = invoice_service.validate_invoice(g.principal, invoice_id)
        return jsonify(report.to_dict()), 200
    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to validate invoice")


@invoices_bp.get("/<invoice_id>/events")
@require_principal
def list_invoice_events_route(invoice_id: str):
    """Audit trail of the invoice, oldest first."""
    try:
        invoice = invoice_service.get_invoice(g.principal, invoice_id)
        events = ledger_service.list_events(
            g.principal.company_id,
            entity_type="invoice",
            entity_id=invoice.id,
            limit=limit_arg(200, 1000),
        )
        return jsonify({"events": [e.to_dict() for e in events]}), 200
    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list invoice events")


@invoices_bp.post("/<invoice_id>/stamp")
@require_principal
def stamp_invoice_route(invoice_id: str):
    try:
        invoice = invoice_service.stamp(g.principal, invoice_id)
        return jsonify({"invoice": invoice.to_dict(include_items=True)}), 200
    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to stamp invoice")


@invoices_bp.post("/<invoice_id>/cancel")
@require_principal
def cancel_invoice_route(invoice_id: str):
    """Body: {motive: 01-04, substitute_uuid? (required for 01)}"""
    try:
        data = json_body()
        motive = data.get("motive")
        if not motive:
            return jsonify({"error": "motive required"}), 400
        invoice = invoice_service.cancel(
            g.principal,
            invoice_id,
            str(motive),
            substitute_uuid=data.get("substitute_uuid"),
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to cancel invoice")


@invoices_bp.delete("/<invoice_id>")
@require_principal
def discard_invoice_route(invoice_id: str):
    """Discard a pending draft."""
    try:
        invoice_service.discard_draft(g.principal, invoice_id)
        return "", 204
    except CoreError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to discard invoice")

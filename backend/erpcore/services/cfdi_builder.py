# Overview: Builds the CFDI request document sent to the certification provider.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from urllib.parse import urlencode

from ..fiscal import (
    CustomerFiscalInfo,
    FiscalProfile,
    default_cfdi_use,
    expedition_place,
)

SAT_VERIFICATION_URL = "https://verificacfdi.facturaelectronica.sat.gob.mx/default.aspx"

CFDI_TYPE_INCOME = "I"
EXPORTATION_NOT_APPLICABLE = "01"
TAX_OBJECT_TAXABLE = "02"
DEFAULT_UNIT_NAME = "Pieza"
GENERIC_RECEIVER_NAME = "PUBLICO EN GENERAL"


def money(cents: int) -> float:
    return float(Decimal(cents) / 100)


def rate(bps: int) -> float:
    return float(Decimal(bps) / 10000)


def _receiver(info: CustomerFiscalInfo, issuer: FiscalProfile) -> dict:
    if info.is_generic:
        return {
            "Rfc": info.rfc,
            "Name": GENERIC_RECEIVER_NAME,
            "CfdiUse": info.cfdi_use,
            "FiscalRegime": info.tax_regime,
            "TaxZipCode": info.postal_code or issuer.postal_code,
        }
    return {
        "Rfc": info.rfc,
        "Name": info.name,
        "CfdiUse": info.cfdi_use,
        "FiscalRegime": info.tax_regime,
        "TaxZipCode": info.postal_code,
    }


def _item_taxes(line) -> list[dict]:
    taxes = []
    if line.ieps_rate_bps:
        taxes.append({
            "Name": "IEPS",
            "Rate": rate(line.ieps_rate_bps),
            "Base": money(line.subtotal_cents),
            "Total": money(line.ieps_cents),
            "IsRetention": False,
            "IsFederalTax": True,
        })
    taxes.append({
        "Name": "IVA",
        "Rate": rate(line.iva_rate_bps),
        "Base": money(line.subtotal_cents + line.ieps_cents),
        "Total": money(line.iva_cents),
        "IsRetention": False,
        "IsFederalTax": True,
    })
    return taxes


def _item(line) -> dict:
    sale_item = line.sale_item
    product = sale_item.product
    item = {
        "Quantity": line.quantity,
        "ProductCode": sale_item.effective_product_key,
        "UnitCode": sale_item.effective_unit_key,
        "Unit": (product.sale_unit if product else None) or DEFAULT_UNIT_NAME,
        "Description": sale_item.description or (product.name if product else None) or "Producto o servicio",
        "UnitPrice": money(line.unit_price_cents),
        "Subtotal": money(line.subtotal_cents),
        "TaxObject": TAX_OBJECT_TAXABLE,
        "Taxes": _item_taxes(line),
        "Total": money(line.total_cents),
    }
    if product is not None and product.sku:
        item["IdentificationNumber"] = product.sku
    return item


def build_cfdi_payload(invoice, *, issued_at: datetime) -> dict:
    """
    Request body for a CFDI 4.0 income document.

    ``invoice`` must have company, customer and items (with sale_item and
    product) loaded. Amounts are converted from cents at the boundary only.
    Raises InvalidRequest when the issuer or receiver fiscal data is incomplete.
    """
    customer = invoice.customer
    issuer = FiscalProfile.from_company(invoice.company)
    info = CustomerFiscalInfo.from_customer(
        customer,
        cfdi_use=invoice.cfdi_use or customer.cfdi_use or default_cfdi_use(customer.tax_regime),
    )

    payload = {
        "NameId": "1",
        "CfdiType": CFDI_TYPE_INCOME,
        "Currency": invoice.currency,
        "ExpeditionPlace": expedition_place(info.rfc, issuer.postal_code, info.postal_code),
        "PaymentForm": invoice.payment_form,
        "PaymentMethod": invoice.payment_method,
        "Exportation": EXPORTATION_NOT_APPLICABLE,
        "Issuer": {
            "Rfc": issuer.rfc,
            "Name": issuer.legal_name,
            "FiscalRegime": issuer.tax_regime,
        },
        "Receiver": _receiver(info, issuer),
        "Items": [_item(line) for line in invoice.items],
    }

    if info.is_generic:
        # Sales to the general public are reported as a daily global invoice
        payload["GlobalInformation"] = {
            "Periodicity": "01",
            "Months": f"{issued_at.month:02d}",
            "Year": str(issued_at.year),
        }
    return payload


def verification_url(*, uuid: str, issuer_rfc: str, receiver_rfc: str, total_cents: int, cfdi_sign: str | None) -> str:
    """SAT public verification link for a stamped CFDI."""
    params = {
        "id": uuid,
        "re": issuer_rfc,
        "rr": receiver_rfc,
        "tt": f"{Decimal(total_cents) / 100:.2f}",
        "fe": (cfdi_sign or "")[-8:],
    }
    return f"{SAT_VERIFICATION_URL}?&{urlencode(params)}"

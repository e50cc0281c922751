# Overview: Collects every blocking error and warning that decides whether a document can be stamped.

"""
Fiscal Validation Engine

Pure, deterministic checks that decide whether a sale (or its draft invoice)
can be stamped as a CFDI. Nothing here touches the database or the clock:
callers pass the reference time and the sanity thresholds in.

Issues come back in a fixed order (company, customer, items, payment terms,
certificate, invoice) so repeated runs over the same input are identical.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from ..fiscal import (
    CFDI_USES,
    GENERIC_CFDI_USE,
    PAYMENT_FORMS,
    PAYMENT_METHODS,
    TAX_REGIMES,
    is_generic_rfc,
    is_valid_postal_code,
    is_valid_rfc,
    normalize_rfc,
)
from .tax_service import TaxTotals

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    code: str
    message: str
    severity: str = SEVERITY_ERROR

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
        }


@dataclass(frozen=True)
class ValidationReport:
    errors: tuple = ()
    warnings: tuple = ()
    can_preview: bool = False

    @property
    def can_stamp(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "errors": [i.to_dict() for i in self.errors],
            "warnings": [i.to_dict() for i in self.warnings],
            "can_stamp": self.can_stamp,
            "can_preview": self.can_preview,
        }


@dataclass(frozen=True)
class FiscalDocument:
    """Everything the engine looks at, already resolved by the caller."""
    company: object
    customer: object
    items: list
    totals: TaxTotals
    payment_method: str | None = "PUE"
    payment_form: str | None = "01"
    cfdi_use: str | None = None
    invoice_status: str | None = None
    recorded_subtotal_cents: int | None = None
    recorded_taxes_cents: int | None = None


@dataclass(frozen=True)
class Thresholds:
    min_total_cents: int = 100
    max_total_cents: int = 100_000_000


@dataclass
class _Collector:
    errors: list = field(default_factory=list)
    warnings: list = field(default_factory=list)

    def error(self, field_name: str, code: str, message: str) -> None:
        self.errors.append(ValidationIssue(field_name, code, message, SEVERITY_ERROR))

    def warn(self, field_name: str, code: str, message: str) -> None:
        self.warnings.append(ValidationIssue(field_name, code, message, SEVERITY_WARNING))


def _blank(value) -> bool:
    return value is None or not str(value).strip()


def _check_company(c: _Collector, company) -> None:
    if _blank(company.rfc):
        c.error("company.rfc", "REQUIRED", "Company RFC is required")
    elif not is_valid_rfc(company.rfc):
        c.error("company.rfc", "INVALID_FORMAT", "Company RFC has an invalid format")

    if _blank(company.name):
        c.error("company.name", "REQUIRED", "Company legal name is required")

    if _blank(company.tax_regime):
        c.error("company.tax_regime", "REQUIRED", "Company tax regime is required")
    elif company.tax_regime not in TAX_REGIMES:
        c.error("company.tax_regime", "INVALID_CODE", f"Tax regime {company.tax_regime} is not in the SAT catalog")

    if _blank(company.postal_code):
        c.error("company.postal_code", "REQUIRED", "Company fiscal postal code is required")
    elif not is_valid_postal_code(company.postal_code):
        c.error("company.postal_code", "INVALID_FORMAT", "Company postal code must have 5 digits")

    for name, label in (("street", "street"), ("city", "city"), ("state", "state")):
        if _blank(getattr(company, name)):
            c.error(f"company.{name}", "REQUIRED", f"Company fiscal address {label} is required")


def _effective_cfdi_use(doc: FiscalDocument, generic: bool) -> str | None:
    if generic:
        return GENERIC_CFDI_USE
    return doc.cfdi_use or getattr(doc.customer, "cfdi_use", None)


def _check_customer(c: _Collector, doc: FiscalDocument) -> bool:
    customer = doc.customer
    if _blank(customer.name) and _blank(customer.legal_name):
        c.error("customer.name", "REQUIRED", "Customer name is required")

    generic = _blank(customer.rfc) or is_generic_rfc(customer.rfc)
    if not generic:
        if not is_valid_rfc(customer.rfc):
            c.error("customer.rfc", "INVALID_FORMAT", f"Customer RFC {normalize_rfc(customer.rfc)} has an invalid format")
        if _blank(customer.tax_regime):
            c.error("customer.tax_regime", "REQUIRED", "Customer tax regime is required for a named receiver")
        elif customer.tax_regime not in TAX_REGIMES:
            c.error("customer.tax_regime", "INVALID_CODE", f"Tax regime {customer.tax_regime} is not in the SAT catalog")
        if _blank(_effective_cfdi_use(doc, generic)):
            c.error("customer.cfdi_use", "REQUIRED", "CFDI use is required for a named receiver")
        if _blank(customer.fiscal_postal_code):
            c.error("customer.postal_code", "REQUIRED", "Customer fiscal postal code is required")
        elif not is_valid_postal_code(customer.fiscal_postal_code):
            c.error("customer.postal_code", "INVALID_FORMAT", "Customer postal code must have 5 digits")

    if _blank(customer.email):
        c.warn("customer.email", "MISSING", "Customer has no email; the invoice cannot be sent automatically")
    return generic


def _check_items(c: _Collector, items) -> None:
    if not items:
        c.error("items", "REQUIRED", "The document has no items")
        return

    for index, item in enumerate(items):
        prefix = f"items[{index}]"
        if item.quantity is None or item.quantity <= 0:
            c.error(f"{prefix}.quantity", "INVALID", "Quantity must be greater than zero")
        if item.unit_price_cents is None or item.unit_price_cents < 0:
            c.error(f"{prefix}.unit_price", "INVALID", "Unit price cannot be negative")
        if _blank(item.effective_product_key):
            c.error(f"{prefix}.sat_product_key", "REQUIRED", "SAT product key is required")
        if _blank(item.effective_unit_key):
            c.error(f"{prefix}.sat_unit_key", "REQUIRED", "SAT unit key is required")
        if _blank(item.description):
            c.warn(f"{prefix}.description", "EMPTY", "Item has no description; the product name will be used")


def _check_payment_terms(c: _Collector, doc: FiscalDocument, generic: bool) -> None:
    if doc.payment_method not in PAYMENT_METHODS:
        c.error("payment_method", "INVALID_CODE", f"Payment method {doc.payment_method} is not valid")
    if doc.payment_form not in PAYMENT_FORMS:
        c.error("payment_form", "INVALID_CODE", f"Payment form {doc.payment_form} is not valid")
    use = _effective_cfdi_use(doc, generic)
    if use and use not in CFDI_USES:
        c.error("cfdi_use", "INVALID_CODE", f"CFDI use {use} is not valid")


def _check_certificate(c: _Collector, company, as_of: datetime) -> None:
    if not company.has_csd:
        if company.test_mode:
            c.warn("company.csd", "MISSING", "No CSD uploaded; stamping against the sandbox only")
        else:
            c.error("company.csd", "MISSING", "CSD certificate, key and password are required to stamp")
    elif company.csd_valid_until is not None and company.csd_valid_until < as_of:
        c.error("company.csd", "EXPIRED", "CSD certificate has expired")


def _check_amounts(c: _Collector, doc: FiscalDocument, thresholds: Thresholds) -> None:
    total = doc.totals.total_cents
    if total < thresholds.min_total_cents:
        c.warn("total", "BELOW_THRESHOLD", "Invoice total is unusually low")
    elif total > thresholds.max_total_cents:
        c.warn("total", "ABOVE_THRESHOLD", "Invoice total is unusually high")

    if doc.recorded_subtotal_cents is not None and doc.recorded_subtotal_cents != doc.totals.subtotal_cents:
        c.warn("invoice.subtotal", "MISMATCH", "Stored subtotal does not match the recomputed subtotal")
    if doc.recorded_taxes_cents is not None and doc.recorded_taxes_cents != doc.totals.taxes_cents:
        c.warn("invoice.taxes", "MISMATCH", "Stored taxes do not match the recomputed taxes")


def validate(doc: FiscalDocument, *, as_of: datetime, thresholds: Thresholds | None = None) -> ValidationReport:
    thresholds = thresholds or Thresholds()
    c = _Collector()

    _check_company(c, doc.company)
    generic = _check_customer(c, doc)
    _check_items(c, doc.items)
    _check_payment_terms(c, doc, generic)
    _check_certificate(c, doc.company, as_of)

    if doc.invoice_status is not None and doc.invoice_status != "pending":
        c.error("invoice.status", "INVALID_STATE", f"Invoice is {doc.invoice_status}; only pending invoices can be stamped")

    _check_amounts(c, doc, thresholds)

    return ValidationReport(
        errors=tuple(c.errors),
        warnings=tuple(c.warnings),
        can_preview=bool(doc.items),
    )

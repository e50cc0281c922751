# Overview: Invoice drafting, PAC stamping and cancellation under a persisted claim.

"""
Invoice State Machine

    pending --stamp--> stamped --cancel--> cancelled

- Nothing leaves ``cancelled``; nothing returns to ``pending``.
- A pending draft can be discarded (deleted) instead of cancelled.
- Status only advances after the PAC confirms the remote operation.

PAC calls never run inside a database transaction. Each call is bracketed by
three short units of work:

1. claim:   lock the invoice row, re-check its status, and record a claim
            token (rejects a second concurrent call with OperationInProgress)
2. call:    talk to the PAC with no transaction open
3. settle:  lock the row again and persist the result atomically, or release
            the claim on a definite failure

A timeout leaves the claim in place until PAC_CLAIM_TTL_SECONDS passes,
because the PAC may have processed the request.
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..errors import (
    CancellationPending,
    DuplicateInvoice,
    InvalidRequest,
    InvalidState,
    NotFound,
    OperationInProgress,
    PacUnavailable,
    ValidationFailed,
)
from ..extensions import db
from ..fiscal import CANCELLATION_MOTIVES, MOTIVE_REQUIRES_SUBSTITUTE, is_valid_uuid
from ..models import Company, Invoice, InvoiceItem, Sale
from ..models.base import new_id
from ..principal import Principal
from ..time_utils import cents_to_str, utcnow
from .cfdi_builder import build_cfdi_payload
from .concurrency import lock_for_update, run_in_transaction
from .fiscal_validation import FiscalDocument, Thresholds, ValidationReport, validate
from .ledger_service import append_event
from .pac_gateway import PacError, get_pac_gateway
from .tax_service import compute_sale_taxes

OPERATION_STAMP = "stamp"
OPERATION_CANCEL = "cancel"


# -----------------------------------------------------------------------------
# Lookups
# -----------------------------------------------------------------------------

def _company(session, principal: Principal) -> Company:
    company = session.get(Company, principal.company_id)
    if not company:
        raise NotFound("Company", principal.company_id)
    return company


def _load_invoice(session, company_id: str, invoice_id: str, *, lock: bool = False) -> Invoice:
    q = session.query(Invoice).filter_by(id=invoice_id, company_id=company_id)
    if lock:
        q = lock_for_update(q)
    invoice = q.first()
    if not invoice:
        raise NotFound("Invoice", invoice_id)
    return invoice


def _load_sale(session, company_id: str, sale_id: str, *, lock: bool = False) -> Sale:
    q = session.query(Sale).filter_by(id=sale_id, company_id=company_id)
    if lock:
        q = lock_for_update(q)
    sale = q.first()
    if not sale:
        raise NotFound("Sale", sale_id)
    return sale


def get_invoice(principal: Principal, invoice_id: str) -> Invoice:
    return _load_invoice(db.session, principal.company_id, invoice_id)


def list_invoices(principal: Principal, *, status: str | None = None, limit: int = 100) -> list[Invoice]:
    q = db.session.query(Invoice).filter(Invoice.company_id == principal.company_id)
    if status:
        q = q.filter(Invoice.status == status)
    return q.order_by(Invoice.created_at.desc()).limit(limit).all()


# -----------------------------------------------------------------------------
# Validation / preview
# -----------------------------------------------------------------------------

def _default_iva() -> int:
    return current_app.config.get("DEFAULT_IVA_RATE_BPS", 1600)


def _thresholds() -> Thresholds:
    cfg = current_app.config
    return Thresholds(
        min_total_cents=cfg.get("FISCAL_MIN_TOTAL_CENTS", 100),
        max_total_cents=cfg.get("FISCAL_MAX_TOTAL_CENTS", 100_000_000),
    )


def _sale_document(company, sale: Sale, *, payment_method, payment_form, cfdi_use) -> FiscalDocument:
    return FiscalDocument(
        company=company,
        customer=sale.customer,
        items=list(sale.items),
        totals=compute_sale_taxes(sale.items, _default_iva()),
        payment_method=payment_method,
        payment_form=payment_form,
        cfdi_use=cfdi_use,
    )


def _invoice_document(company, invoice: Invoice) -> FiscalDocument:
    sale_items = [line.sale_item for line in invoice.items]
    return FiscalDocument(
        company=company,
        customer=invoice.customer,
        items=sale_items,
        totals=compute_sale_taxes(sale_items, _default_iva()),
        payment_method=invoice.payment_method,
        payment_form=invoice.payment_form,
        cfdi_use=invoice.cfdi_use,
        invoice_status=invoice.status,
        recorded_subtotal_cents=invoice.subtotal_cents,
        recorded_taxes_cents=invoice.taxes_cents,
    )


def validate_invoice(principal: Principal, invoice_id: str) -> ValidationReport:
    company = _company(db.session, principal)
    invoice = _load_invoice(db.session, principal.company_id, invoice_id)
    return validate(_invoice_document(company, invoice), as_of=utcnow(), thresholds=_thresholds())


def preview_sale(
    principal: Principal,
    sale_id: str,
    *,
    payment_method: str = "PUE",
    payment_form: str = "01",
    cfdi_use: str | None = None,
) -> dict:
    """Read-only projection of the invoice a sale would produce."""
    company = _company(db.session, principal)
    sale = _load_sale(db.session, principal.company_id, sale_id)
    doc = _sale_document(company, sale, payment_method=payment_method, payment_form=payment_form, cfdi_use=cfdi_use)
    report = validate(doc, as_of=utcnow(), thresholds=_thresholds())

    items = []
    for item, line in zip(sale.items, doc.totals.lines):
        data = item.to_dict()
        data.update({
            "iva_rate_bps": line.iva_rate_bps,
            "ieps_rate_bps": line.ieps_rate_bps,
            "iva_cents": line.iva_cents,
            "ieps_cents": line.ieps_cents,
            "total_cents": line.total_cents,
        })
        items.append(data)

    return {
        "sale": sale.to_dict(),
        "customer": sale.customer.to_dict() if sale.customer else None,
        "items": items,
        "subtotal_cents": doc.totals.subtotal_cents,
        "taxes_cents": doc.totals.taxes_cents,
        "total_cents": doc.totals.total_cents,
        "subtotal": cents_to_str(doc.totals.subtotal_cents),
        "taxes": cents_to_str(doc.totals.taxes_cents),
        "total": cents_to_str(doc.totals.total_cents),
        **report.to_dict(),
    }


def preview_invoice(principal: Principal, invoice_id: str) -> dict:
    company = _company(db.session, principal)
    invoice = _load_invoice(db.session, principal.company_id, invoice_id)
    report = validate(_invoice_document(company, invoice), as_of=utcnow(), thresholds=_thresholds())
    return {
        "invoice": invoice.to_dict(include_items=True),
        "customer": invoice.customer.to_dict() if invoice.customer else None,
        "issuer": company.to_dict(),
        **report.to_dict(),
    }


# -----------------------------------------------------------------------------
# Draft
# -----------------------------------------------------------------------------

def _active_invoice(session, sale_id: str) -> Invoice | None:
    return (
        session.query(Invoice)
        .filter(Invoice.sale_id == sale_id, Invoice.status != Invoice.STATUS_CANCELLED)
        .first()
    )


def create_draft(
    principal: Principal,
    sale_id: str,
    *,
    payment_method: str = "PUE",
    payment_form: str = "01",
    cfdi_use: str | None = None,
) -> Invoice:
    """
    Create a pending invoice from a completed sale.

    The sale row is locked while checking for an existing live invoice, so two
    concurrent drafts for the same sale yield one invoice and one
    DuplicateInvoice.
    """
    for name, value in (("payment_method", payment_method), ("payment_form", payment_form)):
        if not isinstance(value, str) or not value.strip():
            raise InvalidRequest(f"{name} is required", details={name: value})

    _load_sale(db.session, principal.company_id, sale_id)

    def _op(session):
        sale = _load_sale(session, principal.company_id, sale_id, lock=True)
        if sale.status != Sale.STATUS_COMPLETED:
            raise InvalidState(f"Sale is {sale.status}; only completed sales can be invoiced", current_status=sale.status)

        existing = _active_invoice(session, sale.id)
        if existing:
            raise DuplicateInvoice(sale.id, existing.id)

        totals = compute_sale_taxes(sale.items, _default_iva())
        invoice = Invoice(
            id=new_id(),
            company_id=principal.company_id,
            sale_id=sale.id,
            customer_id=sale.customer_id,
            status=Invoice.STATUS_PENDING,
            payment_method=payment_method.strip(),
            payment_form=payment_form.strip(),
            cfdi_use=cfdi_use or (sale.customer.cfdi_use if sale.customer else None),
            subtotal_cents=totals.subtotal_cents,
            taxes_cents=totals.taxes_cents,
            total_cents=totals.total_cents,
        )
        session.add(invoice)

        for position, (item, line) in enumerate(zip(sale.items, totals.lines), start=1):
            session.add(InvoiceItem(
                invoice_id=invoice.id,
                sale_item_id=item.id,
                position=position,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                subtotal_cents=line.subtotal_cents,
                iva_rate_bps=line.iva_rate_bps,
                ieps_rate_bps=line.ieps_rate_bps,
                iva_cents=line.iva_cents,
                ieps_cents=line.ieps_cents,
                total_cents=line.total_cents,
            ))
        session.flush()

        append_event(
            company_id=principal.company_id,
            event_type="invoice.created",
            entity_type="invoice",
            entity_id=invoice.id,
            actor_user_id=principal.user_id,
            payload={"sale_id": sale.id, "total_cents": invoice.total_cents},
        )
        return invoice

    return run_in_transaction(_op)


def discard_draft(principal: Principal, invoice_id: str) -> None:
    """Delete a pending invoice. Stamped invoices must be cancelled instead."""
    _load_invoice(db.session, principal.company_id, invoice_id)

    def _op(session):
        invoice = _load_invoice(session, principal.company_id, invoice_id, lock=True)
        if invoice.status != Invoice.STATUS_PENDING:
            raise InvalidState(
                f"Invoice is {invoice.status}; only pending drafts can be discarded",
                current_status=invoice.status,
            )
        _ensure_no_live_claim(invoice)

        for line in list(invoice.items):
            session.delete(line)
        session.delete(invoice)
        append_event(
            company_id=principal.company_id,
            event_type="invoice.discarded",
            entity_type="invoice",
            entity_id=invoice_id,
            actor_user_id=principal.user_id,
            payload={"sale_id": invoice.sale_id},
        )

    run_in_transaction(_op)


# -----------------------------------------------------------------------------
# PAC claim helpers
# -----------------------------------------------------------------------------

def _claim_is_live(invoice: Invoice) -> bool:
    if not invoice.pac_claim_token or invoice.pac_claimed_at is None:
        return False
    ttl = timedelta(seconds=current_app.config.get("PAC_CLAIM_TTL_SECONDS", 120))
    return invoice.pac_claimed_at + ttl > utcnow()


def _ensure_no_live_claim(invoice: Invoice) -> None:
    if _claim_is_live(invoice):
        raise OperationInProgress(
            f"A PAC {invoice.pac_claim_operation} is already in progress for this invoice",
            details={
                "invoice_id": invoice.id,
                "operation": invoice.pac_claim_operation,
                "claimed_at": invoice.pac_claimed_at.isoformat(),
            },
        )


def _take_claim(invoice: Invoice, operation: str) -> str:
    token = new_id()
    invoice.pac_claim_token = token
    invoice.pac_claim_operation = operation
    invoice.pac_claimed_at = utcnow()
    return token


def _clear_claim(invoice: Invoice) -> None:
    invoice.pac_claim_token = None
    invoice.pac_claim_operation = None
    invoice.pac_claimed_at = None


def _record_pac_failure(principal: Principal, invoice_id: str, token: str, operation: str, err: PacError) -> None:
    """Release the claim (unless the outcome is unknown) and audit the failure."""

    def _op(session):
        invoice = _load_invoice(session, principal.company_id, invoice_id, lock=True)
        if not err.outcome_unknown and invoice.pac_claim_token == token:
            _clear_claim(invoice)
        append_event(
            company_id=principal.company_id,
            event_type=f"invoice.{operation}_failed",
            entity_type="invoice",
            entity_id=invoice_id,
            actor_user_id=principal.user_id,
            note=err.reason,
            payload={"outcome_unknown": err.outcome_unknown, "status_code": err.status_code},
        )

    run_in_transaction(_op)


# -----------------------------------------------------------------------------
# Stamp
# -----------------------------------------------------------------------------

def stamp(principal: Principal, invoice_id: str) -> Invoice:
    """
    Sign and register a pending invoice with the PAC.

    Idempotent: an already stamped invoice is returned as is without
    contacting the PAC.
    """
    company = _company(db.session, principal)
    invoice = _load_invoice(db.session, principal.company_id, invoice_id)
    if invoice.status == Invoice.STATUS_STAMPED:
        return invoice
    if invoice.status == Invoice.STATUS_CANCELLED:
        raise InvalidState("Cancelled invoices cannot be stamped", current_status=invoice.status)

    report = validate(_invoice_document(company, invoice), as_of=utcnow(), thresholds=_thresholds())
    if not report.can_stamp:
        raise ValidationFailed(list(report.errors), list(report.warnings))

    def _claim(session):
        locked = _load_invoice(session, principal.company_id, invoice_id, lock=True)
        if locked.status == Invoice.STATUS_STAMPED:
            return None, None
        if locked.status != Invoice.STATUS_PENDING:
            raise InvalidState(f"Invoice is {locked.status}", current_status=locked.status)
        _ensure_no_live_claim(locked)
        token = _take_claim(locked, OPERATION_STAMP)
        return token, build_cfdi_payload(locked, issued_at=utcnow())

    token, payload = run_in_transaction(_claim)
    if token is None:
        return _load_invoice(db.session, principal.company_id, invoice_id)

    current_app.logger.info("Stamping invoice %s with the PAC", invoice_id)
    try:
        gateway = get_pac_gateway(company)
        result = gateway.sign_and_register(payload)
    except PacError as err:
        current_app.logger.warning(
            "PAC stamp failed for invoice %s (outcome_unknown=%s): %s",
            invoice_id, err.outcome_unknown, err.reason,
        )
        _record_pac_failure(principal, invoice_id, token, OPERATION_STAMP, err)
        raise PacUnavailable(err.reason, outcome_unknown=err.outcome_unknown) from err

    def _settle(session):
        locked = _load_invoice(session, principal.company_id, invoice_id, lock=True)
        if locked.status != Invoice.STATUS_PENDING:
            current_app.logger.warning(
                "Invoice %s was %s before PAC result %s could be stored",
                invoice_id, locked.status, result.uuid,
            )
            return locked
        if locked.pac_claim_token != token:
            current_app.logger.warning("Invoice %s claim was taken over while stamping", invoice_id)

        locked.serie = result.serie
        locked.folio = result.folio
        locked.uuid = result.uuid
        locked.pac_document_id = result.pac_document_id
        locked.verification_url = result.verification_url
        locked.stamped_at = result.stamped_at
        locked.status = Invoice.STATUS_STAMPED
        _clear_claim(locked)

        append_event(
            company_id=principal.company_id,
            event_type="invoice.stamped",
            entity_type="invoice",
            entity_id=locked.id,
            actor_user_id=principal.user_id,
            payload={"uuid": result.uuid, "serie": result.serie, "folio": result.folio},
        )
        return locked

    stamped = run_in_transaction(_settle)
    current_app.logger.info("Invoice %s stamped with UUID %s", invoice_id, result.uuid)
    return stamped


# -----------------------------------------------------------------------------
# Cancel
# -----------------------------------------------------------------------------

def _validate_cancellation(motive: str, substitute_uuid: str | None) -> None:
    if motive not in CANCELLATION_MOTIVES:
        raise InvalidRequest(
            "Invalid cancellation motive",
            details={"motive": motive, "allowed": sorted(CANCELLATION_MOTIVES)},
        )
    if motive == MOTIVE_REQUIRES_SUBSTITUTE and not is_valid_uuid(substitute_uuid):
        raise InvalidRequest(
            "Motive 01 requires the UUID of the substitute invoice",
            details={"motive": motive, "substitute_uuid": substitute_uuid},
        )


def cancel(
    principal: Principal,
    invoice_id: str,
    motive: str,
    substitute_uuid: str | None = None,
) -> Invoice:
    """
    Cancel a stamped invoice through the PAC.

    The invoice becomes cancelled only when the PAC reports it cancelled. When
    the receiver still has to accept, it stays stamped and
    CancellationPending is raised.
    """
    company = _company(db.session, principal)
    invoice = _load_invoice(db.session, principal.company_id, invoice_id)
    if invoice.status == Invoice.STATUS_CANCELLED:
        return invoice
    if invoice.status == Invoice.STATUS_PENDING:
        raise InvalidState(
            "Pending invoices are not registered with the PAC; discard the draft instead",
            current_status=invoice.status,
        )
    _validate_cancellation(motive, substitute_uuid)
    if motive != MOTIVE_REQUIRES_SUBSTITUTE:
        substitute_uuid = None

    def _claim(session):
        locked = _load_invoice(session, principal.company_id, invoice_id, lock=True)
        if locked.status == Invoice.STATUS_CANCELLED:
            return None, None
        if locked.status != Invoice.STATUS_STAMPED:
            raise InvalidState(f"Invoice is {locked.status}", current_status=locked.status)
        _ensure_no_live_claim(locked)
        token = _take_claim(locked, OPERATION_CANCEL)
        return token, (locked.pac_document_id, locked.uuid)

    token, refs = run_in_transaction(_claim)
    if token is None:
        return _load_invoice(db.session, principal.company_id, invoice_id)
    pac_document_id, document_uuid = refs

    current_app.logger.info("Cancelling invoice %s (motive %s) with the PAC", invoice_id, motive)
    try:
        gateway = get_pac_gateway(company)
        result = gateway.cancel(
            pac_document_id=pac_document_id,
            uuid=document_uuid,
            motive=motive,
            substitute_uuid=substitute_uuid,
        )
    except PacError as err:
        current_app.logger.warning(
            "PAC cancellation failed for invoice %s (outcome_unknown=%s): %s",
            invoice_id, err.outcome_unknown, err.reason,
        )
        _record_pac_failure(principal, invoice_id, token, OPERATION_CANCEL, err)
        raise PacUnavailable(err.reason, outcome_unknown=err.outcome_unknown) from err

    def _settle(session):
        locked = _load_invoice(session, principal.company_id, invoice_id, lock=True)
        _clear_claim(locked)
        locked.cancellation_motive = motive
        locked.cancellation_substitute_uuid = substitute_uuid
        locked.cancellation_status = result.status

        if result.accepted and locked.status == Invoice.STATUS_STAMPED:
            locked.status = Invoice.STATUS_CANCELLED
            locked.cancelled_at = result.cancelled_at or utcnow()
            event_type = "invoice.cancelled"
        else:
            event_type = "invoice.cancel_requested"

        append_event(
            company_id=principal.company_id,
            event_type=event_type,
            entity_type="invoice",
            entity_id=locked.id,
            actor_user_id=principal.user_id,
            note=result.message,
            payload={"motive": motive, "status": result.status},
        )
        return locked

    settled = run_in_transaction(_settle)
    if settled.status != Invoice.STATUS_CANCELLED:
        current_app.logger.info("Cancellation of invoice %s awaits receiver acceptance (%s)", invoice_id, result.status)
        raise CancellationPending(
            "Cancellation requested; awaiting receiver acceptance",
            details={
                "invoice_id": invoice_id,
                "status": result.status,
                "message": result.message,
            },
        )
    current_app.logger.info("Invoice %s cancelled", invoice_id)
    return settled

# Overview: Pytest coverage for the invoice state machine and PAC coordination.

import uuid
from datetime import timedelta

import pytest

from erpcore.errors import (
    CancellationPending,
    DuplicateInvoice,
    InvalidRequest,
    InvalidState,
    NotFound,
    OperationInProgress,
    PacUnavailable,
    ValidationFailed,
)
from erpcore.models import AuditEvent, Invoice, InvoiceItem
from erpcore.services import invoice_service, sales_service
from erpcore.services.pac_gateway import PacError
from erpcore.services.sales_service import SaleItemRequest
from erpcore.time_utils import utcnow


@pytest.fixture
def sale(db_session, principal_a, public_customer_a, product_a):
    """Sale of 3 widgets at 100.00 to the general public."""
    return sales_service.create_sale(
        principal_a,
        public_customer_a.id,
        [SaleItemRequest(product_id=product_a.id, quantity=3, unit_price_cents=10000)],
    )


@pytest.fixture
def draft(db_session, principal_a, sale):
    return invoice_service.create_draft(principal_a, sale.id)


@pytest.fixture
def stamped(db_session, principal_a, draft, fake_pac):
    return invoice_service.stamp(principal_a, draft.id)


def events(db_session, invoice_id):
    rows = (
        db_session.query(AuditEvent)
        .filter_by(entity_type="invoice", entity_id=invoice_id)
        .order_by(AuditEvent.id)
        .all()
    )
    return [e.event_type for e in rows]


class TestCreateDraft:
    def test_draft_carries_computed_taxes(self, db_session, draft, sale):
        assert draft.status == Invoice.STATUS_PENDING
        assert draft.sale_id == sale.id
        assert (draft.subtotal_cents, draft.taxes_cents, draft.total_cents) == (30000, 4800, 34800)

        lines = db_session.query(InvoiceItem).filter_by(invoice_id=draft.id).all()
        assert len(lines) == 1
        assert lines[0].iva_cents == 4800
        assert lines[0].total_cents == 34800

    def test_second_draft_for_same_sale_is_duplicate(self, db_session, principal_a, draft, sale):
        with pytest.raises(DuplicateInvoice) as exc_info:
            invoice_service.create_draft(principal_a, sale.id)
        assert exc_info.value.invoice_id == draft.id
        assert db_session.query(Invoice).count() == 1

    def test_draft_requires_payment_terms(self, db_session, principal_a, sale):
        with pytest.raises(InvalidRequest):
            invoice_service.create_draft(principal_a, sale.id, payment_method="  ")

    def test_draft_for_foreign_sale(self, db_session, principal_b, sale):
        with pytest.raises(NotFound):
            invoice_service.create_draft(principal_b, sale.id)

    def test_draft_uses_customer_cfdi_use(self, db_session, principal_a, named_customer_a, product_a):
        sale = sales_service.create_sale(
            principal_a,
            named_customer_a.id,
            [SaleItemRequest(product_id=product_a.id, quantity=1, unit_price_cents=10000)],
        )
        invoice = invoice_service.create_draft(principal_a, sale.id)
        assert invoice.cfdi_use == "G03"


class TestPreview:
    def test_sale_preview_projects_totals(self, db_session, principal_a, sale):
        preview = invoice_service.preview_sale(principal_a, sale.id)

        assert preview["total"] == "348.00"
        assert preview["items"][0]["iva_cents"] == 4800
        assert preview["can_preview"] is True
        assert preview["can_stamp"] is True

    def test_invoice_preview_reports_blocking_errors(self, db_session, principal_a, company_a, draft):
        company_a.rfc = None
        db_session.commit()

        preview = invoice_service.preview_invoice(principal_a, draft.id)
        assert preview["can_stamp"] is False
        assert [e["field"] for e in preview["errors"]] == ["company.rfc"]


class TestStamp:
    def test_stamp_records_pac_result(self, db_session, principal_a, draft, fake_pac):
        invoice = invoice_service.stamp(principal_a, draft.id)

        assert invoice.status == Invoice.STATUS_STAMPED
        assert invoice.uuid
        assert invoice.serie == "T"
        assert invoice.folio == "1"
        assert invoice.pac_document_id.startswith("sandbox-")
        assert "verificacfdi" in invoice.verification_url
        assert invoice.stamped_at is not None
        assert invoice.pac_claim_token is None
        assert events(db_session, draft.id) == ["invoice.created", "invoice.stamped"]

    def test_payload_for_general_public(self, db_session, principal_a, draft, fake_pac):
        invoice_service.stamp(principal_a, draft.id)

        _, payload = fake_pac.calls[0]
        assert payload["Receiver"]["Rfc"] == "XAXX010101000"
        assert payload["Receiver"]["CfdiUse"] == "S01"
        assert payload["Items"][0]["Total"] == 348.0
        assert "GlobalInformation" in payload

    def test_stamp_is_idempotent(self, db_session, principal_a, stamped, fake_pac):
        again = invoice_service.stamp(principal_a, stamped.id)

        assert again.uuid == stamped.uuid
        assert fake_pac.count("stamp") == 1

    def test_validation_failure_keeps_pending(self, db_session, principal_a, company_a, draft, fake_pac):
        company_a.rfc = None
        db_session.commit()

        with pytest.raises(ValidationFailed) as exc_info:
            invoice_service.stamp(principal_a, draft.id)

        assert [issue.field for issue in exc_info.value.errors] == ["company.rfc"]
        assert db_session.get(Invoice, draft.id).status == Invoice.STATUS_PENDING
        assert fake_pac.count("stamp") == 0

    def test_unknown_company_regime_is_reported_before_pac(self, db_session, principal_a, company_a, draft, fake_pac):
        company_a.tax_regime = "999"
        db_session.commit()

        assert not invoice_service.validate_invoice(principal_a, draft.id).can_stamp
        with pytest.raises(ValidationFailed) as exc_info:
            invoice_service.stamp(principal_a, draft.id)

        assert [issue.field for issue in exc_info.value.errors] == ["company.tax_regime"]
        assert db_session.get(Invoice, draft.id).status == Invoice.STATUS_PENDING
        assert fake_pac.count("stamp") == 0

    def test_pac_rejection_releases_claim(self, db_session, principal_a, draft, fake_pac):
        fake_pac.stamp_error = PacError("CFDI40147 invalid receiver", status_code=400)

        with pytest.raises(PacUnavailable) as exc_info:
            invoice_service.stamp(principal_a, draft.id)
        assert exc_info.value.outcome_unknown is False

        invoice = db_session.get(Invoice, draft.id)
        assert invoice.status == Invoice.STATUS_PENDING
        assert invoice.uuid is None
        assert invoice.pac_claim_token is None
        assert events(db_session, draft.id)[-1] == "invoice.stamp_failed"

        fake_pac.stamp_error = None
        assert invoice_service.stamp(principal_a, draft.id).status == Invoice.STATUS_STAMPED

    def test_timeout_keeps_claim(self, db_session, principal_a, draft, fake_pac):
        fake_pac.stamp_error = PacError("timed out", outcome_unknown=True)

        with pytest.raises(PacUnavailable) as exc_info:
            invoice_service.stamp(principal_a, draft.id)
        assert exc_info.value.outcome_unknown is True

        fake_pac.stamp_error = None
        with pytest.raises(OperationInProgress):
            invoice_service.stamp(principal_a, draft.id)
        assert fake_pac.count("stamp") == 1

    def test_expired_claim_can_be_taken_over(self, db_session, app, principal_a, draft, fake_pac):
        fake_pac.stamp_error = PacError("timed out", outcome_unknown=True)
        with pytest.raises(PacUnavailable):
            invoice_service.stamp(principal_a, draft.id)

        invoice = db_session.get(Invoice, draft.id)
        invoice.pac_claimed_at = utcnow() - timedelta(seconds=app.config["PAC_CLAIM_TTL_SECONDS"] + 1)
        db_session.commit()

        fake_pac.stamp_error = None
        assert invoice_service.stamp(principal_a, draft.id).status == Invoice.STATUS_STAMPED

    def test_other_tenant_cannot_stamp(self, db_session, principal_b, draft, fake_pac):
        with pytest.raises(NotFound):
            invoice_service.stamp(principal_b, draft.id)
        assert fake_pac.count("stamp") == 0


class TestCancel:
    def test_accepted_cancellation(self, db_session, principal_a, stamped, fake_pac):
        invoice = invoice_service.cancel(principal_a, stamped.id, "02")

        assert invoice.status == Invoice.STATUS_CANCELLED
        assert invoice.cancelled_at is not None
        assert invoice.cancellation_motive == "02"
        assert invoice.cancellation_substitute_uuid is None
        assert events(db_session, stamped.id)[-1] == "invoice.cancelled"

    def test_substitute_uuid_sent_for_motive_01(self, db_session, principal_a, stamped, fake_pac):
        substitute = str(uuid.uuid4())
        invoice = invoice_service.cancel(principal_a, stamped.id, "01", substitute_uuid=substitute)

        assert invoice.cancellation_substitute_uuid == substitute
        _, args = fake_pac.calls[-1]
        assert args["substitute_uuid"] == substitute
        assert args["uuid"] == stamped.uuid

    def test_motive_01_requires_substitute(self, db_session, principal_a, stamped, fake_pac):
        with pytest.raises(InvalidRequest):
            invoice_service.cancel(principal_a, stamped.id, "01")
        assert fake_pac.count("cancel") == 0

    def test_unknown_motive(self, db_session, principal_a, stamped, fake_pac):
        with pytest.raises(InvalidRequest):
            invoice_service.cancel(principal_a, stamped.id, "09")

    def test_substitute_ignored_for_other_motives(self, db_session, principal_a, stamped, fake_pac):
        invoice_service.cancel(principal_a, stamped.id, "03", substitute_uuid=str(uuid.uuid4()))
        _, args = fake_pac.calls[-1]
        assert args["substitute_uuid"] is None

    def test_pending_receiver_acceptance(self, db_session, principal_a, stamped, fake_pac):
        fake_pac.cancel_status = "pending"

        with pytest.raises(CancellationPending) as exc_info:
            invoice_service.cancel(principal_a, stamped.id, "02")
        assert exc_info.value.details["status"] == "pending"

        invoice = db_session.get(Invoice, stamped.id)
        assert invoice.status == Invoice.STATUS_STAMPED
        assert invoice.cancellation_status == "pending"
        assert invoice.pac_claim_token is None
        assert events(db_session, stamped.id)[-1] == "invoice.cancel_requested"

        fake_pac.cancel_status = "canceled"
        assert invoice_service.cancel(principal_a, stamped.id, "02").status == Invoice.STATUS_CANCELLED

    def test_pac_failure_leaves_stamped(self, db_session, principal_a, stamped, fake_pac):
        fake_pac.cancel_error = PacError("PAC down", status_code=500)

        with pytest.raises(PacUnavailable):
            invoice_service.cancel(principal_a, stamped.id, "02")
        assert db_session.get(Invoice, stamped.id).status == Invoice.STATUS_STAMPED
        assert events(db_session, stamped.id)[-1] == "invoice.cancel_failed"

    def test_cancel_is_idempotent_and_terminal(self, db_session, principal_a, stamped, fake_pac):
        invoice_service.cancel(principal_a, stamped.id, "02")

        again = invoice_service.cancel(principal_a, stamped.id, "02")
        assert again.status == Invoice.STATUS_CANCELLED
        assert fake_pac.count("cancel") == 1

        with pytest.raises(InvalidState):
            invoice_service.stamp(principal_a, stamped.id)

    def test_pending_invoice_cannot_be_cancelled(self, db_session, principal_a, draft, fake_pac):
        with pytest.raises(InvalidState):
            invoice_service.cancel(principal_a, draft.id, "02")

    def test_cancelled_invoice_frees_the_sale(self, db_session, principal_a, stamped, sale, fake_pac):
        invoice_service.cancel(principal_a, stamped.id, "02")

        replacement = invoice_service.create_draft(principal_a, sale.id)
        assert replacement.id != stamped.id


class TestDiscardDraft:
    def test_discard_removes_draft(self, db_session, principal_a, draft, sale):
        draft_id = draft.id
        invoice_service.discard_draft(principal_a, draft_id)

        assert db_session.get(Invoice, draft_id) is None
        assert db_session.query(InvoiceItem).count() == 0
        assert events(db_session, draft_id)[-1] == "invoice.discarded"
        assert invoice_service.create_draft(principal_a, sale.id).status == Invoice.STATUS_PENDING

    def test_stamped_invoice_cannot_be_discarded(self, db_session, principal_a, stamped):
        with pytest.raises(InvalidState):
            invoice_service.discard_draft(principal_a, stamped.id)

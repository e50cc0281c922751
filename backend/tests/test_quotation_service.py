# Overview: Pytest coverage for quotation status changes and conversion into sales.

from datetime import timedelta

import pytest

from erpcore.errors import AlreadyConverted, InsufficientStock, InvalidRequest, InvalidState, NotFound
from erpcore.models import AuditEvent, Movement, Product, Quotation, Sale
from erpcore.services import quotation_service
from erpcore.services.quotation_service import can_transition
from erpcore.services.sales_service import SaleItemRequest
from erpcore.time_utils import utcnow


@pytest.fixture
def quotation(db_session, principal_a, public_customer_a, product_a):
    """Pending quotation for 2 widgets at a negotiated price."""
    return quotation_service.create_quotation(
        principal_a,
        public_customer_a.id,
        [SaleItemRequest(product_id=product_a.id, quantity=2, unit_price_cents=9000)],
        notes="Precio especial",
    )


class TestCreateQuotation:
    def test_create_reserves_no_stock(self, db_session, quotation, product_a):
        assert quotation.status == Quotation.STATUS_PENDING
        assert quotation.total_amount_cents == 18000
        assert db_session.get(Product, product_a.id).stock == 5
        assert db_session.query(Movement).count() == 0

    def test_create_does_not_check_stock(self, db_session, principal_a, public_customer_a, product_a):
        quotation = quotation_service.create_quotation(
            principal_a,
            public_customer_a.id,
            [SaleItemRequest(product_id=product_a.id, quantity=50, unit_price_cents=100)],
        )
        assert quotation.total_amount_cents == 5000

    def test_create_rejects_foreign_customer(self, db_session, principal_a, customer_b, product_a):
        with pytest.raises(NotFound):
            quotation_service.create_quotation(
                principal_a,
                customer_b.id,
                [SaleItemRequest(product_id=product_a.id, quantity=1, unit_price_cents=100)],
            )


class TestStatusTransitions:
    """pending -> accepted/rejected/expired; accepted -> rejected/expired; the rest are terminal."""

    @pytest.mark.parametrize("current,target,allowed", [
        ("pending", "accepted", True),
        ("pending", "rejected", True),
        ("pending", "expired", True),
        ("accepted", "rejected", True),
        ("accepted", "pending", False),
        ("rejected", "accepted", False),
        ("expired", "pending", False),
        ("converted", "rejected", False),
        ("pending", "converted", False),
    ])
    def test_transition_table(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    def test_accept_records_audit_event(self, db_session, principal_a, quotation):
        updated = quotation_service.set_quotation_status(principal_a, quotation.id, "accepted")

        assert updated.status == Quotation.STATUS_ACCEPTED
        event = db_session.query(AuditEvent).filter_by(event_type="quotation.accepted").one()
        assert event.entity_id == quotation.id

    def test_same_status_is_noop(self, db_session, principal_a, quotation):
        quotation_service.set_quotation_status(principal_a, quotation.id, "pending")
        assert db_session.query(AuditEvent).filter(AuditEvent.event_type != "quotation.created").count() == 0

    def test_rejected_cannot_be_accepted(self, db_session, principal_a, quotation):
        quotation_service.set_quotation_status(principal_a, quotation.id, "rejected")
        with pytest.raises(InvalidState) as exc_info:
            quotation_service.set_quotation_status(principal_a, quotation.id, "accepted")
        assert exc_info.value.current_status == "rejected"

    def test_converted_only_via_conversion(self, db_session, principal_a, quotation):
        with pytest.raises(InvalidRequest):
            quotation_service.set_quotation_status(principal_a, quotation.id, "converted")

    def test_unknown_status(self, db_session, principal_a, quotation):
        with pytest.raises(InvalidRequest):
            quotation_service.set_quotation_status(principal_a, quotation.id, "archived")


class TestConvertQuotation:
    def test_conversion_creates_sale_with_quoted_prices(self, db_session, principal_a, quotation, product_a):
        sale = quotation_service.convert_quotation(principal_a, quotation.id)

        assert sale.quotation_id == quotation.id
        assert sale.total_amount_cents == 18000
        assert sale.notes == "Precio especial"
        assert db_session.get(Product, product_a.id).stock == 3

        refreshed = db_session.get(Quotation, quotation.id)
        assert refreshed.status == Quotation.STATUS_CONVERTED
        assert refreshed.converted_sale_id == sale.id
        assert refreshed.converted_at is not None

    def test_accepted_quotation_converts(self, db_session, principal_a, quotation):
        quotation_service.set_quotation_status(principal_a, quotation.id, "accepted")
        sale = quotation_service.convert_quotation(principal_a, quotation.id)
        assert sale.status == Sale.STATUS_COMPLETED

    def test_second_conversion_fails_without_new_sale(self, db_session, principal_a, quotation):
        sale = quotation_service.convert_quotation(principal_a, quotation.id)

        with pytest.raises(AlreadyConverted) as exc_info:
            quotation_service.convert_quotation(principal_a, quotation.id)

        assert exc_info.value.sale_id == sale.id
        assert db_session.query(Sale).filter_by(quotation_id=quotation.id).count() == 1

    @pytest.mark.parametrize("status", ["rejected", "expired"])
    def test_terminal_status_cannot_convert(self, db_session, principal_a, quotation, status):
        quotation_service.set_quotation_status(principal_a, quotation.id, status)
        with pytest.raises(InvalidState):
            quotation_service.convert_quotation(principal_a, quotation.id)
        assert db_session.query(Sale).count() == 0

    def test_past_expiry_date_cannot_convert(self, db_session, principal_a, public_customer_a, product_a):
        quotation = quotation_service.create_quotation(
            principal_a,
            public_customer_a.id,
            [SaleItemRequest(product_id=product_a.id, quantity=1, unit_price_cents=100)],
            expiry_date=utcnow() - timedelta(days=1),
        )
        with pytest.raises(InvalidState):
            quotation_service.convert_quotation(principal_a, quotation.id)

    def test_failed_conversion_leaves_quotation_pending(self, db_session, principal_a, public_customer_a, product_a):
        quotation = quotation_service.create_quotation(
            principal_a,
            public_customer_a.id,
            [SaleItemRequest(product_id=product_a.id, quantity=9, unit_price_cents=100)],
        )
        with pytest.raises(InsufficientStock):
            quotation_service.convert_quotation(principal_a, quotation.id)

        assert db_session.get(Quotation, quotation.id).status == Quotation.STATUS_PENDING
        assert db_session.query(Sale).count() == 0

    def test_other_tenant_cannot_convert(self, db_session, principal_b, quotation):
        with pytest.raises(NotFound):
            quotation_service.convert_quotation(principal_b, quotation.id)

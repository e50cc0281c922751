# Overview: Pytest coverage for the sale aggregate builder.

import pytest

from erpcore.errors import ImmutableRecordError, InsufficientStock, InvalidRequest, NotFound
from erpcore.models import AuditEvent, Movement, Product, Sale, SaleItem
from erpcore.services import sales_service
from erpcore.services.sales_service import SaleItemRequest


def item(product, quantity, unit_price_cents=10000, **kwargs):
    return SaleItemRequest(product_id=product.id, quantity=quantity, unit_price_cents=unit_price_cents, **kwargs)


class TestCreateSale:
    """Sale + items + movements are created together."""

    def test_sale_of_three_from_stock_of_five(self, db_session, principal_a, public_customer_a, product_a):
        sale = sales_service.create_sale(principal_a, public_customer_a.id, [item(product_a, 3)])

        assert sale.status == Sale.STATUS_COMPLETED
        assert sale.total_amount_cents == 30000
        assert sale.to_dict()["total_amount"] == "300.00"
        assert db_session.get(Product, product_a.id).stock == 2

        movements = db_session.query(Movement).filter_by(product_id=product_a.id).all()
        assert len(movements) == 1
        assert movements[0].type == Movement.TYPE_OUTBOUND
        assert (movements[0].previous_stock, movements[0].new_stock) == (5, 2)
        assert movements[0].sale_id == sale.id
        assert movements[0].note == f"Sale #{sale.id[:8]}"

    def test_second_sale_exceeding_stock_fails(self, db_session, principal_a, public_customer_a, product_a):
        sales_service.create_sale(principal_a, public_customer_a.id, [item(product_a, 3)])

        with pytest.raises(InsufficientStock) as exc_info:
            sales_service.create_sale(principal_a, public_customer_a.id, [item(product_a, 3)])

        assert exc_info.value.available == 2
        assert exc_info.value.details["product_name"] == "Widget"
        assert db_session.query(Sale).count() == 1
        assert db_session.get(Product, product_a.id).stock == 2

    def test_total_is_sum_of_line_totals(self, db_session, principal_a, public_customer_a, product_a, service_product_a):
        sale = sales_service.create_sale(principal_a, public_customer_a.id, [
            item(product_a, 2, 12345),
            item(service_product_a, 1, 50000, description="Instalación a domicilio"),
        ])

        lines = db_session.query(SaleItem).filter_by(sale_id=sale.id).order_by(SaleItem.position).all()
        assert [l.total_price_cents for l in lines] == [24690, 50000]
        assert sale.total_amount_cents == sum(l.total_price_cents for l in lines)

    def test_request_prices_are_used(self, db_session, principal_a, public_customer_a, product_a):
        sale = sales_service.create_sale(principal_a, public_customer_a.id, [item(product_a, 1, 777)])
        assert sale.total_amount_cents == 777

    def test_untracked_products_do_not_move_stock(self, db_session, principal_a, public_customer_a, service_product_a):
        sales_service.create_sale(principal_a, public_customer_a.id, [item(service_product_a, 4, 50000)])

        assert db_session.query(Movement).count() == 0
        assert db_session.get(Product, service_product_a.id).stock == 0

    def test_quantities_are_aggregated_per_product(self, db_session, principal_a, public_customer_a, product_a):
        with pytest.raises(InsufficientStock) as exc_info:
            sales_service.create_sale(principal_a, public_customer_a.id, [item(product_a, 3), item(product_a, 3)])

        assert exc_info.value.requested == 6
        assert db_session.query(Sale).count() == 0

    def test_sale_creation_is_audited(self, db_session, principal_a, public_customer_a, product_a):
        sale = sales_service.create_sale(principal_a, public_customer_a.id, [item(product_a, 1)])

        events = db_session.query(AuditEvent).filter_by(entity_type="sale", entity_id=sale.id).all()
        assert [e.event_type for e in events] == ["sale.created"]


class TestCreateSaleRejections:
    """Pre-checks fail before any write."""

    def test_empty_items(self, db_session, principal_a, public_customer_a):
        with pytest.raises(InvalidRequest):
            sales_service.create_sale(principal_a, public_customer_a.id, [])

    @pytest.mark.parametrize("quantity", [0, -1, 1.5])
    def test_bad_quantity(self, db_session, principal_a, public_customer_a, product_a, quantity):
        with pytest.raises(InvalidRequest):
            sales_service.create_sale(principal_a, public_customer_a.id, [item(product_a, quantity)])

    def test_negative_price(self, db_session, principal_a, public_customer_a, product_a):
        with pytest.raises(InvalidRequest):
            sales_service.create_sale(principal_a, public_customer_a.id, [item(product_a, 1, -1)])

    def test_unknown_customer(self, db_session, principal_a, product_a):
        with pytest.raises(NotFound) as exc_info:
            sales_service.create_sale(principal_a, "missing-customer", [item(product_a, 1)])
        assert exc_info.value.entity == "Customer"

    def test_foreign_product_named_in_error(self, db_session, principal_a, public_customer_a, product_b):
        with pytest.raises(NotFound) as exc_info:
            sales_service.create_sale(principal_a, public_customer_a.id, [item(product_b, 1)])
        assert exc_info.value.entity_id == product_b.id
        assert db_session.get(Product, product_b.id).stock == 10

    def test_failure_on_second_line_leaves_nothing(self, db_session, principal_a, public_customer_a, product_a, product_b):
        with pytest.raises(NotFound):
            sales_service.create_sale(principal_a, public_customer_a.id, [item(product_a, 1), item(product_b, 1)])

        assert db_session.query(Sale).count() == 0
        assert db_session.query(Movement).count() == 0
        assert db_session.get(Product, product_a.id).stock == 5


class TestSaleItemImmutability:
    def test_items_cannot_be_edited(self, db_session, principal_a, public_customer_a, product_a):
        sale = sales_service.create_sale(principal_a, public_customer_a.id, [item(product_a, 1)])
        line = db_session.query(SaleItem).filter_by(sale_id=sale.id).one()

        line.quantity = 2
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()


class TestItemRequestParsing:
    def test_from_dict(self):
        req = SaleItemRequest.from_dict({
            "product_id": "p1",
            "quantity": 2,
            "unit_price_cents": 1500,
            "sat_product_key": "",
        })
        assert req.total_price_cents == 3000
        assert req.sat_product_key is None

    def test_from_dict_requires_product(self):
        with pytest.raises(InvalidRequest):
            SaleItemRequest.from_dict({"quantity": 1, "unit_price_cents": 1})

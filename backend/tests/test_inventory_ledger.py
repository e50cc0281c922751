# Overview: Pytest coverage for the inventory ledger (stock deltas and movements).

import pytest

from erpcore.errors import ImmutableRecordError, InsufficientStock, InvalidRequest, NotFound
from erpcore.models import Movement, Product
from erpcore.services import inventory_service
from erpcore.services.concurrency import run_in_transaction


def _apply(principal, product_id, delta, note=None):
    def _op(session):
        return inventory_service.apply_stock_delta(
            session,
            product_id=product_id,
            company_id=principal.company_id,
            quantity_delta=delta,
            actor_id=principal.user_id,
            note=note,
        )
    return run_in_transaction(_op)


class TestApplyStockDelta:
    """Signed deltas write stock and append one movement each."""

    def test_outbound_delta_records_snapshot(self, db_session, principal_a, product_a):
        movement = _apply(principal_a, product_a.id, -2, note="manual")

        assert movement.type == Movement.TYPE_OUTBOUND
        assert movement.quantity == 2
        assert movement.previous_stock == 5
        assert movement.new_stock == 3
        assert movement.quantity_delta == -2
        assert db_session.get(Product, product_a.id).stock == 3

    def test_inbound_delta(self, db_session, principal_a, product_a):
        movement = _apply(principal_a, product_a.id, 7)

        assert movement.type == Movement.TYPE_INBOUND
        assert movement.new_stock == 12

    def test_negative_stock_rejected_without_mutation(self, db_session, principal_a, product_a):
        with pytest.raises(InsufficientStock) as exc_info:
            _apply(principal_a, product_a.id, -6)

        assert exc_info.value.available == 5
        assert exc_info.value.requested == 6
        assert db_session.get(Product, product_a.id).stock == 5
        assert db_session.query(Movement).count() == 0

    def test_zero_delta_is_invalid(self, db_session, principal_a, product_a):
        with pytest.raises(InvalidRequest):
            _apply(principal_a, product_a.id, 0)

    def test_untracked_product_may_go_negative(self, db_session, principal_a, service_product_a):
        movement = _apply(principal_a, service_product_a.id, -3)

        assert movement.new_stock == -3
        assert db_session.query(Movement).filter_by(product_id=service_product_a.id).count() == 1

    def test_cross_tenant_product_not_found(self, db_session, principal_a, product_b):
        with pytest.raises(NotFound):
            _apply(principal_a, product_b.id, 1)

    def test_stock_equals_initial_plus_movement_deltas(self, db_session, principal_a, product_a):
        for delta in (3, -4, 2, -1):
            _apply(principal_a, product_a.id, delta)

        movements = db_session.query(Movement).filter_by(product_id=product_a.id).all()
        assert 5 + sum(m.quantity_delta for m in movements) == db_session.get(Product, product_a.id).stock


class TestMovementImmutability:
    """Movements are append-only."""

    def test_update_rejected(self, db_session, principal_a, product_a):
        movement = _apply(principal_a, product_a.id, 1)
        movement.note = "edited"
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()

    def test_delete_rejected(self, db_session, principal_a, product_a):
        movement = _apply(principal_a, product_a.id, 1)
        db_session.delete(movement)
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()


class TestRestock:
    def test_restock_adds_stock(self, db_session, principal_a, product_a):
        movement = inventory_service.restock(principal_a, product_a.id, 10, note="Supplier delivery")

        assert movement.note == "Supplier delivery"
        assert db_session.get(Product, product_a.id).stock == 15

    @pytest.mark.parametrize("quantity", [0, -1, "3", None, True])
    def test_restock_requires_positive_integer(self, db_session, principal_a, product_a, quantity):
        with pytest.raises(InvalidRequest):
            inventory_service.restock(principal_a, product_a.id, quantity)

    def test_list_movements_oldest_first(self, db_session, principal_a, product_a):
        inventory_service.restock(principal_a, product_a.id, 1)
        inventory_service.restock(principal_a, product_a.id, 2)

        movements = inventory_service.list_movements(principal_a, product_a.id)
        assert [m.quantity for m in movements] == [1, 2]

    def test_list_movements_cross_tenant(self, db_session, principal_a, product_b):
        with pytest.raises(NotFound):
            inventory_service.list_movements(principal_a, product_b.id)

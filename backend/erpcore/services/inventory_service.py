# Overview: Inventory ledger; the single writer of product stock.

from __future__ import annotations

from ..errors import InsufficientStock, InvalidRequest, NotFound
from ..extensions import db
from ..models import Movement, Product
from ..principal import Principal
from .concurrency import lock_for_update, run_in_transaction
"""
Inventory Ledger Invariants (authoritative)

- Product.stock is only written here.
- Every stock change appends exactly one Movement with before/after snapshot,
  in the same DB transaction as the stock write. Movements are append-only.
- Stock-tracked products (use_stock) never go below zero; an offending delta
  raises InsufficientStock and mutates nothing.
- Untracked products skip only the negativity check.
- Zero deltas are invalid input.
"""


def get_product(session, company_id: str, product_id: str, *, lock: bool = False) -> Product:
    q = session.query(Product).filter_by(id=product_id, company_id=company_id)
    if lock:
        q = lock_for_update(q)
    product = q.first()
    if not product:
        raise NotFound("Product", product_id)
    return product


def apply_stock_delta(
    session,
    *,
    product_id: str,
    company_id: str,
    quantity_delta: int,
    actor_id: str | None,
    note: str | None = None,
    sale_id: str | None = None,
) -> Movement:
    """
    Apply a signed stock delta inside the caller's transaction.

    Flushes but never commits; the caller owns the unit of work.
    """
    if not isinstance(quantity_delta, int) or isinstance(quantity_delta, bool) or quantity_delta == 0:
        raise InvalidRequest("quantity_delta must be a non-zero integer", details={"quantity_delta": quantity_delta})

    product = get_product(session, company_id, product_id, lock=True)

    previous = product.stock or 0
    new_stock = previous + quantity_delta
    if product.use_stock and new_stock < 0:
        raise InsufficientStock(product.id, product.name, -quantity_delta, previous)

    product.stock = new_stock
    movement = Movement(
        company_id=company_id,
        product_id=product.id,
        user_id=actor_id,
        type=Movement.TYPE_INBOUND if quantity_delta > 0 else Movement.TYPE_OUTBOUND,
        quantity=abs(quantity_delta),
        previous_stock=previous,
        new_stock=new_stock,
        note=note,
        sale_id=sale_id,
    )
    session.add(movement)
    session.flush()
    return movement


def restock(principal: Principal, product_id: str, quantity: int, note: str | None = None) -> Movement:
    """Receive ``quantity`` units of a product into stock."""
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise InvalidRequest("quantity must be a positive integer", details={"quantity": quantity})

    def _op(session):
        return apply_stock_delta(
            session,
            product_id=product_id,
            company_id=principal.company_id,
            quantity_delta=quantity,
            actor_id=principal.user_id,
            note=note or "Restock",
        )

    return run_in_transaction(_op)


def list_movements(principal: Principal, product_id: str, *, limit: int = 200) -> list[Movement]:
    """Movement history for a product, oldest first."""
    get_product(db.session, principal.company_id, product_id)
    return (
        db.session.query(Movement)
        .filter_by(company_id=principal.company_id, product_id=product_id)
        .order_by(Movement.id.asc())
        .limit(limit)
        .all()
    )

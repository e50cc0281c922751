# Overview: Builds Sale aggregates and their outbound inventory movements in one unit of work.

"""
Sale Aggregate Builder

Turns a list of requested line items into a complete Sale: header, ordered
SaleItems, and one outbound inventory Movement per stock-tracked line, all in
one unit of work. Nothing about a sale changes after it is built.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import InsufficientStock, InvalidRequest, NotFound
from ..extensions import db
from ..models import Customer, Product, Sale, SaleItem
from ..models.base import new_id
from ..principal import Principal
from .concurrency import run_in_transaction
from .inventory_service import apply_stock_delta
from .ledger_service import append_event


@dataclass(frozen=True)
class SaleItemRequest:
    product_id: str
    quantity: int
    unit_price_cents: int
    sat_product_key: str | None = None
    sat_unit_key: str | None = None
    description: str | None = None

    @property
    def total_price_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    @classmethod
    def from_dict(cls, data: dict) -> "SaleItemRequest":
        if not isinstance(data, dict):
            raise InvalidRequest("Each item must be an object")
        product_id = data.get("product_id")
        if not product_id:
            raise InvalidRequest("product_id is required", details={"item": data})
        return cls(
            product_id=str(product_id),
            quantity=data.get("quantity"),
            unit_price_cents=data.get("unit_price_cents"),
            sat_product_key=data.get("sat_product_key") or None,
            sat_unit_key=data.get("sat_unit_key") or None,
            description=data.get("description") or None,
        )


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_item_requests(items: list[SaleItemRequest]) -> None:
    if not items:
        raise InvalidRequest("At least one item is required")

    for index, item in enumerate(items):
        if not _is_int(item.quantity) or item.quantity <= 0:
            raise InvalidRequest(
                "Item quantity must be a positive integer",
                details={"index": index, "product_id": item.product_id, "quantity": item.quantity},
            )
        if not _is_int(item.unit_price_cents) or item.unit_price_cents < 0:
            raise InvalidRequest(
                "Item unit price must be a non-negative integer amount of cents",
                details={"index": index, "product_id": item.product_id, "unit_price_cents": item.unit_price_cents},
            )


def load_customer(session, company_id: str, customer_id: str) -> Customer:
    customer = session.query(Customer).filter_by(id=customer_id, company_id=company_id).first()
    if not customer:
        raise NotFound("Customer", customer_id)
    return customer


def load_products(session, company_id: str, items: list[SaleItemRequest]) -> dict[str, Product]:
    """Resolve every referenced product inside the tenant, in request order."""
    wanted = list(dict.fromkeys(item.product_id for item in items))
    rows = (
        session.query(Product)
        .filter(Product.company_id == company_id, Product.id.in_(wanted))
        .all()
    )
    products = {p.id: p for p in rows}
    for product_id in wanted:
        if product_id not in products:
            raise NotFound("Product", product_id)
    return products


def check_available_stock(items: list[SaleItemRequest], products: dict[str, Product]) -> None:
    """Requested quantities are summed per product before comparing with stock."""
    requested: dict[str, int] = {}
    for item in items:
        requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity

    for product_id, qty in requested.items():
        product = products[product_id]
        if product.use_stock and (product.stock or 0) < qty:
            raise InsufficientStock(product.id, product.name, qty, product.stock or 0)


def build_sale(
    session,
    *,
    company_id: str,
    actor_id: str | None,
    customer_id: str,
    items: list[SaleItemRequest],
    products: dict[str, Product],
    notes: str | None = None,
    quotation_id: str | None = None,
) -> Sale:
    """
    Write Sale + SaleItems + stock movements into the caller's transaction.

    Shared by direct sales and quotation conversion. Flushes, never commits.
    """
    sale = Sale(
        id=new_id(),
        company_id=company_id,
        customer_id=customer_id,
        user_id=actor_id,
        status=Sale.STATUS_COMPLETED,
        total_amount_cents=sum(item.total_price_cents for item in items),
        notes=notes,
        quotation_id=quotation_id,
    )
    session.add(sale)

    for position, item in enumerate(items, start=1):
        session.add(SaleItem(
            sale_id=sale.id,
            position=position,
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            total_price_cents=item.total_price_cents,
            sat_product_key=item.sat_product_key,
            sat_unit_key=item.sat_unit_key,
            description=item.description,
        ))
    session.flush()

    for item in items:
        if not products[item.product_id].use_stock:
            continue
        apply_stock_delta(
            session,
            product_id=item.product_id,
            company_id=company_id,
            quantity_delta=-item.quantity,
            actor_id=actor_id,
            note=f"Sale #{sale.id[:8]}",
            sale_id=sale.id,
        )

    append_event(
        company_id=company_id,
        event_type="sale.created",
        entity_type="sale",
        entity_id=sale.id,
        actor_user_id=actor_id,
        note=f"Sale #{sale.id[:8]} created",
        payload={
            "total_amount_cents": sale.total_amount_cents,
            "items": len(items),
            "quotation_id": quotation_id,
        },
    )
    return sale


def create_sale(
    principal: Principal,
    customer_id: str,
    items: list[SaleItemRequest],
    notes: str | None = None,
) -> Sale:
    """
    Create a completed sale and take its items out of stock.

    Input, tenant and stock checks run before the transaction opens. Stock
    that runs out between the check and the write surfaces as
    InsufficientStock from the ledger; the unit of work is rolled back.
    """
    validate_item_requests(items)
    load_customer(db.session, principal.company_id, customer_id)
    products = load_products(db.session, principal.company_id, items)
    check_available_stock(items, products)

    def _op(session):
        # Re-resolve inside the transaction so stock flags are current
        fresh = load_products(session, principal.company_id, items)
        return build_sale(
            session,
            company_id=principal.company_id,
            actor_id=principal.user_id,
            customer_id=customer_id,
            items=items,
            products=fresh,
            notes=notes,
        )

    return run_in_transaction(_op)


def get_sale(principal: Principal, sale_id: str) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id, company_id=principal.company_id).first()
    if not sale:
        raise NotFound("Sale", sale_id)
    return sale


def list_sales(principal: Principal, *, status: str | None = None, limit: int = 100) -> list[Sale]:
    q = db.session.query(Sale).filter(Sale.company_id == principal.company_id)
    if status:
        q = q.filter(Sale.status == status)
    return q.order_by(Sale.created_at.desc()).limit(limit).all()

# Overview: Quotation creation, status changes, and one-shot conversion into a Sale.

from __future__ import annotations

from datetime import datetime

from ..errors import AlreadyConverted, InvalidRequest, InvalidState, NotFound
from ..extensions import db
from ..models import Quotation, QuotationItem, Sale
from ..models.base import new_id
from ..principal import Principal
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .ledger_service import append_event
from .sales_service import (
    SaleItemRequest,
    build_sale,
    check_available_stock,
    load_customer,
    load_products,
    validate_item_requests,
)

# Manual status changes. ``converted`` is reachable only through convert_quotation.
ALLOWED_TRANSITIONS = {
    Quotation.STATUS_PENDING: {
        Quotation.STATUS_ACCEPTED,
        Quotation.STATUS_REJECTED,
        Quotation.STATUS_EXPIRED,
    },
    Quotation.STATUS_ACCEPTED: {
        Quotation.STATUS_REJECTED,
        Quotation.STATUS_EXPIRED,
    },
    Quotation.STATUS_REJECTED: set(),
    Quotation.STATUS_EXPIRED: set(),
    Quotation.STATUS_CONVERTED: set(),
}

CONVERTIBLE = {Quotation.STATUS_PENDING, Quotation.STATUS_ACCEPTED}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def create_quotation(
    principal: Principal,
    customer_id: str,
    items: list[SaleItemRequest],
    *,
    expiry_date: datetime | None = None,
    notes: str | None = None,
) -> Quotation:
    """Quotations reserve nothing; stock is only checked on conversion."""
    validate_item_requests(items)
    load_customer(db.session, principal.company_id, customer_id)
    load_products(db.session, principal.company_id, items)

    def _op(session):
        quotation = Quotation(
            id=new_id(),
            company_id=principal.company_id,
            customer_id=customer_id,
            user_id=principal.user_id,
            status=Quotation.STATUS_PENDING,
            expiry_date=expiry_date,
            total_amount_cents=sum(item.total_price_cents for item in items),
            notes=notes,
        )
        session.add(quotation)
        for position, item in enumerate(items, start=1):
            session.add(QuotationItem(
                quotation_id=quotation.id,
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
        append_event(
            company_id=principal.company_id,
            event_type="quotation.created",
            entity_type="quotation",
            entity_id=quotation.id,
            actor_user_id=principal.user_id,
        )
        return quotation

    return run_in_transaction(_op)


def _load_quotation(session, company_id: str, quotation_id: str, *, lock: bool = False) -> Quotation:
    q = session.query(Quotation).filter_by(id=quotation_id, company_id=company_id)
    if lock:
        q = lock_for_update(q)
    quotation = q.first()
    if not quotation:
        raise NotFound("Quotation", quotation_id)
    return quotation


def get_quotation(principal: Principal, quotation_id: str) -> Quotation:
    return _load_quotation(db.session, principal.company_id, quotation_id)


def set_quotation_status(principal: Principal, quotation_id: str, new_status: str) -> Quotation:
    if new_status not in ALLOWED_TRANSITIONS:
        raise InvalidRequest("Unknown quotation status", details={"status": new_status})
    if new_status == Quotation.STATUS_CONVERTED:
        raise InvalidRequest("Use the convert operation to convert a quotation")

    _load_quotation(db.session, principal.company_id, quotation_id)

    def _op(session):
        quotation = _load_quotation(session, principal.company_id, quotation_id, lock=True)
        if quotation.status == new_status:
            return quotation
        if not can_transition(quotation.status, new_status):
            raise InvalidState(
                f"Cannot change quotation from {quotation.status} to {new_status}",
                current_status=quotation.status,
            )
        previous = quotation.status
        quotation.status = new_status
        append_event(
            company_id=principal.company_id,
            event_type=f"quotation.{new_status}",
            entity_type="quotation",
            entity_id=quotation.id,
            actor_user_id=principal.user_id,
            payload={"from": previous, "to": new_status},
        )
        return quotation

    return run_in_transaction(_op)


def _ensure_convertible(quotation: Quotation, now: datetime) -> None:
    if quotation.status == Quotation.STATUS_CONVERTED:
        raise AlreadyConverted(quotation.id, quotation.converted_sale_id)
    if quotation.status not in CONVERTIBLE:
        raise InvalidState(
            f"Quotation is {quotation.status} and cannot be converted",
            current_status=quotation.status,
        )
    if quotation.expiry_date is not None and quotation.expiry_date < now:
        raise InvalidState("Quotation has expired", current_status=quotation.status)


def _item_requests(quotation: Quotation) -> list[SaleItemRequest]:
    # Prices are carried over verbatim, not re-read from the catalog
    return [
        SaleItemRequest(
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            sat_product_key=item.sat_product_key,
            sat_unit_key=item.sat_unit_key,
            description=item.description,
        )
        for item in quotation.items
    ]


def convert_quotation(principal: Principal, quotation_id: str) -> Sale:
    """
    Turn a pending/accepted quotation into a completed Sale, exactly once.

    The quotation row is locked and re-checked inside the same unit of work
    that builds the sale, so concurrent conversions produce one Sale and the
    others get AlreadyConverted. A failed conversion leaves the quotation
    untouched.
    """
    quotation = _load_quotation(db.session, principal.company_id, quotation_id)
    _ensure_convertible(quotation, utcnow())

    items = _item_requests(quotation)
    validate_item_requests(items)
    load_customer(db.session, principal.company_id, quotation.customer_id)
    check_available_stock(items, load_products(db.session, principal.company_id, items))

    def _op(session):
        locked = _load_quotation(session, principal.company_id, quotation_id, lock=True)
        _ensure_convertible(locked, utcnow())

        sale = build_sale(
            session,
            company_id=principal.company_id,
            actor_id=principal.user_id,
            customer_id=locked.customer_id,
            items=items,
            products=load_products(session, principal.company_id, items),
            notes=locked.notes,
            quotation_id=locked.id,
        )

        locked.status = Quotation.STATUS_CONVERTED
        locked.converted_sale_id = sale.id
        locked.converted_at = utcnow()
        session.flush()

        append_event(
            company_id=principal.company_id,
            event_type="quotation.converted",
            entity_type="quotation",
            entity_id=locked.id,
            actor_user_id=principal.user_id,
            payload={"sale_id": sale.id},
        )
        return sale

    return run_in_transaction(_op)
